"""Orchestration services: jobs, credential rotation, vault mirroring, metrics."""
