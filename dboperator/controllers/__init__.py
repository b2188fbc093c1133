"""Reconcilers for the Database resource."""
