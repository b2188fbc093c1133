"""
Per-technology database engines.
"""
from dboperator.engines.base import Engine, WorkloadState  # noqa: F401
from dboperator.engines.registry import EngineRegistry  # noqa: F401
