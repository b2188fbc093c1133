"""
Core building blocks for the database controller.

This package provides:
- Phase state machine for the Database lifecycle
- Maintenance window gate for version upgrades

Import directly from submodules:
# from dboperator.core.state_machine import PhaseStateMachine
# from dboperator.core.maintenance import evaluate, is_upgrade_allowed
"""

__all__ = [
    "PhaseStateMachine",
    "evaluate",
    "is_upgrade_allowed",
]
