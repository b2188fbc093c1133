"""
Resource models for the database controller.
"""
from dboperator.models.database import (  # noqa: F401
    Condition,
    ConditionType,
    Database,
    DatabaseEngine,
    DatabasePhase,
    DatabaseSpec,
    DatabaseStatus,
    DeletionPolicy,
    RotationPhase,
    RotationStrategy,
    TopologyMode,
)
