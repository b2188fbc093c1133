"""
Database Phase State Machine

This module implements the phase state machine for the Database resource.
It prevents invalid phase transitions and keeps the status auditable.

Phases:
- Pending: Accepted, nothing converged yet
- Provisioning: Owned sub-resources are being created
- Ready: All desired replicas are ready
- Upgrading: Version upgrade in progress
- Scaling: Replica count change in progress
- Healing: Previously ready replicas are being recovered
- Failed: Last attempt failed, will be retried on backoff
- Paused: Reconciliation suspended by lifecycle.paused
- Deleting: Finalizer cleanup in progress (terminal)

Usage:
    >>> from dboperator.core.state_machine import PhaseStateMachine
    >>> from dboperator.models.database import DatabasePhase
    >>>
    >>> PhaseStateMachine.can_transition(
    ...     DatabasePhase.PENDING,
    ...     DatabasePhase.PROVISIONING
    ... )
    True
    >>> PhaseStateMachine.can_transition(
    ...     DatabasePhase.DELETING,
    ...     DatabasePhase.READY
    ... )
    False
"""

from typing import Dict, Optional, Set

from dboperator.config.logging import get_logger
from dboperator.exceptions import InvalidPhaseTransitionError
from dboperator.models.database import DatabasePhase

logger = get_logger(__name__)

_ACTIVE = {
    DatabasePhase.UPGRADING,
    DatabasePhase.SCALING,
    DatabasePhase.HEALING,
}


class PhaseStateMachine:
    """
    State machine for the Database phase.

    Failed is reachable from every non-terminal phase and is always
    re-enterable. Paused is reachable from every non-terminal phase and exits
    back to any non-terminal phase. Deleting is reachable from everywhere and
    never exited.
    """

    TERMINAL: Set[DatabasePhase] = {DatabasePhase.DELETING}

    TRANSITIONS: Dict[DatabasePhase, Set[DatabasePhase]] = {
        DatabasePhase.PENDING: {
            DatabasePhase.PROVISIONING,
            DatabasePhase.READY,  # adopted resource already running
        },
        DatabasePhase.PROVISIONING: {DatabasePhase.READY} | _ACTIVE,
        DatabasePhase.READY: set(_ACTIVE),
        DatabasePhase.UPGRADING: {DatabasePhase.READY} | _ACTIVE,
        DatabasePhase.SCALING: {DatabasePhase.READY} | _ACTIVE,
        DatabasePhase.HEALING: {DatabasePhase.READY} | _ACTIVE,
        DatabasePhase.FAILED: {
            DatabasePhase.PENDING,
            DatabasePhase.PROVISIONING,
            DatabasePhase.READY,
        } | _ACTIVE,
        DatabasePhase.PAUSED: {
            DatabasePhase.PENDING,
            DatabasePhase.PROVISIONING,
            DatabasePhase.READY,
        } | _ACTIVE,
        DatabasePhase.DELETING: set(),
    }

    @classmethod
    def can_transition(cls, from_phase: DatabasePhase, to_phase: DatabasePhase) -> bool:
        """
        Check if a phase transition is valid.

        Args:
            from_phase: Current phase
            to_phase: Target phase

        Returns:
            True if the transition is allowed
        """
        if from_phase in cls.TERMINAL:
            return to_phase == from_phase
        if from_phase == to_phase:
            return True
        if to_phase in (DatabasePhase.FAILED, DatabasePhase.PAUSED, DatabasePhase.DELETING):
            return True
        return to_phase in cls.TRANSITIONS.get(from_phase, set())

    @classmethod
    def validate_transition(
        cls,
        from_phase: DatabasePhase,
        to_phase: DatabasePhase,
        resource_key: Optional[str] = None,
    ) -> None:
        """
        Validate a phase transition and raise if it is not allowed.

        Raises:
            InvalidPhaseTransitionError: If the transition is not allowed
        """
        if not cls.can_transition(from_phase, to_phase):
            message = f"Invalid phase transition from {from_phase.value} to {to_phase.value}"
            if resource_key:
                message += f" for database {resource_key}"

            logger.error(
                "invalid_phase_transition",
                resource=resource_key,
                from_phase=from_phase.value,
                to_phase=to_phase.value,
            )
            raise InvalidPhaseTransitionError(message)

        if from_phase != to_phase:
            logger.info(
                "phase_transition",
                resource=resource_key,
                from_phase=from_phase.value,
                to_phase=to_phase.value,
            )

    @classmethod
    def is_terminal(cls, phase: DatabasePhase) -> bool:
        """Check if a phase is terminal."""
        return phase in cls.TERMINAL
