"""
Tests for the Database phase state machine.
"""
import pytest

from dboperator.core.state_machine import PhaseStateMachine
from dboperator.exceptions import InvalidPhaseTransitionError
from dboperator.models.database import DatabasePhase


@pytest.mark.parametrize(
    "from_phase,to_phase",
    [
        (DatabasePhase.PENDING, DatabasePhase.PROVISIONING),
        (DatabasePhase.PROVISIONING, DatabasePhase.READY),
        (DatabasePhase.READY, DatabasePhase.UPGRADING),
        (DatabasePhase.UPGRADING, DatabasePhase.READY),
        (DatabasePhase.READY, DatabasePhase.HEALING),
        (DatabasePhase.SCALING, DatabasePhase.READY),
        (DatabasePhase.FAILED, DatabasePhase.PROVISIONING),
        (DatabasePhase.PAUSED, DatabasePhase.READY),
    ],
)
def test_allowed_transitions(from_phase, to_phase):
    assert PhaseStateMachine.can_transition(from_phase, to_phase)


@pytest.mark.parametrize("phase", [p for p in DatabasePhase if p != DatabasePhase.DELETING])
def test_failed_paused_and_deleting_reachable_from_any_live_phase(phase):
    assert PhaseStateMachine.can_transition(phase, DatabasePhase.FAILED)
    assert PhaseStateMachine.can_transition(phase, DatabasePhase.PAUSED)
    assert PhaseStateMachine.can_transition(phase, DatabasePhase.DELETING)


@pytest.mark.parametrize("phase", [p for p in DatabasePhase if p != DatabasePhase.DELETING])
def test_deleting_is_never_left(phase):
    assert not PhaseStateMachine.can_transition(DatabasePhase.DELETING, phase)
    assert PhaseStateMachine.can_transition(DatabasePhase.DELETING, DatabasePhase.DELETING)


def test_ready_cannot_go_back_to_pending():
    with pytest.raises(InvalidPhaseTransitionError):
        PhaseStateMachine.validate_transition(DatabasePhase.READY, DatabasePhase.PENDING, "shop/orders")


def test_terminal_phase():
    assert PhaseStateMachine.is_terminal(DatabasePhase.DELETING)
    assert not PhaseStateMachine.is_terminal(DatabasePhase.FAILED)
