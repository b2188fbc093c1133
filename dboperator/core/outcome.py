"""
Reconciliation outcomes.

Components return a Deferral when they succeeded but want the resource
looked at again sooner than the periodic resync (a closed maintenance
window, a running restore, an in-flight rotation). Deferrals are not
errors: they never count as failures and never trigger backoff.
"""
from dataclasses import dataclass
from typing import Iterable, Optional


@dataclass(frozen=True)
class Deferral:
    """Success with a request to re-check after ``requeue_after`` seconds."""

    reason: str
    requeue_after: float
    message: str = ""


@dataclass
class ReconcileResult:
    """
    What one reconciliation attempt asks of the scheduler.

    Attributes:
        requeue_after: Seconds until the next attempt; None means no requeue
        error: Failure to retry with backoff
        deferral: The deferral that shortened requeue_after, if any
    """

    requeue_after: Optional[float] = None
    error: Optional[BaseException] = None
    deferral: Optional[Deferral] = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    @property
    def result_label(self) -> str:
        """Label for reconcile metrics."""
        if self.error is not None:
            return "error"
        if self.deferral is not None:
            return "deferred"
        return "success"

    @classmethod
    def done(cls) -> "ReconcileResult":
        return cls()

    @classmethod
    def immediately(cls) -> "ReconcileResult":
        return cls(requeue_after=0.0)

    @classmethod
    def failure(cls, error: BaseException) -> "ReconcileResult":
        return cls(error=error)


def earliest(default: float, deferrals: Iterable[Deferral]) -> "tuple[float, Optional[Deferral]]":
    """Pick the soonest requeue between the periodic default and any deferral."""
    chosen: Optional[Deferral] = None
    delay = default
    for deferral in deferrals:
        if deferral.requeue_after < delay:
            delay = deferral.requeue_after
            chosen = deferral
    return delay, chosen
