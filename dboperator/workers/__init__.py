"""
Background loops: work queue, controller manager and leader election.
"""
from dboperator.workers.controller_manager import ControllerManager  # noqa: F401
from dboperator.workers.work_queue import WorkQueue  # noqa: F401
