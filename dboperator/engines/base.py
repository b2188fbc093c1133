"""
Engine contract.

An Engine is the per-technology driver the controller calls to converge a
Database's owned sub-resources. Every ensure_* method must be idempotent:
it reads live state and only writes when something differs.

Lifecycle operations a technology has not implemented yet raise
OperationNotImplementedError. Callers treat that as a normal, reportable
outcome.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

from dboperator.config.settings import Settings, settings as default_settings
from dboperator.exceptions import OperationNotImplementedError
from dboperator.models.database import Database, DatabaseEngine, HealthStatus
from dboperator.platform.base import PlatformClient
from dboperator.platform.objects import OperationResult


@dataclass(frozen=True)
class WorkloadState:
    """Observed state of a Database's workload."""

    replicas: int
    ready_replicas: int
    image: Optional[str] = None


class Engine(ABC):
    """Per-technology lifecycle driver."""

    engine: DatabaseEngine
    image_repository: str
    default_port: int
    default_username: str

    def __init__(self, platform: PlatformClient, settings: Optional[Settings] = None):
        self.platform = platform
        self.settings = settings or default_settings

    @property
    def name(self) -> str:
        return self.engine.value

    def image_for(self, version: str) -> str:
        return f"{self.image_repository}:{version}"

    def port_for(self, database: Database) -> int:
        return database.spec.networking.port or self.default_port

    def running_version(self, database: Database) -> str:
        """
        Version the workload should run this cycle.

        Until an upgrade has been let through the maintenance gate the
        workload stays on the last observed version.
        """
        return database.status.current_version or database.spec.version

    # ------------------------------------------------------------------
    # convergence
    # ------------------------------------------------------------------

    @abstractmethod
    async def validate(self, database: Database) -> None:
        """Raise ValidationError if the spec is invalid for this technology."""

    @abstractmethod
    async def ensure_storage(self, database: Database) -> OperationResult:
        """Create the data volume claim. Claims are immutable after creation."""

    @abstractmethod
    async def ensure_config(self, database: Database) -> OperationResult:
        """Create or update configuration and the current credential secret."""

    @abstractmethod
    async def ensure_service(self, database: Database) -> OperationResult:
        """Create or update the network endpoint."""

    @abstractmethod
    async def ensure_workload(self, database: Database) -> OperationResult:
        """Create or update the replica set running the database."""

    @abstractmethod
    async def read_workload(self, database: Database) -> Optional[WorkloadState]:
        """Return the observed workload, or None when it does not exist."""

    @abstractmethod
    def get_endpoint(self, database: Database) -> str:
        """Deterministic client endpoint derived from resource identity."""

    async def scale(self, database: Database) -> OperationResult:
        return await self.ensure_workload(database)

    async def upgrade(self, database: Database) -> OperationResult:
        raise OperationNotImplementedError(self.name, "upgrade")

    # ------------------------------------------------------------------
    # operations not every technology implements
    # ------------------------------------------------------------------

    async def backup(self, database: Database) -> str:
        """Start a native backup and return its execution unit id."""
        raise OperationNotImplementedError(self.name, "backup")

    async def restore(self, database: Database) -> None:
        raise OperationNotImplementedError(self.name, "restore")

    async def rotate_auth(self, database: Database) -> None:
        raise OperationNotImplementedError(self.name, "rotate_auth")

    async def heal(self, database: Database) -> List[str]:
        """Repair drift the ensure_* methods cannot. Returns actions taken."""
        raise OperationNotImplementedError(self.name, "heal")

    async def status(self, database: Database) -> HealthStatus:
        raise OperationNotImplementedError(self.name, "status")
