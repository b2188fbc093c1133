"""
Platform client contract.

The platform is a versioned object store with optimistic concurrency,
owner-reference based cascading deletion and change notification. Objects
are exchanged as plain JSON-compatible dicts.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional


class Kind(str, Enum):
    """Object kinds the controller reads or owns."""

    DATABASE = "Database"
    SECRET = "Secret"
    CONFIG_MAP = "ConfigMap"
    SERVICE = "Service"
    PERSISTENT_VOLUME_CLAIM = "PersistentVolumeClaim"
    STATEFUL_SET = "StatefulSet"
    JOB = "Job"
    CRON_JOB = "CronJob"


# Kinds created on behalf of a Database and carrying its instance label
OWNED_KINDS = (
    Kind.PERSISTENT_VOLUME_CLAIM,
    Kind.CONFIG_MAP,
    Kind.SECRET,
    Kind.SERVICE,
    Kind.STATEFUL_SET,
    Kind.CRON_JOB,
    Kind.JOB,
)


@dataclass(frozen=True)
class WatchEvent:
    """A change notification from the platform."""

    type: str  # ADDED, MODIFIED, DELETED, BOOKMARK
    object: Dict[str, Any]

    @property
    def key(self) -> str:
        metadata = self.object.get("metadata", {})
        return f"{metadata.get('namespace', 'default')}/{metadata.get('name', '')}"


class PlatformClient(ABC):
    """Typed CRUD + watch access to the platform's object store."""

    @abstractmethod
    async def get(self, kind: Kind, namespace: str, name: str) -> Optional[Dict[str, Any]]:
        """Return the object or None when it does not exist."""

    @abstractmethod
    async def list(
        self,
        kind: Kind,
        namespace: Optional[str] = None,
        labels: Optional[Dict[str, str]] = None,
    ) -> List[Dict[str, Any]]:
        """List objects, optionally filtered by namespace and exact label match."""

    @abstractmethod
    async def create(self, kind: Kind, body: Dict[str, Any]) -> Dict[str, Any]:
        """Create an object. Raises ConflictError if it already exists."""

    @abstractmethod
    async def update(self, kind: Kind, body: Dict[str, Any]) -> Dict[str, Any]:
        """
        Replace an object's metadata and spec.

        The body's metadata.resourceVersion is the optimistic-concurrency
        token; a stale token raises ConflictError.
        """

    @abstractmethod
    async def update_status(self, kind: Kind, body: Dict[str, Any]) -> Dict[str, Any]:
        """Replace only the status subresource (same concurrency rules as update)."""

    @abstractmethod
    async def delete(self, kind: Kind, namespace: str, name: str) -> bool:
        """Delete an object. Returns False when it was already gone."""

    @abstractmethod
    def watch(self, kind: Kind, namespace: Optional[str] = None) -> AsyncIterator[WatchEvent]:
        """Stream change notifications until the connection ends."""

    async def close(self) -> None:
        """Release connections."""
