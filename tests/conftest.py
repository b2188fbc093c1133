"""
Pytest configuration and fixtures.
"""
import asyncio
import copy
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import pytest

from dboperator.config.settings import Settings
from dboperator.controllers.database_controller import DatabaseController
from dboperator.engines.registry import EngineRegistry
from dboperator.exceptions import ConflictError, NotFoundError, SecretStoreError
from dboperator.models.database import Database
from dboperator.platform.base import Kind, PlatformClient, WatchEvent
from dboperator.services.jobs import (
    ExecutionSpec,
    ExecutionState,
    ExecutionUnitLauncher,
    JobOrchestrator,
)
from dboperator.services.rotation import CredentialRotationManager
from dboperator.services.vault import SecretStore, SecretStoreFactory
from dboperator.utils.timeutils import format_timestamp

ObjectKey = Tuple[Kind, str, str]


class FakePlatform(PlatformClient):
    """
    In-memory platform.

    Honors resourceVersion conflicts, keeps status apart from spec the way a
    status subresource does, holds Databases with finalizers until the last
    finalizer is removed, and records every write in ``calls``.
    """

    def __init__(self):
        self.objects: Dict[ObjectKey, Dict[str, Any]] = {}
        self.calls: List[Tuple[str, Kind, str]] = []
        self.events: "asyncio.Queue[WatchEvent]" = asyncio.Queue()
        self._version = 0
        self._uid = 0

    def _next_version(self) -> str:
        self._version += 1
        return str(self._version)

    @staticmethod
    def _key(kind: Kind, body: Dict[str, Any]) -> ObjectKey:
        metadata = body["metadata"]
        return kind, metadata.get("namespace", "default"), metadata["name"]

    def _emit(self, event_type: str, body: Dict[str, Any]) -> None:
        self.events.put_nowait(WatchEvent(type=event_type, object=copy.deepcopy(body)))

    # helpers for tests

    def writes(self, verb: Optional[str] = None, kind: Optional[Kind] = None) -> List[Tuple[str, Kind, str]]:
        return [
            call for call in self.calls
            if (verb is None or call[0] == verb) and (kind is None or call[1] == kind)
        ]

    def stored(self, kind: Kind, namespace: str, name: str) -> Optional[Dict[str, Any]]:
        return self.objects.get((kind, namespace, name))

    def set_ready_replicas(self, namespace: str, name: str, ready: int) -> None:
        workload = self.objects[(Kind.STATEFUL_SET, namespace, name)]
        workload.setdefault("status", {})["readyReplicas"] = ready

    def finish_job(self, namespace: str, name: str, succeeded: bool = True, completed_at: Optional[datetime] = None):
        job = self.objects[(Kind.JOB, namespace, name)]
        status = job.setdefault("status", {})
        if succeeded:
            status["succeeded"] = 1
            status["conditions"] = [{"type": "Complete", "status": "True"}]
            status["completionTime"] = format_timestamp(completed_at or datetime.now(timezone.utc))
        else:
            status["failed"] = 4
            status["conditions"] = [{"type": "Failed", "status": "True"}]

    def mark_deleted(self, namespace: str, name: str) -> None:
        """What a user's delete request does to a Database holding finalizers."""
        body = self.objects[(Kind.DATABASE, namespace, name)]
        body["metadata"]["deletionTimestamp"] = format_timestamp(datetime.now(timezone.utc))
        body["metadata"]["resourceVersion"] = self._next_version()

    # PlatformClient

    async def get(self, kind: Kind, namespace: str, name: str) -> Optional[Dict[str, Any]]:
        body = self.objects.get((kind, namespace, name))
        return copy.deepcopy(body) if body is not None else None

    async def list(
        self,
        kind: Kind,
        namespace: Optional[str] = None,
        labels: Optional[Dict[str, str]] = None,
    ) -> List[Dict[str, Any]]:
        found = []
        for (stored_kind, stored_namespace, _), body in self.objects.items():
            if stored_kind != kind or (namespace is not None and stored_namespace != namespace):
                continue
            object_labels = body["metadata"].get("labels") or {}
            if labels and any(object_labels.get(k) != v for k, v in labels.items()):
                continue
            found.append(copy.deepcopy(body))
        return found

    async def create(self, kind: Kind, body: Dict[str, Any]) -> Dict[str, Any]:
        key = self._key(kind, body)
        self.calls.append(("create", kind, f"{key[1]}/{key[2]}"))
        if key in self.objects:
            raise ConflictError(f"{kind.value} {key[2]} already exists", status=409)
        stored = copy.deepcopy(body)
        metadata = stored["metadata"]
        metadata.setdefault("namespace", "default")
        self._uid += 1
        metadata["uid"] = metadata.get("uid") or f"uid-{self._uid}"
        metadata["resourceVersion"] = self._next_version()
        if kind == Kind.DATABASE:
            metadata["generation"] = 1
        self.objects[key] = stored
        self._emit("ADDED", stored)
        return copy.deepcopy(stored)

    def _check_version(self, kind: Kind, key: ObjectKey, body: Dict[str, Any]) -> Dict[str, Any]:
        live = self.objects.get(key)
        if live is None:
            raise NotFoundError(f"{kind.value} {key[2]} not found", status=404)
        expected = body["metadata"].get("resourceVersion")
        if expected and expected != live["metadata"]["resourceVersion"]:
            raise ConflictError(f"{kind.value} {key[2]} was modified", status=409)
        return live

    async def update(self, kind: Kind, body: Dict[str, Any]) -> Dict[str, Any]:
        key = self._key(kind, body)
        self.calls.append(("update", kind, f"{key[1]}/{key[2]}"))
        live = self._check_version(kind, key, body)

        stored = copy.deepcopy(body)
        metadata = stored["metadata"]
        # System-owned metadata is not writable through update
        for field in ("uid", "generation", "deletionTimestamp"):
            if field in live["metadata"]:
                metadata[field] = live["metadata"][field]
            else:
                metadata.pop(field, None)
        if "status" in live:
            stored["status"] = copy.deepcopy(live["status"])
        else:
            stored.pop("status", None)
        if kind == Kind.DATABASE and stored.get("spec") != live.get("spec"):
            metadata["generation"] = live["metadata"].get("generation", 1) + 1
        metadata["resourceVersion"] = self._next_version()

        if metadata.get("deletionTimestamp") and not metadata.get("finalizers"):
            del self.objects[key]
            self._emit("DELETED", stored)
            return copy.deepcopy(stored)

        self.objects[key] = stored
        self._emit("MODIFIED", stored)
        return copy.deepcopy(stored)

    async def update_status(self, kind: Kind, body: Dict[str, Any]) -> Dict[str, Any]:
        key = self._key(kind, body)
        self.calls.append(("update_status", kind, f"{key[1]}/{key[2]}"))
        live = self._check_version(kind, key, body)
        live["status"] = copy.deepcopy(body.get("status") or {})
        live["metadata"]["resourceVersion"] = self._next_version()
        return copy.deepcopy(live)

    async def delete(self, kind: Kind, namespace: str, name: str) -> bool:
        self.calls.append(("delete", kind, f"{namespace}/{name}"))
        key = (kind, namespace, name)
        live = self.objects.get(key)
        if live is None:
            return False
        if kind == Kind.DATABASE and live["metadata"].get("finalizers"):
            self.mark_deleted(namespace, name)
            return True
        del self.objects[key]
        self._emit("DELETED", live)
        return True

    async def watch(self, kind: Kind, namespace: Optional[str] = None) -> AsyncIterator[WatchEvent]:
        while True:
            event = await self.events.get()
            metadata = event.object.get("metadata", {})
            if event.object.get("kind") != kind.value:
                continue
            if namespace is not None and metadata.get("namespace") != namespace:
                continue
            yield event


class FakeLauncher(ExecutionUnitLauncher):
    """Launcher whose units finish only when a test says so."""

    def __init__(self):
        self.launched: List[ExecutionSpec] = []
        self.states: Dict[str, ExecutionState] = {}

    async def launch(self, spec: ExecutionSpec) -> str:
        self.launched.append(spec)
        self.states[spec.name] = ExecutionState.RUNNING
        return spec.name

    async def poll(self, namespace: str, unit_id: str) -> ExecutionState:
        return self.states.get(unit_id, ExecutionState.FAILED)

    def finish(self, unit_id: str, state: ExecutionState = ExecutionState.SUCCEEDED) -> None:
        self.states[unit_id] = state

    def names(self, job_type: Optional[str] = None) -> List[str]:
        return [
            spec.name for spec in self.launched
            if job_type is None or spec.labels.get("dboperator.io/job-type") == job_type
        ]


class FakeSecretStore(SecretStore):
    def __init__(self):
        self.values: Dict[str, Dict[str, str]] = {}
        self.fail = False

    async def put(self, path: str, values: Dict[str, str]) -> None:
        if self.fail:
            raise SecretStoreError(f"write to {path} refused")
        self.values[path] = dict(values)

    async def get(self, path: str) -> Optional[Dict[str, str]]:
        return self.values.get(path)


class FakeSecretStoreFactory(SecretStoreFactory):
    def __init__(self, platform: PlatformClient, store: FakeSecretStore):
        super().__init__(platform)
        self.store = store

    async def for_database(self, database: Database) -> Optional[SecretStore]:
        consul = database.spec.auth.consul
        if consul is None or not consul.enabled:
            return None
        return self.store


class Clock:
    """Settable clock for the controller."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def database_body(
    name: str = "orders",
    namespace: str = "shop",
    engine: str = "PostgreSQL",
    version: str = "16.1",
    replicas: int = 1,
    mode: str = "Standalone",
    finalizers: Optional[List[str]] = None,
    **spec: Any,
) -> Dict[str, Any]:
    """Database resource body as a user would submit it."""
    body_spec: Dict[str, Any] = {
        "engine": engine,
        "version": version,
        "topology": {"mode": mode, "replicas": replicas},
        "storage": {"size": "10Gi"},
    }
    body_spec.update(spec)
    return {
        "apiVersion": "db.platform.io/v1",
        "kind": "Database",
        "metadata": {"name": name, "namespace": namespace, "finalizers": list(finalizers or [])},
        "spec": body_spec,
    }


@pytest.fixture
def test_settings() -> Settings:
    """Settings for testing."""
    return Settings(
        _env_file=None,
        environment="testing",
        workers=2,
        backoff_base_seconds=0.01,
        backoff_max_seconds=0.05,
        reconcile_timeout_seconds=5.0,
    )


@pytest.fixture
def platform() -> FakePlatform:
    return FakePlatform()


@pytest.fixture
def launcher() -> FakeLauncher:
    return FakeLauncher()


@pytest.fixture
def secret_store() -> FakeSecretStore:
    return FakeSecretStore()


@pytest.fixture
def clock() -> Clock:
    # A Sunday, 03:00 UTC
    return Clock(datetime(2024, 6, 2, 3, 0, tzinfo=timezone.utc))


@pytest.fixture
def orchestrator(platform, launcher, test_settings) -> JobOrchestrator:
    return JobOrchestrator(platform, launcher, test_settings)


@pytest.fixture
def rotation(platform, launcher, secret_store, test_settings) -> CredentialRotationManager:
    return CredentialRotationManager(
        platform,
        launcher,
        FakeSecretStoreFactory(platform, secret_store),
        test_settings,
    )


@pytest.fixture
def registry(platform, test_settings) -> EngineRegistry:
    return EngineRegistry.default(platform, test_settings)


@pytest.fixture
def controller(platform, registry, orchestrator, rotation, test_settings, clock) -> DatabaseController:
    return DatabaseController(platform, registry, orchestrator, rotation, test_settings, clock=clock)


@pytest.fixture
def finalizer(test_settings) -> str:
    return test_settings.finalizer
