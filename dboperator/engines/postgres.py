"""
PostgreSQL engine.

Runs PostgreSQL as a StatefulSet backed by a `<name>-data` claim, with
`postgresql.conf` rendered into a `<name>-config` ConfigMap and a
`<name>` Service in front of it. Credentials live in the `current`
credential slot and are generated once; rotation replaces them.
"""
from typing import Any, Dict, List, Optional

from dboperator.config.logging import get_logger
from dboperator.engines.base import Engine, WorkloadState
from dboperator.exceptions import ValidationError
from dboperator.models.database import Database, DatabaseEngine, TopologyMode
from dboperator.platform.base import Kind
from dboperator.platform.objects import (
    OperationResult,
    create_or_update,
    labels_for,
    object_meta,
    selector_labels,
)
from dboperator.services.credentials import CredentialSlot, CredentialSlots
from dboperator.utils.security import encode_secret_data, generate_password

logger = get_logger(__name__)

DATA_PATH = "/var/lib/postgresql/data"
CONFIG_PATH = "/etc/postgresql"

DEFAULT_CONFIG = {
    "listen_addresses": "'*'",
    "max_connections": "100",
    "shared_buffers": "128MB",
}


def render_config(engine_config: Dict[str, str]) -> str:
    """Render postgresql.conf from defaults plus user overrides."""
    settings = dict(DEFAULT_CONFIG)
    settings.update(engine_config)
    lines = ["# PostgreSQL Configuration"]
    lines.extend(f"{key} = {value}" for key, value in settings.items())
    return "\n".join(lines) + "\n"


def container_resources(database: Database) -> Dict[str, Dict[str, str]]:
    resources: Dict[str, Dict[str, str]] = {}
    if database.spec.resources.requests:
        resources["requests"] = dict(database.spec.resources.requests)
    if database.spec.resources.limits:
        resources["limits"] = dict(database.spec.resources.limits)
    return resources


class PostgresEngine(Engine):
    """Reference engine for PostgreSQL."""

    engine = DatabaseEngine.POSTGRESQL
    image_repository = "postgres"
    default_port = 5432
    default_username = "postgres"

    async def validate(self, database: Database) -> None:
        problems = []
        if not database.spec.version.strip():
            problems.append("version is required for PostgreSQL")
        if database.spec.topology.mode == TopologyMode.SHARDED:
            problems.append("PostgreSQL does not support sharded topology")
        if problems:
            raise ValidationError(problems, reason="EngineValidationFailed")

    # ------------------------------------------------------------------
    # storage
    # ------------------------------------------------------------------

    def data_claim_name(self, database: Database) -> str:
        return f"{database.name}-data"

    def build_data_claim(self, database: Database) -> Dict[str, Any]:
        storage = database.spec.storage
        spec: Dict[str, Any] = {
            "accessModes": ["ReadWriteOnce"],
            "resources": {"requests": {"storage": storage.size}},
        }
        if storage.storage_class_name:
            spec["storageClassName"] = storage.storage_class_name
        if storage.volume_mode:
            spec["volumeMode"] = storage.volume_mode
        return {
            "apiVersion": "v1",
            "kind": "PersistentVolumeClaim",
            "metadata": object_meta(database, self.data_claim_name(database)),
            "spec": spec,
        }

    async def ensure_storage(self, database: Database) -> OperationResult:
        # Claims are never mutated once they exist
        result, _ = await create_or_update(
            self.platform, Kind.PERSISTENT_VOLUME_CLAIM, self.build_data_claim(database)
        )
        return result

    # ------------------------------------------------------------------
    # config + credentials
    # ------------------------------------------------------------------

    def config_map_name(self, database: Database) -> str:
        return f"{database.name}-config"

    def build_config_map(self, database: Database) -> Dict[str, Any]:
        return {
            "apiVersion": "v1",
            "kind": "ConfigMap",
            "metadata": object_meta(database, self.config_map_name(database)),
            "data": {"postgresql.conf": render_config(database.spec.engine_config)},
        }

    async def ensure_config(self, database: Database) -> OperationResult:
        desired = self.build_config_map(database)

        def mutate(live: Dict[str, Any]) -> None:
            live.setdefault("data", {})
            live["data"]["postgresql.conf"] = desired["data"]["postgresql.conf"]

        result, _ = await create_or_update(self.platform, Kind.CONFIG_MAP, desired, mutate)
        credentials = await self.ensure_credentials(database)
        if credentials is not OperationResult.UNCHANGED:
            return credentials
        return result

    async def ensure_credentials(self, database: Database) -> OperationResult:
        """Create the current credential secret once. Existing data is never overwritten."""
        slots = CredentialSlots(database)
        desired = slots.secret_body(
            CredentialSlot.CURRENT,
            encode_secret_data({
                "username": self.default_username,
                "password": generate_password(self.settings.password_length),
            }),
        )
        result, _ = await create_or_update(self.platform, Kind.SECRET, desired)
        if result is OperationResult.CREATED:
            logger.info(
                "credentials_generated",
                database=database.key,
                secret=slots.name_for(CredentialSlot.CURRENT),
            )
        return result

    # ------------------------------------------------------------------
    # service
    # ------------------------------------------------------------------

    def build_service(self, database: Database) -> Dict[str, Any]:
        return {
            "apiVersion": "v1",
            "kind": "Service",
            "metadata": object_meta(database, database.name),
            "spec": self._service_spec(database),
        }

    def _service_spec(self, database: Database) -> Dict[str, Any]:
        return {
            "type": database.spec.networking.service_type,
            "selector": selector_labels(database),
            "ports": [
                {
                    "name": "postgresql",
                    "port": self.port_for(database),
                    "targetPort": self.default_port,
                    "protocol": "TCP",
                }
            ],
        }

    async def ensure_service(self, database: Database) -> OperationResult:
        desired_spec = self._service_spec(database)

        def mutate(live: Dict[str, Any]) -> None:
            spec = live.setdefault("spec", {})
            spec["type"] = desired_spec["type"]
            spec["selector"] = desired_spec["selector"]
            spec["ports"] = desired_spec["ports"]

        result, _ = await create_or_update(
            self.platform, Kind.SERVICE, self.build_service(database), mutate
        )
        return result

    def get_endpoint(self, database: Database) -> str:
        return f"{database.name}.{database.namespace}.svc.cluster.local:{self.port_for(database)}"

    # ------------------------------------------------------------------
    # workload
    # ------------------------------------------------------------------

    def _container(self, database: Database, version: str) -> Dict[str, Any]:
        current_secret = CredentialSlots(database).name_for(CredentialSlot.CURRENT)
        return {
            "name": "postgresql",
            "image": self.image_for(version),
            "args": ["-c", f"config_file={CONFIG_PATH}/postgresql.conf"],
            "ports": [{"name": "postgresql", "containerPort": self.default_port, "protocol": "TCP"}],
            "env": [
                {
                    "name": "POSTGRES_PASSWORD",
                    "valueFrom": {"secretKeyRef": {"name": current_secret, "key": "password"}},
                },
                {"name": "PGDATA", "value": f"{DATA_PATH}/pgdata"},
            ],
            "volumeMounts": [
                {"name": "data", "mountPath": DATA_PATH},
                {"name": "config", "mountPath": CONFIG_PATH},
            ],
            "readinessProbe": {
                "exec": {"command": ["pg_isready", "-U", self.default_username]},
                "initialDelaySeconds": 5,
                "periodSeconds": 10,
            },
            "resources": container_resources(database),
        }

    def _affinity(self, database: Database) -> Optional[Dict[str, Any]]:
        if not database.spec.topology.anti_affinity:
            return None
        return {
            "podAntiAffinity": {
                "preferredDuringSchedulingIgnoredDuringExecution": [
                    {
                        "weight": 100,
                        "podAffinityTerm": {
                            "labelSelector": {"matchLabels": selector_labels(database)},
                            "topologyKey": "kubernetes.io/hostname",
                        },
                    }
                ]
            }
        }

    def build_stateful_set(self, database: Database, version: str) -> Dict[str, Any]:
        pod_spec: Dict[str, Any] = {
            "containers": [self._container(database, version)],
            "volumes": [
                {"name": "data", "persistentVolumeClaim": {"claimName": self.data_claim_name(database)}},
                {"name": "config", "configMap": {"name": self.config_map_name(database)}},
            ],
        }
        affinity = self._affinity(database)
        if affinity:
            pod_spec["affinity"] = affinity

        return {
            "apiVersion": "apps/v1",
            "kind": "StatefulSet",
            "metadata": object_meta(database, database.name),
            "spec": {
                "replicas": database.spec.topology.replicas,
                "serviceName": database.name,
                "selector": {"matchLabels": selector_labels(database)},
                "template": {
                    "metadata": {"labels": labels_for(database)},
                    "spec": pod_spec,
                },
            },
        }

    async def _apply_workload(self, database: Database, version: str) -> OperationResult:
        desired = self.build_stateful_set(database, version)
        desired_container = desired["spec"]["template"]["spec"]["containers"][0]

        def mutate(live: Dict[str, Any]) -> None:
            spec = live.setdefault("spec", {})
            spec["replicas"] = database.spec.topology.replicas
            containers = spec.setdefault("template", {}).setdefault("spec", {}).setdefault("containers", [])
            if not containers:
                containers.append(desired_container)
                return
            containers[0]["image"] = desired_container["image"]
            containers[0]["resources"] = desired_container["resources"]

        result, _ = await create_or_update(self.platform, Kind.STATEFUL_SET, desired, mutate)
        return result

    async def ensure_workload(self, database: Database) -> OperationResult:
        return await self._apply_workload(database, self.running_version(database))

    async def upgrade(self, database: Database) -> OperationResult:
        logger.info(
            "postgres_upgrade_started",
            database=database.key,
            from_version=database.status.current_version,
            to_version=database.spec.version,
        )
        return await self._apply_workload(database, database.spec.version)

    async def read_workload(self, database: Database) -> Optional[WorkloadState]:
        live = await self.platform.get(Kind.STATEFUL_SET, database.namespace, database.name)
        if live is None:
            return None
        spec = live.get("spec") or {}
        status = live.get("status") or {}
        containers: List[Dict[str, Any]] = (spec.get("template") or {}).get("spec", {}).get("containers") or []
        return WorkloadState(
            replicas=int(spec.get("replicas") or 0),
            ready_replicas=int(status.get("readyReplicas") or 0),
            image=containers[0].get("image") if containers else None,
        )
