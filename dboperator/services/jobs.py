"""
Execution units and backup/restore orchestration.

Execution units are one-shot batch Jobs. The controller launches them and
polls their state on later reconciliations; it never waits on one.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from dboperator.config.logging import get_logger
from dboperator.config.settings import Settings, settings as default_settings
from dboperator.exceptions import ConflictError, ExternalExecutionFailure
from dboperator.models.database import Database, DatabaseEngine, RestoreStatus
from dboperator.platform.base import Kind, PlatformClient
from dboperator.platform.objects import (
    LABEL_INSTANCE,
    LABEL_NAME,
    OperationResult,
    create_or_update,
    labels_for,
    object_meta,
)
from dboperator.services import commands
from dboperator.services.credentials import CredentialSlot, CredentialSlots
from dboperator.utils.timeutils import utcnow

logger = get_logger(__name__)

JOB_TYPE_LABEL = "dboperator.io/job-type"
BACKUP_MOUNT = commands.BACKUP_DIR
DEFAULT_BACKOFF_LIMIT = 3
FAILED_JOBS_HISTORY_LIMIT = 3

# Where each technology keeps its data directory, for physical restores
DATA_PATHS = {
    DatabaseEngine.POSTGRESQL: "/var/lib/postgresql/data",
}


class ExecutionState(str, Enum):
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"


class RestoreOutcome(str, Enum):
    COMPLETED = "Completed"
    IN_PROGRESS = "InProgress"


@dataclass
class ExecutionSpec:
    """Everything needed to launch one execution unit."""

    name: str
    owner: Database
    image: str
    command: List[str]
    env: List[Dict[str, Any]] = field(default_factory=list)
    labels: Dict[str, str] = field(default_factory=dict)
    volumes: List[Dict[str, Any]] = field(default_factory=list)
    volume_mounts: List[Dict[str, Any]] = field(default_factory=list)
    backoff_limit: int = DEFAULT_BACKOFF_LIMIT
    container_name: str = "task"
    # Unowned units outlive the Database (snapshots taken during deletion)
    owned: bool = True

    @property
    def namespace(self) -> str:
        return self.owner.namespace


class ExecutionUnitLauncher(ABC):
    """Launches execution units and reports their state."""

    @abstractmethod
    async def launch(self, spec: ExecutionSpec) -> str:
        """Start a unit and return its id. Launching an existing id is a no-op."""

    @abstractmethod
    async def poll(self, namespace: str, unit_id: str) -> ExecutionState:
        """Current state of a unit. A unit that no longer exists counts as failed."""


def job_spec(spec: ExecutionSpec) -> Dict[str, Any]:
    """Batch Job spec (shared by one-shot Jobs and CronJob templates)."""
    container: Dict[str, Any] = {
        "name": spec.container_name,
        "image": spec.image,
        "command": spec.command,
        "env": spec.env,
    }
    if spec.volume_mounts:
        container["volumeMounts"] = spec.volume_mounts
    pod_spec: Dict[str, Any] = {"restartPolicy": "Never", "containers": [container]}
    if spec.volumes:
        pod_spec["volumes"] = spec.volumes
    return {
        "backoffLimit": spec.backoff_limit,
        "template": {
            "metadata": {"labels": {**labels_for(spec.owner), **spec.labels}},
            "spec": pod_spec,
        },
    }


def build_job(spec: ExecutionSpec) -> Dict[str, Any]:
    metadata = object_meta(spec.owner, spec.name, spec.labels)
    if not spec.owned:
        del metadata["ownerReferences"]
    return {
        "apiVersion": "batch/v1",
        "kind": "Job",
        "metadata": metadata,
        "spec": job_spec(spec),
    }


def job_state(job: Dict[str, Any]) -> ExecutionState:
    """Read a Job's terminal conditions, falling back to pod counters."""
    status = job.get("status") or {}
    for condition in status.get("conditions") or []:
        if condition.get("status") != "True":
            continue
        if condition.get("type") == "Complete":
            return ExecutionState.SUCCEEDED
        if condition.get("type") == "Failed":
            return ExecutionState.FAILED
    if (status.get("succeeded") or 0) > 0:
        return ExecutionState.SUCCEEDED
    backoff_limit = (job.get("spec") or {}).get("backoffLimit", DEFAULT_BACKOFF_LIMIT)
    if (status.get("failed") or 0) > backoff_limit:
        return ExecutionState.FAILED
    return ExecutionState.RUNNING


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class JobLauncher(ExecutionUnitLauncher):
    """Execution units backed by batch Jobs."""

    def __init__(self, platform: PlatformClient):
        self.platform = platform

    async def launch(self, spec: ExecutionSpec) -> str:
        try:
            await self.platform.create(Kind.JOB, build_job(spec))
        except ConflictError:
            logger.info("execution_unit_already_exists", namespace=spec.namespace, unit=spec.name)
            return spec.name
        logger.info("execution_unit_launched", namespace=spec.namespace, unit=spec.name)
        return spec.name

    async def poll(self, namespace: str, unit_id: str) -> ExecutionState:
        job = await self.platform.get(Kind.JOB, namespace, unit_id)
        if job is None:
            logger.warning("execution_unit_missing", namespace=namespace, unit=unit_id)
            return ExecutionState.FAILED
        return job_state(job)


def unit_name(database: Database, purpose: str, now: Optional[datetime] = None) -> str:
    """Name for an execution unit, unique per second."""
    timestamp = int((now or utcnow()).timestamp())
    return f"{database.name}-{purpose}-{timestamp}"


def service_host(database: Database) -> str:
    return f"{database.name}.{database.namespace}.svc.cluster.local"


def connection_env(database: Database, secret_name: str) -> List[Dict[str, Any]]:
    """Connection environment read from a credential secret."""
    port = ""
    if database.status.endpoint and ":" in database.status.endpoint:
        port = database.status.endpoint.rsplit(":", 1)[1]
    elif database.spec.networking.port:
        port = str(database.spec.networking.port)
    return [
        {"name": "DB_HOST", "value": service_host(database)},
        {"name": "DB_PORT", "value": port},
        {"name": "DB_USER", "valueFrom": {"secretKeyRef": {"name": secret_name, "key": "username"}}},
        {"name": "DB_PASSWORD", "valueFrom": {"secretKeyRef": {"name": secret_name, "key": "password"}}},
        {"name": "PGPASSWORD", "valueFrom": {"secretKeyRef": {"name": secret_name, "key": "password"}}},
    ]


class JobOrchestrator:
    """Scheduled backups and one-shot restores."""

    def __init__(
        self,
        platform: PlatformClient,
        launcher: Optional[ExecutionUnitLauncher] = None,
        settings: Optional[Settings] = None,
    ):
        self.platform = platform
        self.launcher = launcher or JobLauncher(platform)
        self.settings = settings or default_settings

    # ------------------------------------------------------------------
    # shared job pieces
    # ------------------------------------------------------------------

    def credentials_secret(self, database: Database) -> str:
        return CredentialSlots(database).name_for(CredentialSlot.CURRENT)

    def backup_claim_name(self, database: Database) -> str:
        return f"{database.name}-backup"

    def destination_env(self, database: Database) -> List[Dict[str, Any]]:
        s3 = database.spec.backup.destination.s3
        if s3 is None:
            return []
        env: List[Dict[str, Any]] = [
            {
                "name": "AWS_ACCESS_KEY_ID",
                "valueFrom": {"secretKeyRef": {"name": s3.credentials_secret, "key": "access_key_id"}},
            },
            {
                "name": "AWS_SECRET_ACCESS_KEY",
                "valueFrom": {"secretKeyRef": {"name": s3.credentials_secret, "key": "secret_access_key"}},
            },
            {"name": "S3_BUCKET", "value": s3.bucket},
        ]
        if s3.region:
            env.append({"name": "AWS_REGION", "value": s3.region})
        if s3.endpoint:
            env.append({"name": "S3_ENDPOINT", "value": s3.endpoint})
        return env

    def backup_volumes(self, database: Database) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
        if database.spec.backup.destination.pvc is not None:
            volume = {"name": "backup", "persistentVolumeClaim": {"claimName": self.backup_claim_name(database)}}
        else:
            volume = {"name": "backup", "emptyDir": {}}
        return [volume], [{"name": "backup", "mountPath": BACKUP_MOUNT}]

    def backup_spec(self, database: Database, name: str) -> ExecutionSpec:
        volumes, mounts = self.backup_volumes(database)
        return ExecutionSpec(
            name=name,
            owner=database,
            image=commands.image_for(database),
            command=commands.backup_command(database),
            env=connection_env(database, self.credentials_secret(database)) + self.destination_env(database),
            labels={JOB_TYPE_LABEL: "backup"},
            volumes=volumes,
            volume_mounts=mounts,
            container_name="backup",
        )

    # ------------------------------------------------------------------
    # backups
    # ------------------------------------------------------------------

    def schedule_name(self, database: Database) -> str:
        return f"{database.name}-backup"

    async def ensure_backup_claim(self, database: Database) -> Optional[OperationResult]:
        pvc = database.spec.backup.destination.pvc
        if pvc is None:
            return None
        spec: Dict[str, Any] = {
            "accessModes": ["ReadWriteOnce"],
            "resources": {"requests": {"storage": pvc.size}},
        }
        if pvc.storage_class_name:
            spec["storageClassName"] = pvc.storage_class_name
        desired = {
            "apiVersion": "v1",
            "kind": "PersistentVolumeClaim",
            "metadata": object_meta(database, self.backup_claim_name(database)),
            "spec": spec,
        }
        result, _ = await create_or_update(self.platform, Kind.PERSISTENT_VOLUME_CLAIM, desired)
        return result

    def build_backup_schedule(self, database: Database) -> Dict[str, Any]:
        backup = database.spec.backup
        spec = self.backup_spec(database, self.schedule_name(database))
        return {
            "apiVersion": "batch/v1",
            "kind": "CronJob",
            "metadata": object_meta(database, self.schedule_name(database), spec.labels),
            "spec": {
                "schedule": backup.schedule,
                "concurrencyPolicy": "Forbid",
                # Retention is enforced by evicting the oldest job records
                "successfulJobsHistoryLimit": backup.retention,
                "failedJobsHistoryLimit": FAILED_JOBS_HISTORY_LIMIT,
                "jobTemplate": {
                    "metadata": {"labels": {**labels_for(database), **spec.labels}},
                    "spec": job_spec(spec),
                },
            },
        }

    async def ensure_backup_schedule(self, database: Database) -> OperationResult:
        """Create or update the recurring backup schedule for a Database."""
        await self.ensure_backup_claim(database)
        desired = self.build_backup_schedule(database)

        def mutate(live: Dict[str, Any]) -> None:
            spec = live.setdefault("spec", {})
            for key in ("schedule", "concurrencyPolicy", "successfulJobsHistoryLimit", "failedJobsHistoryLimit"):
                spec[key] = desired["spec"][key]
            desired_pod = desired["spec"]["jobTemplate"]["spec"]["template"]["spec"]
            pod = (
                spec.setdefault("jobTemplate", {})
                .setdefault("spec", {})
                .setdefault("template", {})
                .setdefault("spec", {})
            )
            containers = pod.setdefault("containers", [])
            if not containers:
                containers.extend(desired_pod["containers"])
            else:
                for key in ("image", "command", "env", "volumeMounts"):
                    containers[0][key] = desired_pod["containers"][0][key]
            pod["volumes"] = desired_pod["volumes"]

        result, _ = await create_or_update(self.platform, Kind.CRON_JOB, desired, mutate)
        if result is not OperationResult.UNCHANGED:
            logger.info(
                "backup_schedule_converged",
                database=database.key,
                schedule=database.spec.backup.schedule,
                retention=database.spec.backup.retention,
                result=result.value,
            )
        return result

    async def remove_backup_schedule(self, database: Database) -> bool:
        """Delete the backup schedule after backups were disabled."""
        deleted = await self.platform.delete(Kind.CRON_JOB, database.namespace, self.schedule_name(database))
        if deleted:
            logger.info("backup_schedule_removed", database=database.key)
        return deleted

    async def launch_backup(self, database: Database, owned: bool = True) -> str:
        """Launch a one-shot backup and return its unit id."""
        spec = self.backup_spec(database, unit_name(database, "backup"))
        spec.owned = owned
        return await self.launcher.launch(spec)

    async def last_successful_backup(self, database: Database) -> Optional[datetime]:
        """Completion time of the newest successful backup job."""
        jobs = await self.platform.list(
            Kind.JOB,
            namespace=database.namespace,
            labels={
                LABEL_NAME: "database",
                LABEL_INSTANCE: database.name,
                JOB_TYPE_LABEL: "backup",
            },
        )
        completed = [
            parse_timestamp((job.get("status") or {}).get("completionTime"))
            for job in jobs
            if job_state(job) is ExecutionState.SUCCEEDED
        ]
        completed = [timestamp for timestamp in completed if timestamp is not None]
        return max(completed) if completed else None

    # ------------------------------------------------------------------
    # restore
    # ------------------------------------------------------------------

    def restore_pending(self, database: Database) -> bool:
        """True while a requested restore has not completed."""
        restore = database.spec.restore
        if restore is None:
            return False
        status = database.status.restore_status
        return not (
            status is not None
            and status.backup_name == restore.backup_name
            and status.phase == "Completed"
        )

    def restore_spec(self, database: Database, name: str) -> ExecutionSpec:
        restore = database.spec.restore
        volumes, mounts = self.backup_volumes(database)
        env = connection_env(database, self.credentials_secret(database)) + self.destination_env(database)
        env.append({"name": "BACKUP_NAME", "value": restore.backup_name})

        data_path = DATA_PATHS.get(database.spec.engine)
        if data_path:
            volumes.append({"name": "data", "persistentVolumeClaim": {"claimName": f"{database.name}-data"}})
            mounts.append({"name": "data", "mountPath": data_path})
            env.append({"name": "PGDATA", "value": f"{data_path}/pgdata"})
        if restore.point_in_time:
            env.append({"name": "RECOVERY_TARGET_TIME", "value": restore.point_in_time.isoformat()})

        return ExecutionSpec(
            name=name,
            owner=database,
            image=commands.image_for(database),
            command=commands.restore_command(database, restore.backup_name),
            env=env,
            labels={JOB_TYPE_LABEL: "restore"},
            volumes=volumes,
            volume_mounts=mounts,
            container_name="restore",
        )

    async def advance_restore(self, database: Database) -> RestoreOutcome:
        """
        Move a requested restore forward by one observation.

        Launches the restore unit on first call, then polls it. Progress is
        recorded in status.restoreStatus so it survives restarts.

        Raises:
            ExternalExecutionFailure: The restore unit failed; the next call
                launches a fresh one
        """
        if not self.restore_pending(database):
            return RestoreOutcome.COMPLETED

        restore = database.spec.restore
        status = database.status.restore_status
        if status is None or status.backup_name != restore.backup_name or not status.job_name:
            name = await self.launcher.launch(self.restore_spec(database, unit_name(database, "restore")))
            database.status.restore_status = RestoreStatus(
                backup_name=restore.backup_name, job_name=name, phase="Running"
            )
            logger.info("restore_started", database=database.key, backup=restore.backup_name, unit=name)
            return RestoreOutcome.IN_PROGRESS

        state = await self.launcher.poll(database.namespace, status.job_name)
        if state is ExecutionState.RUNNING:
            return RestoreOutcome.IN_PROGRESS

        if state is ExecutionState.SUCCEEDED:
            status.phase = "Completed"
            status.completed_at = utcnow()
            logger.info("restore_completed", database=database.key, backup=restore.backup_name)
            return RestoreOutcome.COMPLETED

        failed_unit = status.job_name
        status.phase = "Failed"
        status.job_name = None
        raise ExternalExecutionFailure(
            failed_unit,
            f"restore from {restore.backup_name} failed",
            reason="RestoreFailed",
        )
