"""
Pydantic models for the Database custom resource.

The spec is authored by users (or upstream systems); the status is owned
exclusively by the controller. Field names use the platform's camelCase on the
wire and snake_case in Python.
"""
import re
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator
from pydantic.alias_generators import to_camel

from dboperator.utils.timeutils import parse_duration, utcnow

API_GROUP = "db.platform.io"
API_VERSION = f"{API_GROUP}/v1"
KIND = "Database"


class CamelModel(BaseModel):
    """Base model with camelCase aliases for platform round-trips."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        validate_assignment=False,
    )


class DatabaseEngine(str, Enum):
    """Supported database technologies."""

    POSTGRESQL = "PostgreSQL"
    MONGODB = "MongoDB"
    REDIS = "Redis"
    ELASTICSEARCH = "Elasticsearch"
    SQLITE = "SQLite"


class DatabasePhase(str, Enum):
    """Coarse lifecycle phase of a Database."""

    PENDING = "Pending"
    PROVISIONING = "Provisioning"
    READY = "Ready"
    UPGRADING = "Upgrading"
    SCALING = "Scaling"
    HEALING = "Healing"
    FAILED = "Failed"
    PAUSED = "Paused"
    DELETING = "Deleting"


class DeletionPolicy(str, Enum):
    """What happens to owned sub-resources when a Database is deleted."""

    RETAIN = "Retain"
    SNAPSHOT = "Snapshot"
    DELETE = "Delete"


class TopologyMode(str, Enum):
    """Deployment topology."""

    STANDALONE = "Standalone"
    REPLICATED = "Replicated"
    CLUSTER = "Cluster"
    SHARDED = "Sharded"


class BackupMethod(str, Enum):
    """Backup method."""

    SNAPSHOT = "Snapshot"  # filesystem / base backup
    DUMP = "Dump"  # logical dump
    WAL = "WAL"  # streaming write-ahead log archive
    INCREMENTAL = "Incremental"


class RotationPhase(str, Enum):
    """Credential rotation sub-machine phase."""

    IDLE = "Idle"
    CREATING_NEW = "CreatingNew"
    CUTOVER = "Cutover"
    REVOKING = "Revoking"
    COMPLETE = "Complete"


class RotationStrategy(str, Enum):
    """Credential rotation strategy."""

    TWO_PHASE = "TwoPhase"  # create a new user, revoke the old one
    IMMEDIATE = "Immediate"  # replace the password of the same user


class ConditionType(str, Enum):
    """Status condition types."""

    READY = "Ready"
    PROVISIONED = "Provisioned"
    VALIDATED = "Validated"
    ENGINE_AVAILABLE = "EngineAvailable"
    STORAGE_READY = "StorageReady"
    CONFIG_READY = "ConfigReady"
    SERVICE_READY = "ServiceReady"
    RESTORED = "Restored"
    WORKLOAD_READY = "WorkloadReady"
    UPGRADING = "Upgrading"
    BACKUP_CONFIGURED = "BackupConfigured"
    CREDENTIAL_ROTATION = "CredentialRotation"


# ---------------------------------------------------------------------------
# Spec
# ---------------------------------------------------------------------------


class TopologySpec(CamelModel):
    mode: TopologyMode = TopologyMode.STANDALONE
    replicas: int = Field(default=1, ge=1, le=100)
    shards: Optional[int] = Field(default=None, ge=1)
    anti_affinity: bool = False


class StorageSpec(CamelModel):
    size: str = "10Gi"
    storage_class_name: Optional[str] = None
    volume_mode: Optional[str] = None


class ResourceRequirements(CamelModel):
    requests: Dict[str, str] = Field(default_factory=dict)
    limits: Dict[str, str] = Field(default_factory=dict)


class TLSSpec(CamelModel):
    enabled: bool = False
    secret_name: Optional[str] = None


class NetworkingSpec(CamelModel):
    service_type: str = "ClusterIP"
    port: Optional[int] = Field(default=None, ge=1, le=65535)
    external_dns: Optional[str] = Field(default=None, alias="externalDNS")
    tls: Optional[TLSSpec] = None


class S3Spec(CamelModel):
    bucket: str
    region: Optional[str] = None
    endpoint: Optional[str] = None
    credentials_secret: str


class PVCSpec(CamelModel):
    size: str
    storage_class_name: Optional[str] = None


class BackupDestination(CamelModel):
    s3: Optional[S3Spec] = None
    pvc: Optional[PVCSpec] = None


class BackupSpec(CamelModel):
    enabled: bool = False
    schedule: Optional[str] = None
    method: BackupMethod = BackupMethod.SNAPSHOT
    retention: int = Field(default=7, ge=1)
    destination: BackupDestination = Field(default_factory=BackupDestination)


class RestoreSpec(CamelModel):
    backup_name: str
    point_in_time: Optional[datetime] = None


class SecretKeySelector(CamelModel):
    name: str
    key: str


class ConsulSpec(CamelModel):
    enabled: bool = False
    address: Optional[str] = None
    path: Optional[str] = None
    token_secret_ref: Optional[SecretKeySelector] = None


class RotationPolicy(CamelModel):
    enabled: bool = False
    schedule: Optional[str] = None
    strategy: RotationStrategy = RotationStrategy.TWO_PHASE
    stuck_threshold: Optional[str] = Field(
        default=None, description="Duration after which an unfinished rotation is reported as stuck"
    )


class AuthSpec(CamelModel):
    secret_name: Optional[str] = None
    consul: Optional[ConsulSpec] = None
    rotation_policy: Optional[RotationPolicy] = None


class MaintenanceWindow(CamelModel):
    day_of_week: int = Field(..., ge=0, le=6, description="0 = Sunday")
    start_time: str = Field(..., description="HH:MM")
    duration: str = Field(..., description="Duration such as 4h or 90m")

    @field_validator("start_time")
    @classmethod
    def validate_start_time(cls, v: str) -> str:
        """Validate HH:MM format."""
        if not re.fullmatch(r"([0-1][0-9]|2[0-3]):[0-5][0-9]", v):
            raise ValueError(f"startTime must be HH:MM, got {v!r}")
        return v

    @field_validator("duration")
    @classmethod
    def validate_duration(cls, v: str) -> str:
        """Validate the duration parses."""
        parse_duration(v)
        return v


class MaintenanceSpec(CamelModel):
    windows: List[MaintenanceWindow] = Field(default_factory=list)
    # Accepted for compatibility; upgrades only follow spec.version changes
    auto_upgrade: bool = False
    timezone: Optional[str] = Field(default=None, description="IANA timezone for window evaluation")


class LifecycleSpec(CamelModel):
    paused: bool = False
    deletion_policy: DeletionPolicy = DeletionPolicy.RETAIN


class DatabaseSpec(CamelModel):
    engine: DatabaseEngine
    version: str
    profile: str = "default"
    topology: TopologySpec = Field(default_factory=TopologySpec)
    storage: StorageSpec = Field(default_factory=StorageSpec)
    resources: ResourceRequirements = Field(default_factory=ResourceRequirements)
    networking: NetworkingSpec = Field(default_factory=NetworkingSpec)
    backup: BackupSpec = Field(default_factory=BackupSpec)
    restore: Optional[RestoreSpec] = None
    auth: AuthSpec = Field(default_factory=AuthSpec)
    maintenance: MaintenanceSpec = Field(default_factory=MaintenanceSpec)
    lifecycle: LifecycleSpec = Field(default_factory=LifecycleSpec)
    engine_config: Dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Status
# ---------------------------------------------------------------------------


class Condition(CamelModel):
    type: str
    status: bool
    reason: str
    message: str = ""
    last_transition_time: datetime = Field(default_factory=utcnow)
    observed_generation: int = 0

    @field_serializer("status")
    def serialize_status(self, value: bool) -> str:
        return "True" if value else "False"


class HealthStatus(CamelModel):
    status: str = "Unknown"  # Healthy, Degraded, Unhealthy, Unknown
    message: str = ""
    last_check_time: Optional[datetime] = None


class RotationStatus(CamelModel):
    phase: RotationPhase = RotationPhase.IDLE
    last_rotation: Optional[datetime] = None
    next_rotation: Optional[datetime] = None
    job_name: Optional[str] = None
    started_at: Optional[datetime] = None


class RestoreStatus(CamelModel):
    backup_name: str
    job_name: Optional[str] = None
    phase: str = "Pending"  # Pending, Running, Completed, Failed
    completed_at: Optional[datetime] = None


class DatabaseStatus(CamelModel):
    phase: DatabasePhase = DatabasePhase.PENDING
    conditions: List[Condition] = Field(default_factory=list)
    ready_replicas: int = 0
    endpoint: Optional[str] = None
    current_version: Optional[str] = None
    observed_generation: int = 0
    last_backup: Optional[datetime] = None
    health: HealthStatus = Field(default_factory=HealthStatus)
    last_reconcile_time: Optional[datetime] = None
    rotation_status: Optional[RotationStatus] = None
    restore_status: Optional[RestoreStatus] = None

    def get_condition(self, condition_type: "ConditionType | str") -> Optional[Condition]:
        """Return the condition of the given type, if present."""
        wanted = condition_type.value if isinstance(condition_type, ConditionType) else condition_type
        for condition in self.conditions:
            if condition.type == wanted:
                return condition
        return None

    def set_condition(
        self,
        condition_type: "ConditionType | str",
        status: bool,
        reason: str,
        message: str,
        generation: int,
        now: Optional[datetime] = None,
    ) -> None:
        """
        Set a condition.

        lastTransitionTime only moves when the boolean status flips;
        reason, message and observedGeneration are always refreshed.
        """
        wanted = condition_type.value if isinstance(condition_type, ConditionType) else condition_type
        existing = self.get_condition(wanted)
        if existing is None:
            self.conditions.append(
                Condition(
                    type=wanted,
                    status=status,
                    reason=reason,
                    message=message,
                    last_transition_time=now or utcnow(),
                    observed_generation=generation,
                )
            )
            return

        if existing.status != status:
            existing.last_transition_time = now or utcnow()
        existing.status = status
        existing.reason = reason
        existing.message = message
        existing.observed_generation = generation


# ---------------------------------------------------------------------------
# Resource
# ---------------------------------------------------------------------------


class ObjectMeta(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    name: str
    namespace: str = "default"
    uid: Optional[str] = None
    generation: int = 0
    resource_version: Optional[str] = None
    labels: Dict[str, str] = Field(default_factory=dict)
    annotations: Dict[str, str] = Field(default_factory=dict)
    finalizers: List[str] = Field(default_factory=list)
    deletion_timestamp: Optional[datetime] = None
    owner_references: List[Dict[str, Any]] = Field(default_factory=list)


class Database(CamelModel):
    """The Database custom resource (desired spec plus observed status)."""

    api_version: str = API_VERSION
    kind: str = KIND
    metadata: ObjectMeta
    spec: DatabaseSpec
    status: DatabaseStatus = Field(default_factory=DatabaseStatus)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def key(self) -> str:
        """Work-queue key: namespace/name."""
        return f"{self.metadata.namespace}/{self.metadata.name}"

    @property
    def is_being_deleted(self) -> bool:
        return self.metadata.deletion_timestamp is not None

    @classmethod
    def from_body(cls, body: Dict[str, Any]) -> "Database":
        """Build a Database from a platform JSON body."""
        return cls.model_validate(body)

    def to_body(self) -> Dict[str, Any]:
        """Render the platform JSON body."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


def split_key(key: str) -> "tuple[str, str]":
    """Split a namespace/name key."""
    namespace, _, name = key.partition("/")
    if not name:
        raise ValueError(f"invalid resource key: {key!r}")
    return namespace, name
