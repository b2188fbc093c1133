"""
Database reconciler.

Each call to reconcile() reads the Database, compares it with what exists on
the platform and takes the smallest set of steps that moves the two closer
together. The loop is level-triggered: nothing is remembered between calls
except what lives in the resource's status and in owned objects, so any
attempt can be interrupted and simply run again.

Order of a convergence pass:
    finalizer -> pause -> validation -> engine -> storage -> config ->
    service -> restore -> workload -> upgrade -> observe -> backups ->
    rotation -> heal -> phase -> status
"""
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError as SchemaError

from dboperator.config.logging import get_logger
from dboperator.config.settings import Settings, settings as default_settings
from dboperator.controllers.validation import validate_database
from dboperator.core.maintenance import evaluate, resolve_timezone
from dboperator.core.outcome import Deferral, ReconcileResult, earliest
from dboperator.core.state_machine import PhaseStateMachine
from dboperator.engines.base import Engine, WorkloadState
from dboperator.engines.registry import EngineRegistry
from dboperator.exceptions import (
    ConflictError,
    DBOperatorException,
    ExternalExecutionFailure,
    OperationNotImplementedError,
    PlatformError,
    RotationError,
    SecretStoreError,
    UnimplementedBackendError,
    ValidationError,
)
from dboperator.models.database import (
    ConditionType,
    Database,
    DatabasePhase,
    DatabaseStatus,
    DeletionPolicy,
    HealthStatus,
    ObjectMeta,
    RotationPhase,
    split_key,
)
from dboperator.platform.base import OWNED_KINDS, Kind, PlatformClient
from dboperator.platform.objects import (
    LABEL_INSTANCE,
    LABEL_MANAGED_BY,
    MANAGED_BY,
    add_finalizer,
    clear_owner_references,
    has_finalizer,
    remove_finalizer,
)
from dboperator.services import metrics
from dboperator.services.jobs import JobOrchestrator, RestoreOutcome
from dboperator.services.rotation import CredentialRotationManager
from dboperator.utils.timeutils import utcnow
from dboperator.utils.version import get_upgrade_type

logger = get_logger(__name__)

# Phases the controller re-enters Provisioning from
_RESTART_PHASES = frozenset({DatabasePhase.PENDING, DatabasePhase.FAILED, DatabasePhase.PAUSED})


def _schema_problems(error: SchemaError) -> List[str]:
    """Flatten pydantic errors into 'field.path: message' strings."""
    return [".".join(str(part) for part in item["loc"]) + ": " + item["msg"] for item in error.errors()]


def _raw_deletion_policy(body: Dict[str, Any]) -> str:
    spec = body.get("spec")
    lifecycle = spec.get("lifecycle") if isinstance(spec, dict) else None
    policy = lifecycle.get("deletionPolicy") if isinstance(lifecycle, dict) else None
    return policy or DeletionPolicy.RETAIN.value



class DatabaseController:
    """Reconciles Database resources towards their declared spec."""

    def __init__(
        self,
        platform: PlatformClient,
        registry: EngineRegistry,
        orchestrator: JobOrchestrator,
        rotation: CredentialRotationManager,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.platform = platform
        self.registry = registry
        self.orchestrator = orchestrator
        self.rotation = rotation
        self.settings = settings or default_settings
        self.clock = clock
        self.phases = PhaseStateMachine()

    @property
    def finalizer(self) -> str:
        return self.settings.finalizer

    async def reconcile(self, key: str) -> ReconcileResult:
        """
        Run one reconciliation attempt for a namespace/name key.

        Controller errors come back as a failed ReconcileResult so the
        caller can retry with backoff. Anything else is a bug and
        propagates.
        """
        started = time.monotonic()
        try:
            result = await self._reconcile(key)
        except ConflictError as e:
            # Stale read; the whole attempt is retried from scratch
            logger.info("reconcile_conflict", database=key, error=str(e))
            result = ReconcileResult.failure(e)
        except DBOperatorException as e:
            logger.warning("reconcile_failed", database=key, reason=e.reason, error=str(e))
            result = ReconcileResult.failure(e)

        label = result.result_label
        metrics.reconcile_total.labels(result=label).inc()
        metrics.reconcile_duration_seconds.labels(result=label).observe(time.monotonic() - started)
        if result.error is not None:
            reason = getattr(result.error, "reason", type(result.error).__name__)
            metrics.reconcile_errors_total.labels(reason=reason).inc()
        return result

    # ------------------------------------------------------------------
    # status helpers
    # ------------------------------------------------------------------

    def _set_phase(self, database: Database, phase: DatabasePhase) -> None:
        current = database.status.phase
        if current == phase:
            return
        self.phases.validate_transition(current, phase, database.key)
        database.status.phase = phase
        metrics.phase_transitions_total.labels(from_phase=current.value, to_phase=phase.value).inc()

    def _condition(
        self,
        database: Database,
        condition_type: ConditionType,
        status: bool,
        reason: str,
        message: str = "",
    ) -> None:
        database.status.set_condition(
            condition_type,
            status,
            reason,
            message,
            database.metadata.generation,
            now=self.clock(),
        )

    async def _persist_status(self, database: Database) -> None:
        database.status.observed_generation = database.metadata.generation
        database.status.last_reconcile_time = self.clock()
        updated = await self.platform.update_status(Kind.DATABASE, database.to_body())
        version = (updated.get("metadata") or {}).get("resourceVersion")
        if version:
            database.metadata.resource_version = version

    async def _update_database(self, database: Database) -> None:
        updated = await self.platform.update(Kind.DATABASE, database.to_body())
        version = (updated.get("metadata") or {}).get("resourceVersion")
        if version:
            database.metadata.resource_version = version

    async def _fail(
        self,
        database: Database,
        error: DBOperatorException,
        condition_type: Optional[ConditionType] = None,
        reason: Optional[str] = None,
    ) -> ReconcileResult:
        """Record a failed step in status and hand the error back for retry."""
        reason = reason or error.reason
        if condition_type is not None:
            self._condition(database, condition_type, False, reason, error.message)
        self._condition(database, ConditionType.READY, False, reason, error.message)
        self._set_phase(database, DatabasePhase.FAILED)
        try:
            await self._persist_status(database)
        except PlatformError as persist_error:
            logger.warning(
                "status_persist_failed",
                database=database.key,
                error=str(persist_error),
            )
        return ReconcileResult.failure(error)

    # ------------------------------------------------------------------
    # reconcile
    # ------------------------------------------------------------------

    async def _reconcile(self, key: str) -> ReconcileResult:
        namespace, name = split_key(key)
        body = await self.platform.get(Kind.DATABASE, namespace, name)
        if body is None:
            logger.debug("database_not_found", database=key)
            return ReconcileResult.done()

        try:
            database = Database.from_body(body)
        except SchemaError as e:
            return await self._handle_malformed(body, e)

        if database.is_being_deleted:
            return await self._handle_deletion(database)

        if add_finalizer(database, self.finalizer):
            await self._update_database(database)
            logger.info("finalizer_added", database=key)
            return ReconcileResult.immediately()

        if database.spec.lifecycle.paused:
            if database.status.phase != DatabasePhase.PAUSED:
                self._set_phase(database, DatabasePhase.PAUSED)
                await self._persist_status(database)
            logger.debug("database_paused", database=key)
            return ReconcileResult.done()

        try:
            validate_database(database)
        except ValidationError as e:
            logger.warning("database_invalid", database=key, problems=e.problems)
            return await self._fail(database, e, ConditionType.VALIDATED)

        try:
            engine = self.registry.resolve(database.spec.engine)
        except UnimplementedBackendError as e:
            logger.error("engine_unimplemented", database=key, engine=e.engine)
            return await self._fail(database, e, ConditionType.ENGINE_AVAILABLE)
        self._condition(database, ConditionType.ENGINE_AVAILABLE, True, "EngineResolved", engine.name)

        try:
            await engine.validate(database)
        except ValidationError as e:
            logger.warning("database_invalid", database=key, engine=engine.name, problems=e.problems)
            return await self._fail(database, e, ConditionType.VALIDATED)
        self._condition(database, ConditionType.VALIDATED, True, "ValidationSucceeded")

        if database.status.phase == DatabasePhase.PENDING:
            self._set_phase(database, DatabasePhase.PROVISIONING)

        return await self._converge(database, engine)

    async def _converge(self, database: Database, engine: Engine) -> ReconcileResult:
        deferrals: List[Deferral] = []
        now = self.clock()

        steps = (
            (ConditionType.STORAGE_READY, "StorageProvisioned", "StorageFailed", engine.ensure_storage),
            (ConditionType.CONFIG_READY, "ConfigApplied", "ConfigFailed", engine.ensure_config),
            (ConditionType.SERVICE_READY, "ServiceReady", "ServiceFailed", engine.ensure_service),
        )
        for condition_type, ok_reason, failed_reason, step in steps:
            try:
                await step(database)
            except ConflictError:
                raise
            except DBOperatorException as e:
                logger.error("convergence_step_failed", database=database.key, step=condition_type.value, error=str(e))
                return await self._fail(database, e, condition_type, failed_reason)
            self._condition(database, condition_type, True, ok_reason)
        database.status.endpoint = engine.get_endpoint(database)

        previous = await engine.read_workload(database)

        if database.spec.restore is not None:
            deferral = await self._restore(database, previous)
            if isinstance(deferral, ReconcileResult):
                return deferral
            if deferral is not None:
                self._set_phase_for_progress(database)
                await self._persist_status(database)
                return ReconcileResult(requeue_after=deferral.requeue_after, deferral=deferral)

        scaling = previous is not None and previous.replicas != database.spec.topology.replicas
        try:
            if scaling:
                logger.info(
                    "scaling_workload",
                    database=database.key,
                    from_replicas=previous.replicas,
                    to_replicas=database.spec.topology.replicas,
                )
                await engine.scale(database)
            else:
                await engine.ensure_workload(database)
        except ConflictError:
            raise
        except DBOperatorException as e:
            logger.error("workload_failed", database=database.key, error=str(e))
            return await self._fail(database, e, ConditionType.WORKLOAD_READY, "WorkloadFailed")
        self._condition(database, ConditionType.PROVISIONED, True, "Provisioned")
        if database.status.current_version is None:
            database.status.current_version = database.spec.version

        upgraded = False
        if database.status.current_version != database.spec.version:
            outcome = await self._upgrade(database, engine, now)
            if isinstance(outcome, ReconcileResult):
                return outcome
            if outcome is None:
                upgraded = True
            else:
                deferrals.append(outcome)

        workload = await engine.read_workload(database)
        ready = await self._observe(database, engine, workload)

        await self._backups(database)

        rotation_error: Optional[DBOperatorException] = None
        policy = database.spec.auth.rotation_policy
        if policy is not None and policy.enabled:
            rotation_error = await self._rotate(database, engine, ready, now)
            if self.rotation.in_flight(database):
                deferrals.append(
                    Deferral("RotationInProgress", float(self.settings.rotation_poll_seconds))
                )

        await self._heal(database, engine)

        desired = database.spec.topology.replicas
        if ready == desired:
            self._set_phase(database, DatabasePhase.READY)
            self._condition(database, ConditionType.READY, True, "Ready", f"{ready}/{desired} replicas ready")
        else:
            self._condition(
                database,
                ConditionType.READY,
                False,
                "SurplusReplicas" if ready > desired else "ReplicasNotReady",
                f"{ready}/{desired} replicas ready",
            )
            if upgraded:
                # Stays Upgrading until the new version is ready
                logger.debug("upgrade_rolling_out", database=database.key, ready=ready, desired=desired)
            elif scaling or ready > desired:
                # Scale-down is done once the surplus replicas are gone
                self._set_phase(database, DatabasePhase.SCALING)
            elif database.status.phase == DatabasePhase.READY:
                self._set_phase(database, DatabasePhase.HEALING)
            else:
                self._set_phase_for_progress(database)

        await self._persist_status(database)

        delay, deferral = earliest(float(self.settings.resync_period_seconds), deferrals)
        if deferral is not None:
            logger.debug("reconcile_deferred", database=database.key, reason=deferral.reason, requeue_after=delay)
        return ReconcileResult(requeue_after=delay, error=rotation_error, deferral=deferral)

    def _set_phase_for_progress(self, database: Database) -> None:
        if database.status.phase in _RESTART_PHASES:
            self._set_phase(database, DatabasePhase.PROVISIONING)

    # ------------------------------------------------------------------
    # steps
    # ------------------------------------------------------------------

    async def _restore(self, database: Database, workload: Optional[WorkloadState]):
        """
        Advance a requested restore.

        Returns:
            None when the restore is done or does not apply, a Deferral
            while it runs, or a failed ReconcileResult
        """
        if database.status.restore_status is None and workload is not None:
            # Restores only ever run into an empty data volume
            self._condition(
                database,
                ConditionType.RESTORED,
                False,
                "RestoreSkipped",
                "restore is only applied before the workload is first created",
            )
            return None

        try:
            outcome = await self.orchestrator.advance_restore(database)
        except ConflictError:
            raise
        except ExternalExecutionFailure as e:
            metrics.execution_failures_total.labels(reason=e.reason).inc()
            logger.error("restore_failed", database=database.key, unit=e.unit_id, error=str(e))
            return await self._fail(database, e, ConditionType.RESTORED)
        except DBOperatorException as e:
            return await self._fail(database, e, ConditionType.RESTORED, "RestoreFailed")

        if outcome is RestoreOutcome.IN_PROGRESS:
            self._condition(
                database,
                ConditionType.RESTORED,
                False,
                "RestoreInProgress",
                f"restoring from {database.spec.restore.backup_name}",
            )
            return Deferral("RestoreInProgress", float(self.settings.restore_poll_seconds))

        self._condition(
            database,
            ConditionType.RESTORED,
            True,
            "RestoreCompleted",
            f"restored from {database.spec.restore.backup_name}",
        )
        return None

    async def _upgrade(self, database: Database, engine: Engine, now: datetime):
        """
        Apply a version change if the maintenance gate allows it.

        Returns:
            None after a successful upgrade, a Deferral while the gate is
            closed, or a failed ReconcileResult
        """
        current = database.status.current_version
        desired = database.spec.version
        zone = resolve_timezone(database.spec.maintenance.timezone, self.settings.default_timezone)
        decision = evaluate(database.spec.maintenance.windows, now, zone)

        if not decision.allowed:
            resync = float(self.settings.resync_period_seconds)
            wait = decision.wait_seconds(now)
            delay = resync if wait is None else min(resync, wait)
            message = f"upgrade from {current} to {desired} waits for the next maintenance window"
            if decision.next_opening is not None:
                message = f"{message} at {decision.next_opening.isoformat()}"
            self._condition(database, ConditionType.UPGRADING, False, "MaintenanceWindowClosed", message)
            logger.info(
                "upgrade_deferred",
                database=database.key,
                from_version=current,
                to_version=desired,
                next_opening=decision.next_opening.isoformat() if decision.next_opening else None,
            )
            return Deferral("MaintenanceWindowClosed", delay, message)

        self._set_phase(database, DatabasePhase.UPGRADING)
        self._condition(database, ConditionType.UPGRADING, True, "Upgrading", f"{current} -> {desired}")
        logger.info(
            "upgrade_started",
            database=database.key,
            from_version=current,
            to_version=desired,
            upgrade_type=get_upgrade_type(current, desired).value,
        )
        try:
            await engine.upgrade(database)
        except ConflictError:
            raise
        except DBOperatorException as e:
            logger.error("upgrade_failed", database=database.key, to_version=desired, error=str(e))
            return await self._fail(database, e, ConditionType.UPGRADING, "UpgradeFailed")

        database.status.current_version = desired
        self._condition(database, ConditionType.UPGRADING, False, "UpgradeApplied", f"running {desired}")
        return None

    async def _observe(self, database: Database, engine: Engine, workload: Optional[WorkloadState]) -> int:
        """Refresh readiness and health. Returns the ready replica count."""
        desired = database.spec.topology.replicas
        ready = workload.ready_replicas if workload is not None else 0
        database.status.ready_replicas = ready

        if ready == desired:
            health, reason = "Healthy", "AllReplicasReady"
        elif ready > desired:
            health, reason = "Healthy", "SurplusReplicas"
        elif ready > 0:
            health, reason = "Degraded", "ReplicasNotReady"
        else:
            health, reason = "Unhealthy", "ReplicasNotReady"
        message = f"{ready}/{desired} replicas ready"
        self._condition(database, ConditionType.WORKLOAD_READY, ready == desired, reason, message)

        try:
            database.status.health = await engine.status(database)
        except OperationNotImplementedError:
            database.status.health = HealthStatus(status=health, message=message, last_check_time=self.clock())
        except ConflictError:
            raise
        except DBOperatorException as e:
            logger.warning("health_check_failed", database=database.key, error=str(e))
            database.status.health = HealthStatus(status=health, message=message, last_check_time=self.clock())
        return ready

    async def _backups(self, database: Database) -> None:
        backup = database.spec.backup
        if not backup.enabled:
            configured = database.status.get_condition(ConditionType.BACKUP_CONFIGURED)
            if configured is not None and configured.status:
                await self.orchestrator.remove_backup_schedule(database)
                self._condition(database, ConditionType.BACKUP_CONFIGURED, False, "BackupDisabled")
            return

        try:
            await self.orchestrator.ensure_backup_schedule(database)
            last = await self.orchestrator.last_successful_backup(database)
        except ConflictError:
            raise
        except DBOperatorException as e:
            logger.warning("backup_schedule_failed", database=database.key, error=str(e))
            self._condition(database, ConditionType.BACKUP_CONFIGURED, False, "BackupScheduleFailed", e.message)
            return

        if last is not None:
            database.status.last_backup = last
        self._condition(
            database,
            ConditionType.BACKUP_CONFIGURED,
            True,
            "BackupScheduled",
            f"schedule {backup.schedule}, keeping {backup.retention}",
        )

    async def _rotate(
        self,
        database: Database,
        engine: Engine,
        ready: int,
        now: datetime,
    ) -> Optional[DBOperatorException]:
        """Drive credential rotation one step. Returns the rotation error, if any."""
        policy = database.spec.auth.rotation_policy
        zone = resolve_timezone(database.spec.maintenance.timezone, self.settings.default_timezone)
        status = self.rotation.schedule(database, now, zone)
        error: Optional[DBOperatorException] = None

        if self.rotation.is_due(policy, status, now):
            if not self.rotation.in_flight(database) and ready == 0:
                logger.debug("rotation_waiting_for_workload", database=database.key)
            else:
                before = status.phase
                try:
                    phase = await self.rotation.advance(database, engine, now, zone)
                except ConflictError:
                    raise
                except ExternalExecutionFailure as e:
                    metrics.execution_failures_total.labels(reason=e.reason).inc()
                    logger.error("rotation_unit_failed", database=database.key, unit=e.unit_id, reason=e.reason)
                    error = e
                except (SecretStoreError, RotationError) as e:
                    logger.error("rotation_failed", database=database.key, reason=e.reason, error=str(e))
                    error = e
                else:
                    if phase != before:
                        metrics.rotation_transitions_total.labels(to_phase=phase.value).inc()

        status = database.status.rotation_status
        if self.rotation.is_stuck(database, now):
            logger.warning(
                "rotation_stuck",
                database=database.key,
                phase=status.phase.value,
                started_at=status.started_at.isoformat(),
            )
            self._condition(
                database,
                ConditionType.CREDENTIAL_ROTATION,
                False,
                "RotationStuck",
                f"rotation in {status.phase.value} since {status.started_at.isoformat()}",
            )
        elif error is not None:
            self._condition(database, ConditionType.CREDENTIAL_ROTATION, False, error.reason, error.message)
        elif status.phase == RotationPhase.IDLE:
            next_rotation = status.next_rotation.isoformat() if status.next_rotation else "unscheduled"
            self._condition(
                database,
                ConditionType.CREDENTIAL_ROTATION,
                True,
                "RotationIdle",
                f"next rotation {next_rotation}",
            )
        else:
            self._condition(
                database,
                ConditionType.CREDENTIAL_ROTATION,
                True,
                "RotationInProgress",
                f"rotation in {status.phase.value}",
            )
        return error

    async def _heal(self, database: Database, engine: Engine) -> None:
        try:
            actions = await engine.heal(database)
        except OperationNotImplementedError:
            logger.debug("heal_not_implemented", database=database.key, engine=engine.name)
            return
        except DBOperatorException as e:
            logger.warning("heal_failed", database=database.key, error=str(e))
            return
        if actions:
            logger.info("heal_actions_taken", database=database.key, actions=actions)

    # ------------------------------------------------------------------
    # deletion
    # ------------------------------------------------------------------

    async def _handle_deletion(self, database: Database) -> ReconcileResult:
        """Honor the deletion policy, then release the finalizer."""
        if not has_finalizer(database, self.finalizer):
            return ReconcileResult.done()

        if database.status.phase != DatabasePhase.DELETING:
            self._set_phase(database, DatabasePhase.DELETING)
            try:
                await self._persist_status(database)
            except PlatformError as e:
                logger.warning("status_persist_failed", database=database.key, error=str(e))

        policy = database.spec.lifecycle.deletion_policy
        logger.info("database_deleting", database=database.key, deletion_policy=policy.value)

        if policy == DeletionPolicy.SNAPSHOT:
            await self._snapshot_before_delete(database)
        elif policy == DeletionPolicy.RETAIN:
            await self._release_owned_objects(database.namespace, database.name, database.metadata.uid)

        remove_finalizer(database, self.finalizer)
        await self._update_database(database)
        logger.info("finalizer_removed", database=database.key)
        return ReconcileResult.done()

    async def _snapshot_before_delete(self, database: Database) -> None:
        """Best-effort final backup. Failure never blocks deletion."""
        try:
            engine = self.registry.resolve(database.spec.engine)
            try:
                unit = await engine.backup(database)
            except OperationNotImplementedError:
                unit = await self.orchestrator.launch_backup(database, owned=False)
        except DBOperatorException as e:
            logger.warning("final_snapshot_failed", database=database.key, error=str(e))
            return
        logger.info("final_snapshot_started", database=database.key, unit=unit)

    async def _release_owned_objects(self, namespace: str, name: str, uid: Optional[str]) -> None:
        """Detach owned objects so they survive the Database's removal."""
        labels = {LABEL_INSTANCE: name, LABEL_MANAGED_BY: MANAGED_BY}
        released = 0
        for kind in OWNED_KINDS:
            for obj in await self.platform.list(kind, namespace=namespace, labels=labels):
                if clear_owner_references(obj, uid):
                    await self.platform.update(kind, obj)
                    released += 1
        logger.info("owned_objects_retained", database=f"{namespace}/{name}", count=released)

    # ------------------------------------------------------------------
    # malformed resources
    # ------------------------------------------------------------------

    async def _handle_malformed(self, body: Dict[str, Any], error: SchemaError) -> ReconcileResult:
        """
        Reconcile a Database whose spec does not parse.

        Only metadata and status are read. A deleted resource still gets its
        finalizer released, so deletion never depends on a usable spec.
        Otherwise the resource is marked Failed with every schema problem in
        its Validated condition.
        """
        metadata = ObjectMeta.model_validate(body.get("metadata") or {})
        key = f"{metadata.namespace}/{metadata.name}"
        problems = _schema_problems(error)
        logger.warning("database_malformed", database=key, problems=problems)

        if metadata.deletion_timestamp is not None:
            if self.finalizer not in metadata.finalizers:
                return ReconcileResult.done()
            policy = _raw_deletion_policy(body)
            if policy != DeletionPolicy.DELETE.value:
                # No snapshot without a usable spec; the data is kept instead
                await self._release_owned_objects(metadata.namespace, metadata.name, metadata.uid)
            body["metadata"]["finalizers"] = [f for f in metadata.finalizers if f != self.finalizer]
            await self.platform.update(Kind.DATABASE, body)
            logger.info("finalizer_removed", database=key, deletion_policy=policy)
            return ReconcileResult.done()

        try:
            status = DatabaseStatus.model_validate(body.get("status") or {})
        except SchemaError:
            logger.warning("database_status_unreadable", database=key)
            status = DatabaseStatus()

        failure = ValidationError(problems)
        now = self.clock()
        if status.phase != DatabasePhase.FAILED:
            self.phases.validate_transition(status.phase, DatabasePhase.FAILED, key)
            metrics.phase_transitions_total.labels(
                from_phase=status.phase.value, to_phase=DatabasePhase.FAILED.value
            ).inc()
            status.phase = DatabasePhase.FAILED
        for condition_type in (ConditionType.VALIDATED, ConditionType.READY):
            status.set_condition(condition_type, False, failure.reason, failure.message, metadata.generation, now=now)
        status.observed_generation = metadata.generation
        status.last_reconcile_time = now

        body["status"] = status.model_dump(by_alias=True, exclude_none=True, mode="json")
        await self.platform.update_status(Kind.DATABASE, body)
        return ReconcileResult.failure(failure)
