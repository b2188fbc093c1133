"""
Scenario tests for the Database reconciler.
"""
import copy
from datetime import datetime, timezone

import pytest

from dboperator.exceptions import ConflictError, UnimplementedBackendError, ValidationError
from dboperator.models.database import ConditionType, Database, DatabasePhase, RotationPhase
from dboperator.platform.base import Kind

from tests.conftest import database_body

KEY = "shop/orders"

SUNDAY_WINDOW = {"windows": [{"dayOfWeek": 0, "startTime": "02:00", "duration": "4h"}]}


async def create(platform, finalizer, **kwargs) -> None:
    await platform.create(Kind.DATABASE, database_body(finalizers=[finalizer], **kwargs))


def stored(platform) -> Database:
    return Database.from_body(platform.stored(Kind.DATABASE, "shop", "orders"))


def condition(platform, condition_type: ConditionType):
    return stored(platform).status.get_condition(condition_type)


async def edit_spec(platform, **changes) -> None:
    body = copy.deepcopy(platform.stored(Kind.DATABASE, "shop", "orders"))
    body["spec"].update(changes)
    await platform.update(Kind.DATABASE, body)


def image(platform) -> str:
    workload = platform.stored(Kind.STATEFUL_SET, "shop", "orders")
    return workload["spec"]["template"]["spec"]["containers"][0]["image"]


@pytest.mark.asyncio
async def test_missing_database_is_a_no_op(controller, platform):
    result = await controller.reconcile(KEY)
    assert not result.failed
    assert result.requeue_after is None
    assert not platform.calls


@pytest.mark.asyncio
async def test_first_reconcile_adds_finalizer_only(controller, platform, finalizer):
    await platform.create(Kind.DATABASE, database_body())

    result = await controller.reconcile(KEY)

    assert result.requeue_after == 0
    assert stored(platform).metadata.finalizers == [finalizer]
    assert platform.stored(Kind.STATEFUL_SET, "shop", "orders") is None


@pytest.mark.asyncio
async def test_provisioning_then_ready(controller, platform, finalizer, test_settings):
    await create(platform, finalizer)

    result = await controller.reconcile(KEY)
    assert not result.failed
    assert result.requeue_after == test_settings.resync_period_seconds

    for kind, name in (
        (Kind.PERSISTENT_VOLUME_CLAIM, "orders-data"),
        (Kind.CONFIG_MAP, "orders-config"),
        (Kind.SECRET, "orders-credentials"),
        (Kind.SERVICE, "orders"),
        (Kind.STATEFUL_SET, "orders"),
    ):
        assert platform.stored(kind, "shop", name) is not None, (kind, name)

    database = stored(platform)
    assert database.status.phase is DatabasePhase.PROVISIONING
    assert database.status.endpoint == "orders.shop.svc.cluster.local:5432"
    assert database.status.current_version == "16.1"
    assert database.status.observed_generation == database.metadata.generation
    assert not database.status.get_condition(ConditionType.READY).status

    platform.set_ready_replicas("shop", "orders", 1)
    await controller.reconcile(KEY)

    database = stored(platform)
    assert database.status.phase is DatabasePhase.READY
    assert database.status.ready_replicas == 1
    assert database.status.health.status == "Healthy"
    assert database.status.get_condition(ConditionType.READY).status


@pytest.mark.asyncio
async def test_repeated_reconciles_create_nothing_twice(controller, platform, finalizer):
    await create(platform, finalizer)
    for _ in range(4):
        await controller.reconcile(KEY)

    creates = platform.writes("create")
    assert len(creates) == len(set(creates))
    # Nothing drifted, so nothing but status was written after the first pass
    assert not [call for call in platform.writes("update") if call[1] != Kind.DATABASE]


@pytest.mark.asyncio
async def test_retain_deletion_orphans_owned_objects(controller, platform, finalizer):
    await create(platform, finalizer)
    await controller.reconcile(KEY)

    platform.mark_deleted("shop", "orders")
    result = await controller.reconcile(KEY)

    assert not result.failed
    assert platform.stored(Kind.DATABASE, "shop", "orders") is None
    assert not platform.writes("delete")
    for kind, name in (
        (Kind.PERSISTENT_VOLUME_CLAIM, "orders-data"),
        (Kind.SECRET, "orders-credentials"),
        (Kind.STATEFUL_SET, "orders"),
    ):
        assert platform.stored(kind, "shop", name)["metadata"]["ownerReferences"] == []


@pytest.mark.asyncio
async def test_deleting_phase_is_kept(controller, platform, finalizer):
    await platform.create(
        Kind.DATABASE, database_body(finalizers=[finalizer, "example.com/other"])
    )
    await controller.reconcile(KEY)
    platform.mark_deleted("shop", "orders")

    await controller.reconcile(KEY)
    database = stored(platform)
    assert database.status.phase is DatabasePhase.DELETING
    assert database.metadata.finalizers == ["example.com/other"]

    # Our finalizer is gone: later attempts leave the object alone
    writes = len(platform.calls)
    result = await controller.reconcile(KEY)
    assert not result.failed
    assert len(platform.calls) == writes
    assert stored(platform).status.phase is DatabasePhase.DELETING


@pytest.mark.asyncio
async def test_snapshot_deletion_launches_unowned_backup(controller, platform, launcher, finalizer):
    await create(platform, finalizer, lifecycle={"deletionPolicy": "Snapshot"})
    await controller.reconcile(KEY)

    platform.mark_deleted("shop", "orders")
    await controller.reconcile(KEY)

    assert platform.stored(Kind.DATABASE, "shop", "orders") is None
    assert launcher.launched[-1].owned is False
    assert "backup" in launcher.launched[-1].name


@pytest.mark.asyncio
async def test_upgrade_waits_for_maintenance_window(controller, platform, finalizer, clock, test_settings):
    await create(platform, finalizer, maintenance=SUNDAY_WINDOW)
    await controller.reconcile(KEY)
    platform.set_ready_replicas("shop", "orders", 1)
    await edit_spec(platform, version="16.2")

    # Monday: far from the next window, the periodic resync comes first
    clock.now = datetime(2024, 6, 3, 3, 0, tzinfo=timezone.utc)
    result = await controller.reconcile(KEY)
    assert not result.failed
    assert result.requeue_after == test_settings.resync_period_seconds
    assert stored(platform).status.current_version == "16.1"
    assert image(platform) == "postgres:16.1"
    upgrading = condition(platform, ConditionType.UPGRADING)
    assert not upgrading.status
    assert upgrading.reason == "MaintenanceWindowClosed"
    assert "2024-06-09T02:00:00+00:00" in upgrading.message

    # Two minutes before the window opens
    clock.now = datetime(2024, 6, 9, 1, 58, tzinfo=timezone.utc)
    result = await controller.reconcile(KEY)
    assert result.deferral.reason == "MaintenanceWindowClosed"
    assert result.requeue_after == 120
    assert image(platform) == "postgres:16.1"

    # Inside the window
    clock.now = datetime(2024, 6, 9, 2, 30, tzinfo=timezone.utc)
    result = await controller.reconcile(KEY)
    assert not result.failed
    assert image(platform) == "postgres:16.2"
    database = stored(platform)
    assert database.status.current_version == "16.2"
    assert database.status.get_condition(ConditionType.UPGRADING).reason == "UpgradeApplied"


@pytest.mark.asyncio
async def test_upgrade_without_windows_is_immediate(controller, platform, finalizer):
    await create(platform, finalizer)
    await controller.reconcile(KEY)
    await edit_spec(platform, version="16.2")

    await controller.reconcile(KEY)

    assert image(platform) == "postgres:16.2"
    # Not ready yet: the upgrade keeps the phase until replicas come back
    assert stored(platform).status.phase is DatabasePhase.UPGRADING


@pytest.mark.asyncio
async def test_downgrade_is_rejected(controller, platform, finalizer):
    await create(platform, finalizer)
    await controller.reconcile(KEY)
    await edit_spec(platform, version="15.4")

    result = await controller.reconcile(KEY)

    assert isinstance(result.error, ValidationError)
    assert "downgrade" in result.error.message
    assert image(platform) == "postgres:16.1"
    assert stored(platform).status.phase is DatabasePhase.FAILED


@pytest.mark.asyncio
async def test_unimplemented_backend_fails_without_side_effects(controller, platform, finalizer):
    await create(platform, finalizer, engine="MongoDB", version="7.0.2")

    result = await controller.reconcile(KEY)

    assert isinstance(result.error, UnimplementedBackendError)
    database = stored(platform)
    assert database.status.phase is DatabasePhase.FAILED
    available = database.status.get_condition(ConditionType.ENGINE_AVAILABLE)
    assert not available.status
    assert available.reason == "UnimplementedBackend"
    assert not platform.writes("create", Kind.STATEFUL_SET)
    assert not platform.writes("create", Kind.PERSISTENT_VOLUME_CLAIM)


@pytest.mark.asyncio
async def test_invalid_spec_reports_every_problem(controller, platform, finalizer):
    await create(platform, finalizer, replicas=3, backup={"enabled": True})

    result = await controller.reconcile(KEY)

    assert isinstance(result.error, ValidationError)
    assert len(result.error.problems) == 2
    validated = condition(platform, ConditionType.VALIDATED)
    assert not validated.status
    assert validated.reason == "ValidationFailed"
    assert platform.stored(Kind.PERSISTENT_VOLUME_CLAIM, "shop", "orders-data") is None


@pytest.mark.asyncio
async def test_paused_database_is_left_alone(controller, platform, finalizer):
    await create(platform, finalizer, lifecycle={"paused": True})

    result = await controller.reconcile(KEY)

    assert not result.failed
    assert stored(platform).status.phase is DatabasePhase.PAUSED
    assert platform.stored(Kind.STATEFUL_SET, "shop", "orders") is None

    await edit_spec(platform, lifecycle={"paused": False})
    await controller.reconcile(KEY)
    assert stored(platform).status.phase is DatabasePhase.PROVISIONING
    assert platform.stored(Kind.STATEFUL_SET, "shop", "orders") is not None


@pytest.mark.asyncio
async def test_restore_runs_before_workload(controller, platform, launcher, finalizer, test_settings):
    await create(platform, finalizer, restore={"backupName": "nightly-0601"})

    result = await controller.reconcile(KEY)
    assert result.deferral.reason == "RestoreInProgress"
    assert result.requeue_after == test_settings.restore_poll_seconds
    assert platform.stored(Kind.STATEFUL_SET, "shop", "orders") is None
    assert condition(platform, ConditionType.RESTORED).reason == "RestoreInProgress"

    launcher.finish(stored(platform).status.restore_status.job_name)
    result = await controller.reconcile(KEY)

    assert not result.failed
    assert platform.stored(Kind.STATEFUL_SET, "shop", "orders") is not None
    restored = condition(platform, ConditionType.RESTORED)
    assert restored.status
    assert restored.reason == "RestoreCompleted"


@pytest.mark.asyncio
async def test_restore_after_workload_exists_is_skipped(controller, platform, launcher, finalizer):
    await create(platform, finalizer)
    await controller.reconcile(KEY)
    await edit_spec(platform, restore={"backupName": "nightly-0601"})

    await controller.reconcile(KEY)

    assert not launcher.launched
    assert condition(platform, ConditionType.RESTORED).reason == "RestoreSkipped"


@pytest.mark.asyncio
async def test_scaling_phase(controller, platform, finalizer):
    await create(platform, finalizer, mode="Replicated", replicas=2)
    await controller.reconcile(KEY)
    platform.set_ready_replicas("shop", "orders", 2)
    await controller.reconcile(KEY)
    assert stored(platform).status.phase is DatabasePhase.READY

    await edit_spec(platform, topology={"mode": "Replicated", "replicas": 3})
    await controller.reconcile(KEY)

    assert platform.stored(Kind.STATEFUL_SET, "shop", "orders")["spec"]["replicas"] == 3
    assert stored(platform).status.phase is DatabasePhase.SCALING

    platform.set_ready_replicas("shop", "orders", 3)
    await controller.reconcile(KEY)
    assert stored(platform).status.phase is DatabasePhase.READY


@pytest.mark.asyncio
async def test_lost_replica_moves_ready_database_to_healing(controller, platform, finalizer):
    await create(platform, finalizer)
    await controller.reconcile(KEY)
    platform.set_ready_replicas("shop", "orders", 1)
    await controller.reconcile(KEY)

    platform.set_ready_replicas("shop", "orders", 0)
    await controller.reconcile(KEY)

    database = stored(platform)
    assert database.status.phase is DatabasePhase.HEALING
    assert database.status.health.status == "Unhealthy"


@pytest.mark.asyncio
async def test_backup_schedule_follows_spec(controller, platform, finalizer):
    backup = {"enabled": True, "schedule": "0 2 * * *", "retention": 5, "destination": {"pvc": {"size": "50Gi"}}}
    await create(platform, finalizer, backup=backup)
    await controller.reconcile(KEY)

    assert platform.stored(Kind.CRON_JOB, "shop", "orders-backup") is not None
    assert condition(platform, ConditionType.BACKUP_CONFIGURED).status

    await edit_spec(platform, backup={**backup, "enabled": False})
    await controller.reconcile(KEY)

    assert platform.stored(Kind.CRON_JOB, "shop", "orders-backup") is None
    configured = condition(platform, ConditionType.BACKUP_CONFIGURED)
    assert not configured.status
    assert configured.reason == "BackupDisabled"


@pytest.mark.asyncio
async def test_rotation_starts_when_due(controller, platform, launcher, finalizer, clock, test_settings):
    policy = {"rotationPolicy": {"enabled": True, "schedule": "0 0 1 * *"}}
    await create(platform, finalizer, auth=policy)
    await controller.reconcile(KEY)
    platform.set_ready_replicas("shop", "orders", 1)
    await controller.reconcile(KEY)

    status = stored(platform).status.rotation_status
    assert status.phase is RotationPhase.IDLE
    assert status.next_rotation == datetime(2024, 7, 1, tzinfo=timezone.utc)
    assert condition(platform, ConditionType.CREDENTIAL_ROTATION).reason == "RotationIdle"
    assert not launcher.launched

    clock.now = datetime(2024, 7, 1, 0, 5, tzinfo=timezone.utc)
    result = await controller.reconcile(KEY)

    assert result.deferral.reason == "RotationInProgress"
    assert result.requeue_after == test_settings.rotation_poll_seconds
    assert stored(platform).status.rotation_status.phase is RotationPhase.CREATING_NEW
    assert platform.stored(Kind.SECRET, "shop", "orders-credentials-new") is not None
    assert condition(platform, ConditionType.CREDENTIAL_ROTATION).reason == "RotationInProgress"


@pytest.mark.asyncio
async def test_conflict_aborts_attempt(controller, platform, finalizer, monkeypatch):
    await create(platform, finalizer)

    async def stale(kind, body):
        raise ConflictError("Database orders was modified", status=409)

    monkeypatch.setattr(platform, "update_status", stale)
    result = await controller.reconcile(KEY)

    assert isinstance(result.error, ConflictError)
    # Nothing was recorded as a failure
    assert stored(platform).status.phase is DatabasePhase.PENDING


@pytest.mark.asyncio
async def test_delete_policy_leaves_cleanup_to_owner_references(controller, platform, finalizer):
    await create(platform, finalizer, lifecycle={"deletionPolicy": "Delete"})
    await controller.reconcile(KEY)

    platform.mark_deleted("shop", "orders")
    result = await controller.reconcile(KEY)

    assert not result.failed
    assert platform.stored(Kind.DATABASE, "shop", "orders") is None
    assert not platform.writes("delete")
    workload = platform.stored(Kind.STATEFUL_SET, "shop", "orders")
    assert [ref["kind"] for ref in workload["metadata"]["ownerReferences"]] == ["Database"]


@pytest.mark.asyncio
async def test_unpausing_resumes_convergence(controller, platform, finalizer):
    await create(platform, finalizer)
    await controller.reconcile(KEY)
    platform.set_ready_replicas("shop", "orders", 1)
    await controller.reconcile(KEY)
    assert stored(platform).status.phase is DatabasePhase.READY

    await edit_spec(platform, lifecycle={"paused": True}, version="16.2")
    await controller.reconcile(KEY)
    assert stored(platform).status.phase is DatabasePhase.PAUSED
    assert image(platform) == "postgres:16.1"

    await edit_spec(platform, lifecycle={"paused": False})
    result = await controller.reconcile(KEY)

    assert not result.failed
    assert image(platform) == "postgres:16.2"
    assert stored(platform).status.phase is DatabasePhase.READY


@pytest.mark.asyncio
async def test_scale_down_stays_scaling_until_surplus_replicas_go(controller, platform, finalizer):
    await create(platform, finalizer, mode="Replicated", replicas=3)
    await controller.reconcile(KEY)
    platform.set_ready_replicas("shop", "orders", 3)
    await controller.reconcile(KEY)
    assert stored(platform).status.phase is DatabasePhase.READY

    await edit_spec(platform, topology={"mode": "Replicated", "replicas": 2})
    await controller.reconcile(KEY)

    assert platform.stored(Kind.STATEFUL_SET, "shop", "orders")["spec"]["replicas"] == 2
    database = stored(platform)
    assert database.status.phase is DatabasePhase.SCALING
    assert database.status.get_condition(ConditionType.READY).reason == "SurplusReplicas"

    # The old replica is still reported ready on the next pass
    await controller.reconcile(KEY)
    assert stored(platform).status.phase is DatabasePhase.SCALING

    platform.set_ready_replicas("shop", "orders", 2)
    await controller.reconcile(KEY)
    assert stored(platform).status.phase is DatabasePhase.READY


@pytest.mark.asyncio
async def test_auto_upgrade_does_not_bypass_maintenance_window(controller, platform, finalizer, clock):
    await create(platform, finalizer, maintenance={**SUNDAY_WINDOW, "autoUpgrade": True})
    await controller.reconcile(KEY)
    await edit_spec(platform, version="16.2")

    clock.now = datetime(2024, 6, 3, 3, 0, tzinfo=timezone.utc)
    await controller.reconcile(KEY)

    assert image(platform) == "postgres:16.1"
    assert condition(platform, ConditionType.UPGRADING).reason == "MaintenanceWindowClosed"
    assert stored(platform).spec.maintenance.auto_upgrade is True


@pytest.mark.asyncio
async def test_schema_invalid_database_is_marked_failed(controller, platform, finalizer):
    await create(platform, finalizer, replicas=0)

    result = await controller.reconcile(KEY)

    assert isinstance(result.error, ValidationError)
    assert "spec.topology.replicas" in result.error.message
    status = platform.stored(Kind.DATABASE, "shop", "orders")["status"]
    assert status["phase"] == "Failed"
    validated = next(c for c in status["conditions"] if c["type"] == ConditionType.VALIDATED.value)
    assert validated["status"] is False
    assert validated["reason"] == "ValidationFailed"
    assert platform.stored(Kind.STATEFUL_SET, "shop", "orders") is None

    # Fixing the spec lets convergence continue
    await edit_spec(platform, topology={"mode": "Standalone", "replicas": 1})
    result = await controller.reconcile(KEY)
    assert not result.failed
    assert stored(platform).status.phase is DatabasePhase.PROVISIONING
    assert condition(platform, ConditionType.VALIDATED).status


@pytest.mark.asyncio
async def test_schema_invalid_database_can_still_be_deleted(controller, platform, finalizer):
    await create(platform, finalizer)
    await controller.reconcile(KEY)
    await edit_spec(platform, maintenance={"windows": [{"dayOfWeek": 0, "startTime": "2:00", "duration": "4h"}]})
    platform.mark_deleted("shop", "orders")

    result = await controller.reconcile(KEY)

    assert not result.failed
    assert platform.stored(Kind.DATABASE, "shop", "orders") is None
    assert not platform.writes("delete")
    # Retain is the default, so owned objects are detached
    assert platform.stored(Kind.STATEFUL_SET, "shop", "orders")["metadata"]["ownerReferences"] == []
