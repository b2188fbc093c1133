"""
Credential rotation.

Rotation is a persisted state machine stored in status.rotationStatus:

    Idle -> CreatingNew -> Cutover -> Revoking -> Complete -> Idle

advance() performs exactly one transition per call and never waits: every
step that depends on an execution unit launches it, records its id and
checks on it during a later reconciliation. All cross-call state lives in
status and in the credential slots, so a controller restart at any point
resumes where the previous process stopped.
"""
from datetime import datetime, timedelta, tzinfo
from typing import Any, Dict, List, Optional

from croniter import croniter

from dboperator.config.logging import get_logger
from dboperator.config.settings import Settings, settings as default_settings
from dboperator.engines.base import Engine
from dboperator.exceptions import ExternalExecutionFailure, RotationError
from dboperator.models.database import (
    Database,
    RotationPhase,
    RotationPolicy,
    RotationStatus,
    RotationStrategy,
)
from dboperator.platform.base import Kind, PlatformClient
from dboperator.platform.objects import create_or_update
from dboperator.services import commands
from dboperator.services.credentials import CredentialSlot, CredentialSlots
from dboperator.services.jobs import (
    JOB_TYPE_LABEL,
    ExecutionSpec,
    ExecutionState,
    ExecutionUnitLauncher,
    service_host,
    unit_name,
)
from dboperator.services.vault import SecretStoreFactory
from dboperator.utils.security import (
    decode_secret_data,
    encode_secret_data,
    generate_password,
    generate_suffix,
)
from dboperator.utils.timeutils import parse_duration, utcnow

logger = get_logger(__name__)


def _secret_env(name: str, secret: str, key: str) -> Dict[str, Any]:
    return {"name": name, "valueFrom": {"secretKeyRef": {"name": secret, "key": key}}}


def next_fire_time(schedule: str, after: datetime, zone: tzinfo) -> datetime:
    """Next cron firing strictly after ``after``, evaluated in ``zone``."""
    local = after.astimezone(zone)
    return croniter(schedule, local).get_next(datetime).astimezone(after.tzinfo)


class CredentialRotationManager:
    """Drives the rotation sub-machine of one Database per call."""

    def __init__(
        self,
        platform: PlatformClient,
        launcher: ExecutionUnitLauncher,
        secret_stores: Optional[SecretStoreFactory] = None,
        settings: Optional[Settings] = None,
    ):
        self.platform = platform
        self.launcher = launcher
        self.settings = settings or default_settings
        self.secret_stores = secret_stores or SecretStoreFactory(platform, self.settings)

    # ------------------------------------------------------------------
    # scheduling
    # ------------------------------------------------------------------

    @staticmethod
    def in_flight(database: Database) -> bool:
        status = database.status.rotation_status
        return status is not None and status.phase != RotationPhase.IDLE

    def schedule(self, database: Database, now: datetime, zone: tzinfo) -> RotationStatus:
        """Make sure rotation status exists and nextRotation is known."""
        policy = database.spec.auth.rotation_policy
        status = database.status.rotation_status
        if status is None:
            status = database.status.rotation_status = RotationStatus()
        if status.next_rotation is None and policy and policy.schedule:
            after = status.last_rotation or now
            status.next_rotation = next_fire_time(policy.schedule, after, zone)
        return status

    def is_due(self, policy: Optional[RotationPolicy], status: Optional[RotationStatus], now: datetime) -> bool:
        """
        Whether advance() should run this cycle.

        An in-flight rotation is always due. An idle one is due once now
        reaches nextRotation.
        """
        if policy is None or not policy.enabled:
            return False
        if status is not None and status.phase != RotationPhase.IDLE:
            return True
        if status is None or status.next_rotation is None:
            return False
        return now >= status.next_rotation

    def stuck_threshold(self, policy: Optional[RotationPolicy]) -> timedelta:
        if policy and policy.stuck_threshold:
            return parse_duration(policy.stuck_threshold)
        return timedelta(seconds=self.settings.rotation_stuck_threshold_seconds)

    def is_stuck(self, database: Database, now: datetime) -> bool:
        """A non-idle rotation running longer than its threshold."""
        status = database.status.rotation_status
        if status is None or status.phase == RotationPhase.IDLE or status.started_at is None:
            return False
        return now - status.started_at > self.stuck_threshold(database.spec.auth.rotation_policy)

    # ------------------------------------------------------------------
    # state machine
    # ------------------------------------------------------------------

    async def advance(
        self,
        database: Database,
        engine: Engine,
        now: Optional[datetime] = None,
        zone: Optional[tzinfo] = None,
    ) -> RotationPhase:
        """
        Perform one rotation transition.

        Args:
            database: Database whose status.rotationStatus is advanced in place
            engine: Engine of the Database (default login name)
            now: Current time
            zone: Clock the rotation schedule is evaluated in

        Returns:
            Phase after the call

        Raises:
            ExternalExecutionFailure: An execution unit failed; the phase is kept
                and the next call launches a fresh unit
            SecretStoreError: Vault mirroring failed; rotation stays Idle
            RotationError: Credential slots are in an impossible state
        """
        now = now or utcnow()
        status = database.status.rotation_status
        if status is None:
            status = database.status.rotation_status = RotationStatus()

        before = status.phase
        handlers = {
            RotationPhase.IDLE: self._start,
            RotationPhase.CREATING_NEW: self._check_grant,
            RotationPhase.CUTOVER: self._cutover,
            RotationPhase.REVOKING: self._check_revoke,
            RotationPhase.COMPLETE: self._complete,
        }
        await handlers[before](database, engine, status, now, zone)

        if status.phase != before:
            logger.info(
                "rotation_phase_changed",
                database=database.key,
                from_phase=before.value,
                to_phase=status.phase.value,
                unit=status.job_name,
            )
        return status.phase

    def _strategy(self, database: Database) -> RotationStrategy:
        policy = database.spec.auth.rotation_policy
        return policy.strategy if policy else RotationStrategy.TWO_PHASE

    async def _stage_new_credentials(self, database: Database, engine: Engine) -> None:
        """Write the `new` slot and mirror it to the vault if configured."""
        slots = CredentialSlots(database)
        current = await slots.read_data(self.platform, CredentialSlot.CURRENT)
        if current is None:
            raise RotationError(f"current credentials {slots.name_for(CredentialSlot.CURRENT)} missing")

        current_user = decode_secret_data(current).get("username") or engine.default_username
        if self._strategy(database) == RotationStrategy.IMMEDIATE:
            new_user = current_user
        else:
            new_user = f"{engine.default_username}_{generate_suffix()}"
        values = {
            "username": new_user,
            "password": generate_password(self.settings.password_length),
        }
        encoded = encode_secret_data(values)

        def mutate(live: Dict[str, Any]) -> None:
            live["data"] = dict(encoded)

        await create_or_update(
            self.platform,
            Kind.SECRET,
            slots.secret_body(CredentialSlot.NEW, encoded),
            mutate,
        )

        store = await self.secret_stores.for_database(database)
        if store is not None:
            async with store:
                await store.put(self.secret_stores.vault_path(database), values)

    def _unit_env(self, database: Database, engine: Engine) -> List[Dict[str, Any]]:
        port = database.spec.networking.port or engine.default_port
        return [
            {"name": "DB_HOST", "value": service_host(database)},
            {"name": "DB_PORT", "value": str(port)},
        ]

    async def _launch_grant(self, database: Database, engine: Engine, now: datetime) -> str:
        slots = CredentialSlots(database)
        current = slots.name_for(CredentialSlot.CURRENT)
        new = slots.name_for(CredentialSlot.NEW)
        spec = ExecutionSpec(
            name=unit_name(database, "rotation-create", now),
            owner=database,
            image=commands.image_for(database),
            command=commands.grant_command(database, self._strategy(database)),
            env=self._unit_env(database, engine) + [
                _secret_env("OLD_USERNAME", current, "username"),
                _secret_env("PGPASSWORD", current, "password"),
                _secret_env("NEW_USERNAME", new, "username"),
                _secret_env("NEW_PASSWORD", new, "password"),
            ],
            labels={JOB_TYPE_LABEL: "rotation"},
            container_name="rotation",
        )
        return await self.launcher.launch(spec)

    async def _launch_revoke(self, database: Database, engine: Engine, now: datetime) -> str:
        slots = CredentialSlots(database)
        current = slots.name_for(CredentialSlot.CURRENT)
        old = slots.name_for(CredentialSlot.OLD)
        spec = ExecutionSpec(
            name=unit_name(database, "rotation-revoke", now),
            owner=database,
            image=commands.image_for(database),
            command=commands.revoke_command(database),
            env=self._unit_env(database, engine) + [
                _secret_env("OLD_USERNAME", old, "username"),
                _secret_env("NEW_USERNAME", current, "username"),
                _secret_env("PGPASSWORD", current, "password"),
            ],
            labels={JOB_TYPE_LABEL: "rotation"},
            container_name="rotation",
        )
        return await self.launcher.launch(spec)

    async def _start(self, database, engine, status: RotationStatus, now, zone) -> None:
        # Idle -> CreatingNew; a vault failure leaves the rotation Idle
        await self._stage_new_credentials(database, engine)
        status.job_name = await self._launch_grant(database, engine, now)
        status.started_at = now
        status.phase = RotationPhase.CREATING_NEW

    async def _check_grant(self, database, engine, status: RotationStatus, now, zone) -> None:
        if not status.job_name:
            # Re-entry after a failed grant: stage again and launch a fresh unit
            await self._stage_new_credentials(database, engine)
            status.job_name = await self._launch_grant(database, engine, now)
            return

        state = await self.launcher.poll(database.namespace, status.job_name)
        if state is ExecutionState.RUNNING:
            return
        if state is ExecutionState.FAILED:
            failed = status.job_name
            status.job_name = None
            raise ExternalExecutionFailure(failed, "credential grant unit failed", reason="RotationGrantFailed")

        status.job_name = None
        status.phase = RotationPhase.CUTOVER

    async def _cutover(self, database, engine, status: RotationStatus, now, zone) -> None:
        """
        Promote `new` to `current`, keeping the previous value in `old`.

        Safe to repeat after a crash between any two writes: an existing
        `old` backup is never overwritten, and an empty `new` slot next to
        a populated `old` one means promotion already happened.
        """
        slots = CredentialSlots(database)
        new = await slots.read_data(self.platform, CredentialSlot.NEW)
        old = await slots.read_data(self.platform, CredentialSlot.OLD)

        if new is None:
            if old is None:
                raise RotationError("cutover found neither new nor old credentials")
        else:
            current = await slots.read(self.platform, CredentialSlot.CURRENT)
            if current is None:
                raise RotationError(f"current credentials {slots.name_for(CredentialSlot.CURRENT)} missing")
            if old is None:
                await self.platform.create(
                    Kind.SECRET,
                    slots.secret_body(CredentialSlot.OLD, current.get("data") or {}),
                )
            if (current.get("data") or {}) != new:
                current["data"] = dict(new)
                await self.platform.update(Kind.SECRET, current)
            await self.platform.delete(Kind.SECRET, database.namespace, slots.name_for(CredentialSlot.NEW))
            logger.info("credentials_promoted", database=database.key)

        if self._strategy(database) == RotationStrategy.TWO_PHASE:
            status.job_name = await self._launch_revoke(database, engine, now)
        else:
            status.job_name = None
        status.phase = RotationPhase.REVOKING

    async def _check_revoke(self, database, engine, status: RotationStatus, now, zone) -> None:
        two_phase = self._strategy(database) == RotationStrategy.TWO_PHASE
        if two_phase and not status.job_name:
            status.job_name = await self._launch_revoke(database, engine, now)
            return

        if two_phase:
            state = await self.launcher.poll(database.namespace, status.job_name)
            if state is ExecutionState.RUNNING:
                return
            if state is ExecutionState.FAILED:
                failed = status.job_name
                status.job_name = None
                raise ExternalExecutionFailure(failed, "credential revoke unit failed", reason="RotationRevokeFailed")

        slots = CredentialSlots(database)
        await self.platform.delete(Kind.SECRET, database.namespace, slots.name_for(CredentialSlot.OLD))
        status.job_name = None
        status.phase = RotationPhase.COMPLETE

    async def _complete(self, database, engine, status: RotationStatus, now, zone) -> None:
        policy = database.spec.auth.rotation_policy
        status.last_rotation = now
        status.job_name = None
        status.started_at = None
        status.next_rotation = None
        if policy and policy.schedule:
            status.next_rotation = next_fire_time(policy.schedule, now, zone or now.tzinfo)
        status.phase = RotationPhase.IDLE
