"""
Leader election using Redis for the controller manager.
Ensures only ONE replica reconciles Databases at a time.
"""
import asyncio
import socket
import uuid
from typing import Optional

import redis.asyncio as redis

from dboperator.config.logging import get_logger
from dboperator.services import metrics
from dboperator.utils.shutdown import ShutdownHandler

logger = get_logger(__name__)


def default_instance_id() -> str:
    """Hostname (the pod name in-cluster) plus a random suffix."""
    return f"{socket.gethostname()}-{uuid.uuid4().hex[:8]}"


class LeaderElection:
    """
    Simple leader election using Redis SET with NX and EX.

    The lease is renewed every third of its duration. Losing it asks the
    whole process to shut down; a restarted replica then competes again.
    """

    def __init__(
        self,
        client: redis.Redis,
        instance_id: Optional[str] = None,
        lease_duration: int = 30,
        leader_key: str = "dboperator:leader:controller",
    ):
        """
        Initialize leader election.

        Args:
            client: Redis client
            instance_id: Unique instance identifier
            lease_duration: Lease duration in seconds
            leader_key: Redis key holding the lease
        """
        self.client = client
        self.instance_id = instance_id or default_instance_id()
        self.lease_duration = lease_duration
        self.leader_key = leader_key
        self.is_leader = False

    @classmethod
    def from_url(cls, url: str, instance_id: Optional[str] = None, lease_duration: int = 30) -> "LeaderElection":
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True,
            health_check_interval=30,
        )
        return cls(client, instance_id=instance_id, lease_duration=lease_duration)

    def _set_leader(self, value: bool) -> None:
        self.is_leader = value
        metrics.leader.set(1 if value else 0)

    async def acquire_leadership(self) -> bool:
        """Try to acquire leadership."""
        acquired = await self.client.set(
            self.leader_key,
            self.instance_id,
            nx=True,
            ex=self.lease_duration,
        )

        if acquired:
            if not self.is_leader:
                logger.info("leadership_acquired", instance_id=self.instance_id)
            self._set_leader(True)
            return True

        # Check if we're already the leader
        current_leader = await self.client.get(self.leader_key)
        if current_leader == self.instance_id:
            self._set_leader(True)
            return True

        if self.is_leader:
            logger.info("leadership_lost", instance_id=self.instance_id, leader=current_leader)
        self._set_leader(False)
        return False

    async def renew_lease(self) -> bool:
        """Renew leadership lease."""
        if not self.is_leader:
            return False

        current_leader = await self.client.get(self.leader_key)
        if current_leader == self.instance_id:
            await self.client.expire(self.leader_key, self.lease_duration)
            logger.debug("leadership_lease_renewed", instance_id=self.instance_id)
            return True

        logger.warning("leadership_lost", instance_id=self.instance_id, leader=current_leader)
        self._set_leader(False)
        return False

    async def release_leadership(self) -> None:
        """Release leadership (on shutdown)."""
        if not self.is_leader:
            return

        current_leader = await self.client.get(self.leader_key)
        if current_leader == self.instance_id:
            await self.client.delete(self.leader_key)
            logger.info("leadership_released", instance_id=self.instance_id)
        self._set_leader(False)

    async def wait_for_leadership(self, shutdown: ShutdownHandler) -> bool:
        """
        Block until this instance holds the lease.

        Returns:
            True once leader, False if shutdown was requested first
        """
        retry_interval = max(self.lease_duration / 3, 1)
        logger.info("waiting_for_leadership", instance_id=self.instance_id)
        while not shutdown.is_shutting_down():
            try:
                if await self.acquire_leadership():
                    return True
            except (redis.ConnectionError, redis.TimeoutError) as e:
                logger.error("leader_election_failed", instance_id=self.instance_id, error=str(e))
            if await shutdown.wait_or_shutdown(retry_interval):
                break
        return False

    async def keep_lease(self, shutdown: ShutdownHandler) -> None:
        """Renew the lease until shutdown; request shutdown if it is lost."""
        renew_interval = max(self.lease_duration / 3, 1)
        while not await shutdown.wait_or_shutdown(renew_interval):
            try:
                renewed = await self.renew_lease()
            except (redis.ConnectionError, redis.TimeoutError) as e:
                logger.error("lease_renewal_failed", instance_id=self.instance_id, error=str(e))
                continue
            if not renewed:
                shutdown.request_shutdown()
                return

    async def close(self) -> None:
        try:
            await self.release_leadership()
        except (redis.ConnectionError, redis.TimeoutError) as e:
            logger.warning("leadership_release_failed", instance_id=self.instance_id, error=str(e))
        finally:
            await self.client.aclose()
