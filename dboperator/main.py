"""
Controller entry point.

Wires the platform client, engines, orchestration services and the
controller manager together and runs them until SIGINT/SIGTERM.
"""
import asyncio
import sys
from typing import Optional

from prometheus_client import start_http_server

from dboperator.config.logging import configure_logging, get_logger
from dboperator.config.settings import settings
from dboperator.controllers.database_controller import DatabaseController
from dboperator.engines.registry import EngineRegistry
from dboperator.platform.kubernetes import KubernetesPlatformClient
from dboperator.services.jobs import JobLauncher, JobOrchestrator
from dboperator.services.rotation import CredentialRotationManager
from dboperator.services.vault import SecretStoreFactory
from dboperator.utils.shutdown import ShutdownHandler
from dboperator.workers.controller_manager import ControllerManager
from dboperator.workers.leader_election import LeaderElection

logger = get_logger(__name__)


async def main() -> None:
    """Run the controller until shutdown."""
    configure_logging(settings)
    logger.info(
        "controller_starting",
        version=settings.app_version,
        environment=settings.environment,
        namespace=settings.watch_namespace or "*",
    )

    shutdown = ShutdownHandler()
    shutdown.setup()

    platform = KubernetesPlatformClient(settings)
    await platform.initialize()

    if settings.metrics_port:
        start_http_server(settings.metrics_port)
        logger.info("metrics_server_started", port=settings.metrics_port)

    launcher = JobLauncher(platform)
    controller = DatabaseController(
        platform,
        EngineRegistry.default(platform, settings),
        JobOrchestrator(platform, launcher, settings),
        CredentialRotationManager(platform, launcher, SecretStoreFactory(platform, settings), settings),
        settings,
    )
    manager = ControllerManager(controller, platform, settings, shutdown=shutdown)

    leader: Optional[LeaderElection] = None
    lease_task: Optional[asyncio.Task] = None
    if settings.redis_url:
        leader = LeaderElection.from_url(
            settings.redis_url,
            instance_id=settings.instance_id,
            lease_duration=settings.leader_lease_seconds,
        )

    try:
        if leader is not None:
            if not await leader.wait_for_leadership(shutdown):
                return
            lease_task = asyncio.create_task(leader.keep_lease(shutdown))
        await manager.run()
    finally:
        if lease_task is not None:
            lease_task.cancel()
            await asyncio.gather(lease_task, return_exceptions=True)
        if leader is not None:
            await leader.close()
        await platform.close()
        logger.info("controller_shutdown_complete")


def run() -> None:
    """Console script entry point."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("controller_interrupted")
        sys.exit(0)


if __name__ == "__main__":
    run()
