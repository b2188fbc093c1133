"""
Tests for the PostgreSQL engine.
"""
import pytest

from dboperator.engines.postgres import PostgresEngine, render_config
from dboperator.exceptions import ValidationError
from dboperator.models.database import Database
from dboperator.platform.base import Kind
from dboperator.platform.objects import LABEL_INSTANCE, OperationResult
from dboperator.utils.security import decode_secret_data
from tests.conftest import database_body


@pytest.fixture
def engine(platform, test_settings) -> PostgresEngine:
    return PostgresEngine(platform, test_settings)


async def stored_database(platform, **kwargs) -> Database:
    return Database.from_body(await platform.create(Kind.DATABASE, database_body(**kwargs)))


def test_render_config_applies_overrides():
    rendered = render_config({"max_connections": "250"})
    assert "max_connections = 250\n" in rendered
    assert "shared_buffers = 128MB\n" in rendered


@pytest.mark.asyncio
async def test_validate_rejects_sharded(engine, platform):
    database = await stored_database(platform, topology={"mode": "Sharded", "shards": 2})
    with pytest.raises(ValidationError) as exc_info:
        await engine.validate(database)
    assert exc_info.value.reason == "EngineValidationFailed"


@pytest.mark.asyncio
async def test_storage_claim_created_once(engine, platform):
    database = await stored_database(platform, storage={"size": "20Gi", "storageClassName": "fast"})

    assert await engine.ensure_storage(database) is OperationResult.CREATED
    assert await engine.ensure_storage(database) is OperationResult.UNCHANGED

    claim = platform.stored(Kind.PERSISTENT_VOLUME_CLAIM, "shop", "orders-data")
    assert claim["spec"]["resources"]["requests"]["storage"] == "20Gi"
    assert claim["spec"]["storageClassName"] == "fast"
    assert claim["metadata"]["labels"][LABEL_INSTANCE] == "orders"
    assert claim["metadata"]["ownerReferences"][0]["uid"] == database.metadata.uid


@pytest.mark.asyncio
async def test_config_creates_credentials_without_overwriting(engine, platform):
    database = await stored_database(platform)

    await engine.ensure_config(database)
    secret = platform.stored(Kind.SECRET, "shop", "orders-credentials")
    first = decode_secret_data(secret["data"])
    assert first["username"] == "postgres"
    assert len(first["password"]) == 32

    await engine.ensure_config(database)
    again = decode_secret_data(platform.stored(Kind.SECRET, "shop", "orders-credentials")["data"])
    assert again == first
    assert len(platform.writes("create", Kind.SECRET)) == 1


@pytest.mark.asyncio
async def test_config_map_follows_engine_config(engine, platform):
    database = await stored_database(platform)
    await engine.ensure_config(database)

    database.spec.engine_config = {"max_connections": "500"}
    await engine.ensure_config(database)

    config = platform.stored(Kind.CONFIG_MAP, "shop", "orders-config")
    assert "max_connections = 500" in config["data"]["postgresql.conf"]
    assert len(platform.writes("update", Kind.CONFIG_MAP)) == 1


@pytest.mark.asyncio
async def test_service_and_endpoint(engine, platform):
    database = await stored_database(platform, networking={"port": 6432})
    await engine.ensure_service(database)

    service = platform.stored(Kind.SERVICE, "shop", "orders")
    assert service["spec"]["ports"][0]["port"] == 6432
    assert service["spec"]["ports"][0]["targetPort"] == 5432
    assert engine.get_endpoint(database) == "orders.shop.svc.cluster.local:6432"


@pytest.mark.asyncio
async def test_workload_stays_on_running_version_until_upgrade(engine, platform):
    database = await stored_database(platform, version="16.2")
    database.status.current_version = "16.1"

    await engine.ensure_workload(database)
    assert (await engine.read_workload(database)).image == "postgres:16.1"

    assert await engine.upgrade(database) is OperationResult.UPDATED
    assert (await engine.read_workload(database)).image == "postgres:16.2"


@pytest.mark.asyncio
async def test_read_workload_reports_replicas(engine, platform):
    database = await stored_database(platform, mode="Replicated", replicas=3)
    assert await engine.read_workload(database) is None

    await engine.ensure_workload(database)
    platform.set_ready_replicas("shop", "orders", 2)

    workload = await engine.read_workload(database)
    assert workload.replicas == 3
    assert workload.ready_replicas == 2


@pytest.mark.asyncio
async def test_scale_updates_replicas_only(engine, platform):
    database = await stored_database(platform, mode="Replicated", replicas=2)
    await engine.ensure_workload(database)

    database.spec.topology.replicas = 4
    assert await engine.scale(database) is OperationResult.UPDATED
    assert platform.stored(Kind.STATEFUL_SET, "shop", "orders")["spec"]["replicas"] == 4
    assert await engine.ensure_workload(database) is OperationResult.UNCHANGED
