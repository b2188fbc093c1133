"""
External secret store integration.

Credentials can be mirrored to Consul's KV store so consumers outside the
cluster pick up rotated values. Values are written as one JSON document per
path and are never logged.
"""
import json
from abc import ABC, abstractmethod
from typing import Dict, Optional

import httpx

from dboperator.config.logging import get_logger
from dboperator.config.settings import Settings, settings as default_settings
from dboperator.exceptions import SecretStoreError
from dboperator.models.database import Database
from dboperator.platform.base import Kind, PlatformClient
from dboperator.utils.security import decode_secret_data

logger = get_logger(__name__)


class SecretStore(ABC):
    """Key/value secret store: put(path, values), get(path)."""

    @abstractmethod
    async def put(self, path: str, values: Dict[str, str]) -> None:
        """Write ``values`` under ``path``, replacing what was there."""

    @abstractmethod
    async def get(self, path: str) -> Optional[Dict[str, str]]:
        """Read the values under ``path``; None when absent."""

    async def close(self) -> None:
        pass

    async def __aenter__(self) -> "SecretStore":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()


class ConsulSecretStore(SecretStore):
    """SecretStore backed by the Consul KV HTTP API."""

    def __init__(
        self,
        address: str,
        token: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize the Consul store.

        Args:
            address: Consul base URL, e.g. http://consul:8500
            token: ACL token sent as X-Consul-Token
            timeout: Request timeout in seconds
            client: Pre-built HTTP client (tests inject a mock transport)
        """
        self.address = address.rstrip("/")
        headers = {"Content-Type": "application/json"}
        if token:
            headers["X-Consul-Token"] = token
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))
        self.headers = headers

    def _url(self, path: str) -> str:
        return f"{self.address}/v1/kv/{path.strip('/')}"

    async def put(self, path: str, values: Dict[str, str]) -> None:
        try:
            response = await self.client.put(self._url(path), content=json.dumps(values), headers=self.headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error("consul_put_rejected", path=path, status=e.response.status_code)
            raise SecretStoreError(f"Consul rejected write to {path}: HTTP {e.response.status_code}")
        except httpx.HTTPError as e:
            logger.error("consul_put_failed", path=path, error=type(e).__name__)
            raise SecretStoreError(f"Consul write to {path} failed: {type(e).__name__}")

        if response.text.strip() not in ("", "true"):
            raise SecretStoreError(f"Consul refused write to {path}")
        logger.info("consul_secret_written", path=path, keys=sorted(values))

    async def get(self, path: str) -> Optional[Dict[str, str]]:
        try:
            response = await self.client.get(self._url(path), params={"raw": "true"}, headers=self.headers)
            if response.status_code == 404:
                return None
            response.raise_for_status()
            return json.loads(response.text)
        except httpx.HTTPStatusError as e:
            raise SecretStoreError(f"Consul rejected read of {path}: HTTP {e.response.status_code}")
        except httpx.HTTPError as e:
            raise SecretStoreError(f"Consul read of {path} failed: {type(e).__name__}")
        except ValueError:
            raise SecretStoreError(f"Consul value at {path} is not JSON")

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()


class SecretStoreFactory:
    """Builds the secret store configured on a Database, if any."""

    def __init__(self, platform: PlatformClient, settings: Optional[Settings] = None):
        self.platform = platform
        self.settings = settings or default_settings

    @staticmethod
    def vault_path(database: Database) -> str:
        consul = database.spec.auth.consul
        if consul and consul.path:
            return consul.path
        return f"dboperator/{database.namespace}/{database.name}"

    async def _read_token(self, database: Database) -> Optional[str]:
        ref = database.spec.auth.consul.token_secret_ref
        if ref is None:
            return None
        secret = await self.platform.get(Kind.SECRET, database.namespace, ref.name)
        if secret is None:
            raise SecretStoreError(f"Consul token secret {ref.name} not found")
        values = decode_secret_data(secret.get("data"))
        if ref.key not in values:
            raise SecretStoreError(f"Consul token secret {ref.name} has no key {ref.key}")
        return values[ref.key]

    async def for_database(self, database: Database) -> Optional[SecretStore]:
        """Return a store when vault sync is enabled for the Database."""
        consul = database.spec.auth.consul
        if consul is None or not consul.enabled:
            return None
        return ConsulSecretStore(
            address=consul.address or self.settings.consul_default_address,
            token=await self._read_token(database),
            timeout=self.settings.vault_timeout_seconds,
        )
