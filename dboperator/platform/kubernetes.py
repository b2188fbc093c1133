"""
Kubernetes implementation of the platform client.

Built-in kinds go through the typed CoreV1/AppsV1/BatchV1 APIs and are
converted to plain dicts; Database objects go through CustomObjectsApi.
ApiException is translated into the controller's PlatformError hierarchy
so callers never depend on kubernetes_asyncio directly.
"""
import asyncio
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

import aiohttp
from kubernetes_asyncio import client, config, watch
from kubernetes_asyncio.client import ApiException

from dboperator.config.logging import get_logger
from dboperator.config.settings import Settings, settings as default_settings
from dboperator.exceptions import (
    ConflictError,
    NotFoundError,
    PlatformError,
    PlatformTimeoutError,
    TransientPlatformError,
)
from dboperator.platform.base import Kind, PlatformClient, WatchEvent
from dboperator.utils.retry import is_retryable_status, retry_on_platform_error

logger = get_logger(__name__)


@dataclass(frozen=True)
class _TypedKind:
    """Which typed API serves a built-in kind and its method suffix."""

    api: str
    suffix: str


_TYPED_KINDS: Dict[Kind, _TypedKind] = {
    Kind.SECRET: _TypedKind("core_api", "secret"),
    Kind.CONFIG_MAP: _TypedKind("core_api", "config_map"),
    Kind.SERVICE: _TypedKind("core_api", "service"),
    Kind.PERSISTENT_VOLUME_CLAIM: _TypedKind("core_api", "persistent_volume_claim"),
    Kind.STATEFUL_SET: _TypedKind("apps_api", "stateful_set"),
    Kind.JOB: _TypedKind("batch_api", "job"),
    Kind.CRON_JOB: _TypedKind("batch_api", "cron_job"),
}


def translate_api_exception(e: ApiException, kind: Kind, name: str = "") -> PlatformError:
    """Map a Kubernetes ApiException onto the PlatformError hierarchy."""
    message = f"{kind.value} {name}: {e.status} {e.reason}".strip()
    if e.status == 404:
        return NotFoundError(message, status=404)
    if e.status == 409:
        return ConflictError(message, status=409)
    if e.status in (408, 429, 504):
        return PlatformTimeoutError(message, status=e.status)
    if is_retryable_status(e.status):
        return TransientPlatformError(message, status=e.status)
    return PlatformError(message, status=e.status)


def label_selector(labels: Optional[Dict[str, str]]) -> Optional[str]:
    """Render an equality-based label selector."""
    if not labels:
        return None
    return ",".join(f"{key}={value}" for key, value in sorted(labels.items()))


class KubernetesPlatformClient(PlatformClient):
    """PlatformClient backed by kubernetes_asyncio."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or default_settings
        self.api_client: Optional[client.ApiClient] = None
        self.core_api: Optional[client.CoreV1Api] = None
        self.apps_api: Optional[client.AppsV1Api] = None
        self.batch_api: Optional[client.BatchV1Api] = None
        self.custom_api: Optional[client.CustomObjectsApi] = None

    async def initialize(self) -> None:
        """Load cluster configuration and create the API clients."""
        configuration = client.Configuration()
        if self.settings.in_cluster:
            config.load_incluster_config(client_configuration=configuration)
        else:
            await config.load_kube_config(
                config_file=self.settings.kubeconfig_path,
                client_configuration=configuration,
            )

        self.api_client = client.ApiClient(configuration=configuration)
        self.core_api = client.CoreV1Api(self.api_client)
        self.apps_api = client.AppsV1Api(self.api_client)
        self.batch_api = client.BatchV1Api(self.api_client)
        self.custom_api = client.CustomObjectsApi(self.api_client)

        logger.info(
            "kubernetes_client_initialized",
            host=configuration.host,
            in_cluster=self.settings.in_cluster,
        )

    async def close(self) -> None:
        if self.api_client:
            await self.api_client.close()
            self.api_client = None
            logger.info("kubernetes_client_closed")

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _custom_args(self) -> Dict[str, str]:
        return {
            "group": self.settings.api_group,
            "version": self.settings.api_version,
            "plural": self.settings.api_plural,
        }

    def _typed_method(self, kind: Kind, template: str) -> Callable:
        typed = _TYPED_KINDS[kind]
        api = getattr(self, typed.api)
        if api is None:
            raise PlatformError("Kubernetes client is not initialized")
        return getattr(api, template.format(typed.suffix))

    def _to_dict(self, obj: Any) -> Dict[str, Any]:
        if isinstance(obj, dict):
            return obj
        return self.api_client.sanitize_for_serialization(obj)

    async def _call(self, kind: Kind, name: str, coro) -> Any:
        try:
            return await coro
        except ApiException as e:
            raise translate_api_exception(e, kind, name) from e
        except asyncio.TimeoutError as e:
            raise PlatformTimeoutError(f"{kind.value} {name}: request timed out") from e
        except aiohttp.ClientError as e:
            raise TransientPlatformError(f"{kind.value} {name}: {e}") from e

    # ------------------------------------------------------------------
    # PlatformClient
    # ------------------------------------------------------------------

    @retry_on_platform_error()
    async def get(self, kind: Kind, namespace: str, name: str) -> Optional[Dict[str, Any]]:
        if kind is Kind.DATABASE:
            coro = self.custom_api.get_namespaced_custom_object(
                namespace=namespace, name=name, **self._custom_args()
            )
        else:
            coro = self._typed_method(kind, "read_namespaced_{}")(name=name, namespace=namespace)
        try:
            result = await self._call(kind, name, coro)
        except NotFoundError:
            return None
        return self._to_dict(result)

    @retry_on_platform_error()
    async def list(
        self,
        kind: Kind,
        namespace: Optional[str] = None,
        labels: Optional[Dict[str, str]] = None,
    ) -> List[Dict[str, Any]]:
        kwargs: Dict[str, Any] = {}
        selector = label_selector(labels)
        if selector:
            kwargs["label_selector"] = selector

        if kind is Kind.DATABASE:
            if namespace:
                coro = self.custom_api.list_namespaced_custom_object(
                    namespace=namespace, **self._custom_args(), **kwargs
                )
            else:
                coro = self.custom_api.list_cluster_custom_object(**self._custom_args(), **kwargs)
        elif namespace:
            coro = self._typed_method(kind, "list_namespaced_{}")(namespace=namespace, **kwargs)
        else:
            coro = self._typed_method(kind, "list_{}_for_all_namespaces")(**kwargs)

        result = self._to_dict(await self._call(kind, "", coro))
        return list(result.get("items") or [])

    async def create(self, kind: Kind, body: Dict[str, Any]) -> Dict[str, Any]:
        metadata = body.get("metadata", {})
        namespace = metadata.get("namespace", "default")
        name = metadata.get("name", "")
        if kind is Kind.DATABASE:
            coro = self.custom_api.create_namespaced_custom_object(
                namespace=namespace, body=body, **self._custom_args()
            )
        else:
            coro = self._typed_method(kind, "create_namespaced_{}")(namespace=namespace, body=body)
        result = self._to_dict(await self._call(kind, name, coro))
        logger.debug("platform_object_created", kind=kind.value, namespace=namespace, name=name)
        return result

    async def update(self, kind: Kind, body: Dict[str, Any]) -> Dict[str, Any]:
        metadata = body.get("metadata", {})
        namespace = metadata.get("namespace", "default")
        name = metadata.get("name", "")
        if kind is Kind.DATABASE:
            coro = self.custom_api.replace_namespaced_custom_object(
                namespace=namespace, name=name, body=body, **self._custom_args()
            )
        else:
            coro = self._typed_method(kind, "replace_namespaced_{}")(
                name=name, namespace=namespace, body=body
            )
        result = self._to_dict(await self._call(kind, name, coro))
        logger.debug("platform_object_updated", kind=kind.value, namespace=namespace, name=name)
        return result

    async def update_status(self, kind: Kind, body: Dict[str, Any]) -> Dict[str, Any]:
        metadata = body.get("metadata", {})
        namespace = metadata.get("namespace", "default")
        name = metadata.get("name", "")
        if kind is Kind.DATABASE:
            coro = self.custom_api.replace_namespaced_custom_object_status(
                namespace=namespace, name=name, body=body, **self._custom_args()
            )
        else:
            coro = self._typed_method(kind, "replace_namespaced_{}_status")(
                name=name, namespace=namespace, body=body
            )
        return self._to_dict(await self._call(kind, name, coro))

    @retry_on_platform_error()
    async def delete(self, kind: Kind, namespace: str, name: str) -> bool:
        if kind is Kind.DATABASE:
            coro = self.custom_api.delete_namespaced_custom_object(
                namespace=namespace, name=name, **self._custom_args()
            )
        else:
            # Background propagation so a Job's pods go with it
            coro = self._typed_method(kind, "delete_namespaced_{}")(
                name=name, namespace=namespace, propagation_policy="Background"
            )
        try:
            await self._call(kind, name, coro)
        except NotFoundError:
            return False
        logger.debug("platform_object_deleted", kind=kind.value, namespace=namespace, name=name)
        return True

    async def watch(self, kind: Kind, namespace: Optional[str] = None) -> AsyncIterator[WatchEvent]:
        if kind is Kind.DATABASE:
            if namespace:
                func = self.custom_api.list_namespaced_custom_object
                kwargs: Dict[str, Any] = {"namespace": namespace, **self._custom_args()}
            else:
                func = self.custom_api.list_cluster_custom_object
                kwargs = self._custom_args()
        elif namespace:
            func = self._typed_method(kind, "list_namespaced_{}")
            kwargs = {"namespace": namespace}
        else:
            func = self._typed_method(kind, "list_{}_for_all_namespaces")
            kwargs = {}

        watcher = watch.Watch()
        try:
            async with watcher.stream(func, **kwargs) as stream:
                async for event in stream:
                    raw = event.get("raw_object") or self._to_dict(event.get("object"))
                    yield WatchEvent(type=event.get("type", "MODIFIED"), object=raw)
        except ApiException as e:
            raise translate_api_exception(e, kind) from e
        except aiohttp.ClientError as e:
            raise TransientPlatformError(f"{kind.value} watch: {e}") from e
        finally:
            watcher.stop()
