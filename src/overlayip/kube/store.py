"""
Cluster resource store.

Reconcilers talk to the API server only through ``ResourceStore``: read an
object, create one, and write it back conditionally on the resourceVersion
they last saw. ``KubeStore`` is the real implementation on top of the
official kubernetes client; tests use an in-memory fake with the same
semantics.

All objects travel as plain dicts in the API server's JSON shape.
"""

from __future__ import annotations

import asyncio
from typing import Any, Iterator, Protocol

from kubernetes import client, config, watch
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError as TransportError

from overlayip.exceptions import ConflictError, NotFoundError, StoreError
from overlayip.models.enums import (
    DEFAULT_API_GROUP,
    DEFAULT_API_VERSION,
    ResourceKind,
)
from overlayip.utils.logger import get_logger

logger = get_logger(__name__)

# Watch stream is re-opened after this many seconds even if idle
WATCH_TIMEOUT_SECONDS = 300


class ResourceStore(Protocol):
    """Operations the reconcilers need from the cluster store."""

    async def get(self, kind: ResourceKind, name: str) -> dict[str, Any]: ...

    async def create(self, kind: ResourceKind, body: dict[str, Any]) -> dict[str, Any]: ...

    async def update(self, kind: ResourceKind, body: dict[str, Any]) -> dict[str, Any]: ...

    async def update_status(
        self, kind: ResourceKind, body: dict[str, Any]
    ) -> dict[str, Any]: ...

    def watch(
        self, kind: ResourceKind, field_selector: str | None = None
    ) -> Iterator[tuple[str, dict[str, Any]]]: ...

    async def served_kinds(self) -> set[str]: ...


def load_kube_config(kubeconfig: str | None = None) -> None:
    """Load in-cluster credentials, falling back to a kubeconfig file."""
    if kubeconfig:
        config.load_kube_config(config_file=kubeconfig)
        logger.info(f"Using kubeconfig {kubeconfig}")
        return
    try:
        config.load_incluster_config()
        logger.info("Using in-cluster config")
    except config.ConfigException:
        config.load_kube_config()
        logger.info("Using local kubeconfig")


class KubeStore:
    """
    ResourceStore backed by the Kubernetes API server.

    Every kind handled here is cluster-scoped. Blocking client calls run in
    a worker thread so the reconcile loop stays responsive.
    """

    def __init__(
        self,
        api_client: client.ApiClient | None = None,
        group: str = DEFAULT_API_GROUP,
        version: str = DEFAULT_API_VERSION,
        request_timeout: float = 30.0,
    ):
        self.api_client = api_client or client.ApiClient()
        self.core = client.CoreV1Api(self.api_client)
        self.custom = client.CustomObjectsApi(self.api_client)
        self.group = group
        self.version = version
        self.request_timeout = request_timeout

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}"

    def _custom_args(self, kind: ResourceKind) -> dict[str, str]:
        return {"group": self.group, "version": self.version, "plural": kind.plural}

    def _translate(self, e: ApiException, kind: ResourceKind, name: str) -> StoreError:
        if e.status == 404:
            return NotFoundError(kind.value, name)
        if e.status == 409:
            return ConflictError(kind.value, name, e.reason or "")
        return StoreError(
            f"{kind.value} {name}: API error {e.status} {e.reason}", status=e.status
        )

    # =========================================================================
    # Reads and writes (synchronous, run in a thread)
    # =========================================================================

    def _get_sync(self, kind: ResourceKind, name: str) -> dict[str, Any]:
        try:
            if kind is ResourceKind.NODE:
                node = self.core.read_node(name, _request_timeout=self.request_timeout)
                return self.api_client.sanitize_for_serialization(node)
            return self.custom.get_cluster_custom_object(
                name=name, _request_timeout=self.request_timeout, **self._custom_args(kind)
            )
        except ApiException as e:
            raise self._translate(e, kind, name) from e
        except (TransportError, OSError) as e:
            raise StoreError(f"{kind.value} {name}: request failed: {e}") from e

    def _create_sync(self, kind: ResourceKind, body: dict[str, Any]) -> dict[str, Any]:
        name = body["metadata"]["name"]
        if not kind.is_custom:
            raise StoreError(f"creating {kind.value} objects is not supported")
        try:
            return self.custom.create_cluster_custom_object(
                body=body, _request_timeout=self.request_timeout, **self._custom_args(kind)
            )
        except ApiException as e:
            raise self._translate(e, kind, name) from e
        except (TransportError, OSError) as e:
            raise StoreError(f"{kind.value} {name}: request failed: {e}") from e

    def _replace_sync(
        self, kind: ResourceKind, body: dict[str, Any], status: bool
    ) -> dict[str, Any]:
        name = body["metadata"]["name"]
        if not kind.is_custom:
            raise StoreError(f"updating {kind.value} objects is not supported")
        replace = (
            self.custom.replace_cluster_custom_object_status
            if status
            else self.custom.replace_cluster_custom_object
        )
        try:
            return replace(
                name=name,
                body=body,
                _request_timeout=self.request_timeout,
                **self._custom_args(kind),
            )
        except ApiException as e:
            raise self._translate(e, kind, name) from e
        except (TransportError, OSError) as e:
            raise StoreError(f"{kind.value} {name}: request failed: {e}") from e

    # =========================================================================
    # ResourceStore
    # =========================================================================

    async def get(self, kind: ResourceKind, name: str) -> dict[str, Any]:
        return await asyncio.to_thread(self._get_sync, kind, name)

    async def create(self, kind: ResourceKind, body: dict[str, Any]) -> dict[str, Any]:
        return await asyncio.to_thread(self._create_sync, kind, body)

    async def update(self, kind: ResourceKind, body: dict[str, Any]) -> dict[str, Any]:
        return await asyncio.to_thread(self._replace_sync, kind, body, False)

    async def update_status(
        self, kind: ResourceKind, body: dict[str, Any]
    ) -> dict[str, Any]:
        return await asyncio.to_thread(self._replace_sync, kind, body, True)

    def watch(
        self, kind: ResourceKind, field_selector: str | None = None
    ) -> Iterator[tuple[str, dict[str, Any]]]:
        """
        Stream (event_type, object) pairs until the server closes the watch.

        Blocking; meant to run in a dedicated thread. Each stream starts
        with an ADDED event for every existing object. An expired
        resourceVersion (410) simply ends the stream so the caller reopens it.
        """
        w = watch.Watch()
        kwargs: dict[str, Any] = {"timeout_seconds": WATCH_TIMEOUT_SECONDS}
        if field_selector:
            kwargs["field_selector"] = field_selector

        if kind is ResourceKind.NODE:
            stream = w.stream(self.core.list_node, **kwargs)
        else:
            stream = w.stream(
                self.custom.list_cluster_custom_object,
                **self._custom_args(kind),
                **kwargs,
            )

        try:
            for event in stream:
                obj = event["object"]
                if not isinstance(obj, dict):
                    obj = self.api_client.sanitize_for_serialization(obj)
                yield event["type"], obj
        except ApiException as e:
            if e.status == 410:
                logger.debug(f"{kind.value} watch expired, restarting")
                return
            raise StoreError(
                f"{kind.value} watch failed: {e.status} {e.reason}", status=e.status
            ) from e
        except (TransportError, OSError) as e:
            raise StoreError(f"{kind.value} watch failed: {e}") from e
        finally:
            w.stop()

    async def served_kinds(self) -> set[str]:
        """Kinds served by the configured API group/version."""

        def _discover() -> set[str]:
            try:
                resources = self.custom.get_api_resources(
                    self.group, self.version, _request_timeout=self.request_timeout
                )
            except ApiException as e:
                if e.status == 404:
                    return set()
                raise StoreError(
                    f"discovery of {self.api_version} failed: {e.status} {e.reason}",
                    status=e.status,
                ) from e
            except (TransportError, OSError) as e:
                raise StoreError(f"discovery of {self.api_version} failed: {e}") from e
            return {r.kind for r in resources.resources if "/" not in r.name}

        return await asyncio.to_thread(_discover)
