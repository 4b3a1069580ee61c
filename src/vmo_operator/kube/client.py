"""
Async wrapper around the kubernetes client.

Every call runs in a worker thread so the event loop keeps serving kopf
watches, and every ``ApiException`` is translated into the operator's
``KubernetesAPIError`` hierarchy. Objects go in and come out as plain dicts.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from kubernetes import client
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError as TransportError

from ..constants import CRD_NAME, GROUP, PLURAL, VERSION
from ..exceptions import (
    ConflictError,
    KubernetesAPIError,
    KubernetesUnavailableError,
    NotFoundError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class KindInfo:
    """How to reach one native kind through the generated API classes."""

    group: str
    version: str
    api: str
    suffix: str
    update_verb: str


KINDS: Dict[str, KindInfo] = {
    "configmaps": KindInfo("", "v1", "core", "config_map", "replace"),
    "services": KindInfo("", "v1", "core", "service", "patch"),
    "persistentvolumeclaims": KindInfo("", "v1", "core", "persistent_volume_claim", "patch"),
    "deployments": KindInfo("apps", "v1", "apps", "deployment", "patch"),
    "statefulsets": KindInfo("apps", "v1", "apps", "stateful_set", "patch"),
    "ingresses": KindInfo("networking.k8s.io", "v1", "networking", "ingress", "patch"),
    "rolebindings": KindInfo("rbac.authorization.k8s.io", "v1", "rbac", "role_binding", "replace"),
}


def translate_api_exception(e: ApiException, action: str) -> KubernetesAPIError:
    """Map an ApiException onto the operator's exception hierarchy."""
    message = f"{action} failed: {e.status} {e.reason}"
    if e.status == 409:
        return ConflictError(message, status_code=e.status, reason=e.reason or "")
    if e.status == 404:
        return NotFoundError(message, status_code=e.status, reason=e.reason or "")
    if e.status in (0, None) or e.status >= 500 or e.status in (408, 429):
        return KubernetesUnavailableError(message, status_code=e.status, reason=e.reason or "")
    return KubernetesAPIError(message, status_code=e.status, reason=e.reason or "")


class KubeClient:
    """Dict-in, dict-out access to the objects the operator manages."""

    def __init__(self, api_client: Optional[client.ApiClient] = None):
        self.api_client = api_client or client.ApiClient()
        self._apis = {
            "core": client.CoreV1Api(self.api_client),
            "apps": client.AppsV1Api(self.api_client),
            "networking": client.NetworkingV1Api(self.api_client),
            "rbac": client.RbacAuthorizationV1Api(self.api_client),
        }
        self.custom = client.CustomObjectsApi(self.api_client)
        self.extensions = client.ApiextensionsV1Api(self.api_client)
        self.version = client.VersionApi(self.api_client)

    async def _call(self, action: str, func: Callable[..., Any], *args, **kwargs) -> Any:
        try:
            result = await asyncio.to_thread(func, *args, **kwargs)
        except ApiException as e:
            raise translate_api_exception(e, action) from e
        except TransportError as e:
            raise KubernetesUnavailableError(f"{action} failed: {e}") from e
        if result is None or isinstance(result, dict):
            return result
        return self.api_client.sanitize_for_serialization(result)

    def _method(self, kind: str, verb: str, scope: str = "namespaced") -> Callable[..., Any]:
        info = KINDS[kind]
        api = self._apis[info.api]
        if scope == "all":
            return getattr(api, f"{verb}_{info.suffix}_for_all_namespaces")
        return getattr(api, f"{verb}_namespaced_{info.suffix}")

    async def create(self, kind: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """Create a namespaced object."""
        meta = body["metadata"]
        logger.info("Creating %s %s/%s", kind, meta["namespace"], meta["name"])
        return await self._call(
            f"create {kind} {meta['namespace']}/{meta['name']}",
            self._method(kind, "create"), meta["namespace"], body,
        )

    async def update(self, kind: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """
        Update a namespaced object.

        ``body`` should carry the observed ``metadata.resourceVersion``; a
        stale version fails with ConflictError.
        """
        meta = body["metadata"]
        verb = KINDS[kind].update_verb
        logger.info("Updating %s %s/%s", kind, meta["namespace"], meta["name"])
        return await self._call(
            f"{verb} {kind} {meta['namespace']}/{meta['name']}",
            self._method(kind, verb), meta["name"], meta["namespace"], body,
        )

    async def delete(self, kind: str, namespace: str, name: str, orphan: bool = False) -> None:
        """
        Delete a namespaced object; a missing object counts as deleted.

        With ``orphan`` the dependents (pods of a StatefulSet) keep running.
        """
        logger.info("Deleting %s %s/%s%s", kind, namespace, name, " (orphaning dependents)" if orphan else "")
        kwargs = {}
        if orphan:
            kwargs["body"] = client.V1DeleteOptions(propagation_policy="Orphan")
        try:
            await self._call(
                f"delete {kind} {namespace}/{name}",
                self._method(kind, "delete"), name, namespace, **kwargs,
            )
        except NotFoundError:
            logger.debug("%s %s/%s already gone", kind, namespace, name)

    async def list(
        self, kind: str, namespace: str = "", label_selector: str = ""
    ) -> List[Dict[str, Any]]:
        """List objects of a kind in one namespace, or everywhere."""
        kwargs = {"label_selector": label_selector} if label_selector else {}
        if namespace:
            result = await self._call(
                f"list {kind} in {namespace}", self._method(kind, "list"), namespace, **kwargs
            )
        else:
            result = await self._call(
                f"list {kind}", self._method(kind, "list", scope="all"), **kwargs
            )
        return result.get("items") or []

    async def read_secret(self, namespace: str, name: str) -> Dict[str, Any]:
        """Read a Secret."""
        return await self._call(
            f"read secret {namespace}/{name}",
            self._apis["core"].read_namespaced_secret, name, namespace,
        )

    async def read_config_map(self, namespace: str, name: str) -> Dict[str, Any]:
        """Read a ConfigMap straight from the API."""
        return await self._call(
            f"read configmap {namespace}/{name}",
            self._apis["core"].read_namespaced_config_map, name, namespace,
        )

    async def list_instances(self, namespace: str = "") -> List[Dict[str, Any]]:
        """List MonitoringInstances in one namespace, or everywhere."""
        if namespace:
            result = await self._call(
                f"list {PLURAL} in {namespace}",
                self.custom.list_namespaced_custom_object, GROUP, VERSION, namespace, PLURAL,
            )
        else:
            result = await self._call(
                f"list {PLURAL}",
                self.custom.list_cluster_custom_object, GROUP, VERSION, PLURAL,
            )
        return result.get("items") or []

    async def replace_instance(self, body: Dict[str, Any]) -> Dict[str, Any]:
        """Replace a MonitoringInstance; the body carries its resourceVersion."""
        meta = body["metadata"]
        logger.info("Updating %s %s/%s", PLURAL, meta["namespace"], meta["name"])
        return await self._call(
            f"replace {PLURAL} {meta['namespace']}/{meta['name']}",
            self.custom.replace_namespaced_custom_object,
            GROUP, VERSION, meta["namespace"], PLURAL, meta["name"], body,
        )

    async def patch_instance_status(
        self, namespace: str, name: str, status: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Patch the status subresource of a MonitoringInstance."""
        logger.debug("Patching status of %s/%s", namespace, name)
        return await self._call(
            f"patch status {PLURAL} {namespace}/{name}",
            self.custom.patch_namespaced_custom_object_status,
            GROUP, VERSION, namespace, PLURAL, name, {"status": status},
        )

    async def crd_exists(self) -> bool:
        """Whether the MonitoringInstance CRD is registered."""
        try:
            await self._call(
                f"read crd {CRD_NAME}",
                self.extensions.read_custom_resource_definition, CRD_NAME,
            )
        except NotFoundError:
            return False
        return True

    async def reachable(self) -> bool:
        """Whether the API server answers."""
        try:
            await self._call("get server version", self.version.get_code)
        except KubernetesAPIError as e:
            logger.warning("Kubernetes API is not reachable: %s", e)
            return False
        return True
