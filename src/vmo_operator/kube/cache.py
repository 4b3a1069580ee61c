"""In-memory cache of MonitoringInstances and the objects they own."""

import asyncio
import copy
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..constants import INSTANCE_KIND, INSTANCE_LABEL
from .client import KINDS, KubeClient

logger = logging.getLogger(__name__)

Key = Tuple[str, str]


def object_key(body: Dict[str, Any]) -> Key:
    meta = body.get("metadata") or {}
    return meta.get("namespace", ""), meta.get("name", "")


class ObjectCache:
    """
    Latest observed copy of every watched object, by kind.

    Only watch events and the initial listing write here; the reconciler
    writes to the API and sees its own changes when the events come back.
    Reads hand out deep copies.
    """

    def __init__(self):
        self._objects: Dict[str, Dict[Key, Dict[str, Any]]] = {}
        self.synced = False

    def get(self, kind: str, namespace: str, name: str) -> Optional[Dict[str, Any]]:
        """Get one object, or None."""
        body = self._objects.get(kind, {}).get((namespace, name))
        return copy.deepcopy(body) if body is not None else None

    def list(
        self, kind: str, namespace: str = "", labels: Optional[Dict[str, str]] = None
    ) -> List[Dict[str, Any]]:
        """List objects of a kind, optionally filtered by namespace and labels."""
        labels = labels or {}
        found = []
        for (obj_namespace, _), body in sorted(self._objects.get(kind, {}).items()):
            if namespace and obj_namespace != namespace:
                continue
            obj_labels = body.get("metadata", {}).get("labels") or {}
            if all(obj_labels.get(k) == v for k, v in labels.items()):
                found.append(copy.deepcopy(body))
        return found

    def apply_event(self, kind: str, event_type: Optional[str], body: Dict[str, Any]) -> None:
        """Record a watch event."""
        if event_type == "DELETED":
            self.remove(kind, *object_key(body))
            return
        self._objects.setdefault(kind, {})[object_key(body)] = copy.deepcopy(body)

    def remove(self, kind: str, namespace: str, name: str) -> None:
        """Forget an object."""
        self._objects.get(kind, {}).pop((namespace, name), None)

    def replace_all(self, kind: str, bodies: Iterable[Dict[str, Any]]) -> None:
        """Swap the whole contents of one kind."""
        self._objects[kind] = {object_key(body): copy.deepcopy(body) for body in bodies}

    def count(self, kind: str) -> int:
        return len(self._objects.get(kind, {}))

    async def prime(self, kube: KubeClient, namespace: str = "") -> None:
        """
        Fill the cache from a full listing of every watched kind.

        Raises:
            KubernetesAPIError: If any listing fails
        """
        listings = [kube.list(kind, namespace, label_selector=INSTANCE_LABEL) for kind in KINDS]
        listings.append(kube.list_instances(namespace))
        results = await asyncio.gather(*listings)

        for kind, items in zip(list(KINDS) + [INSTANCE_KIND], results):
            self.replace_all(kind, items)
            logger.info("Cached %d %s", len(items), kind)
        self.synced = True
