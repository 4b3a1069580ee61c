"""Shared fixtures: an in-memory Kubernetes API, a scripted health gate and instance bodies."""

import asyncio
import base64
import copy
import itertools
from typing import Any, Dict, List, Optional, Tuple

import pytest

from vmo_operator.constants import API_VERSION, INSTANCE_KIND, KIND
from vmo_operator.controller.engine import Controller
from vmo_operator.controller.queue import (
    ItemExponentialFailureRateLimiter,
    RateLimitingQueue,
)
from vmo_operator.exceptions import (
    ClusterNotReadyError,
    ConflictError,
    KubernetesAPIError,
    NotFoundError,
    ResizeNotAllowedError,
    TopologyMismatchError,
)
from vmo_operator.kube.cache import ObjectCache
from vmo_operator.kube.client import KINDS
from vmo_operator.live_config import LiveConfig, OperatorConfig


def _merge(base: Dict[str, Any], patch: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in patch.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


class FakeKube:
    """KubeClient stand-in that writes straight into an ObjectCache."""

    def __init__(self, cache: ObjectCache):
        self.cache = cache
        self.writes: List[Tuple[str, str, str]] = []
        self.failures: Dict[str, Exception] = {}
        self.secrets: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self.api_reachable = True
        self.crd_registered = True
        self._versions = itertools.count(1)

    def _check(self, kind: str) -> None:
        if kind in self.failures:
            raise self.failures[kind]

    def _stamp(self, body: Dict[str, Any]) -> Dict[str, Any]:
        body.setdefault("metadata", {})["resourceVersion"] = str(next(self._versions))
        return body

    async def create(self, kind, body):
        self._check(kind)
        meta = body["metadata"]
        if self.cache.get(kind, meta["namespace"], meta["name"]) is not None:
            raise ConflictError(f"{kind} {meta['name']} already exists", status_code=409)
        stored = self._stamp(copy.deepcopy(body))
        self.cache.apply_event(kind, "ADDED", stored)
        self.writes.append(("create", kind, meta["name"]))
        return copy.deepcopy(stored)

    async def update(self, kind, body):
        self._check(kind)
        meta = body["metadata"]
        observed = self.cache.get(kind, meta["namespace"], meta["name"])
        if observed is None:
            raise NotFoundError(f"{kind} {meta['name']} not found", status_code=404)
        expected = meta.get("resourceVersion")
        if expected and expected != observed["metadata"].get("resourceVersion"):
            raise ConflictError(f"{kind} {meta['name']} was modified", status_code=409)
        templates = body.get("spec", {}).get("volumeClaimTemplates")
        if kind == "statefulsets" and templates and templates != observed["spec"].get("volumeClaimTemplates"):
            raise KubernetesAPIError(
                f"statefulsets {meta['name']}: updates to statefulset spec for fields other than "
                "'replicas', 'template' and 'updateStrategy' are forbidden",
                status_code=422,
            )
        if KINDS[kind].update_verb == "replace":
            stored = copy.deepcopy(body)
        else:
            stored = _merge(observed, body)
        stored = self._stamp(stored)
        self.cache.apply_event(kind, "MODIFIED", stored)
        self.writes.append(("update", kind, meta["name"]))
        return copy.deepcopy(stored)

    async def delete(self, kind, namespace, name, orphan=False):
        self._check(kind)
        self.cache.remove(kind, namespace, name)
        self.writes.append(("orphan" if orphan else "delete", kind, name))

    async def read_secret(self, namespace, name):
        if (namespace, name) not in self.secrets:
            raise NotFoundError(f"secret {name} not found", status_code=404)
        return copy.deepcopy(self.secrets[(namespace, name)])

    async def replace_instance(self, body):
        self._check(INSTANCE_KIND)
        meta = body["metadata"]
        observed = self.cache.get(INSTANCE_KIND, meta["namespace"], meta["name"])
        stored = copy.deepcopy(body)
        if observed and "status" in observed:
            stored["status"] = observed["status"]
        stored = self._stamp(stored)
        self.cache.apply_event(INSTANCE_KIND, "MODIFIED", stored)
        self.writes.append(("update", INSTANCE_KIND, meta["name"]))
        return stored

    async def patch_instance_status(self, namespace, name, status):
        observed = self.cache.get(INSTANCE_KIND, namespace, name)
        observed["status"] = copy.deepcopy(status)
        self.cache.apply_event(INSTANCE_KIND, "MODIFIED", observed)
        self.writes.append(("status", INSTANCE_KIND, name))
        return observed

    async def reachable(self):
        return self.api_reachable

    async def crd_exists(self):
        return self.crd_registered

    def add_secret(self, namespace, name, username, password):
        self.secrets[(namespace, name)] = {
            "metadata": {"name": name, "namespace": namespace},
            "data": {
                "username": base64.b64encode(username.encode()).decode(),
                "password": base64.b64encode(password.encode()).decode(),
            },
        }


class FakeGate:
    """Cluster-health gate answering from flags instead of a cluster."""

    def __init__(self):
        self.green = True
        self.topology_ok = True
        self.min_data_nodes = 2
        self.policy_error: Optional[Exception] = None
        self.policy_delay = 0.0
        self.calls: List[str] = []

    async def check_resizable(self, instance):
        self.calls.append("check_resizable")
        if instance.spec.opensearch.data_node.replicas < self.min_data_nodes:
            raise ResizeNotAllowedError("too few data nodes")
        await self.check_updated(instance)

    async def check_updated(self, instance):
        self.calls.append("check_updated")
        await self.check_green(instance)
        if not self.topology_ok:
            raise TopologyMismatchError("node missing")

    async def check_green(self, instance):
        self.calls.append("check_green")
        if not self.green:
            raise ClusterNotReadyError("cluster is yellow")

    def configure_lifecycle_policies(self, instance):
        self.calls.append("configure_lifecycle_policies")

        async def provision():
            if self.policy_delay:
                await asyncio.sleep(self.policy_delay)
            return self.policy_error

        return asyncio.get_running_loop().create_task(provision())


@pytest.fixture
def cache():
    """Empty object cache."""
    return ObjectCache()


@pytest.fixture
def kube(cache):
    """In-memory Kubernetes API backed by the cache."""
    return FakeKube(cache)


@pytest.fixture
def gate():
    """Green cluster with every node present."""
    return FakeGate()


@pytest.fixture
def live_config():
    """Live configuration with quick policy waits."""
    return LiveConfig(OperatorConfig(envName="test", policyWaitSeconds=0.5))


@pytest.fixture
def controller(kube, cache, live_config, gate):
    """Controller wired to the fakes."""
    queue = RateLimitingQueue(rate_limiter=ItemExponentialFailureRateLimiter(0.001, 0.01))
    return Controller(
        kube,
        cache,
        live_config,
        queue=queue,
        build_version="1.2.0",
        gate_factory=lambda instance, credentials, cfg: gate,
    )


@pytest.fixture
def instance_body():
    """Factory for MonitoringInstance bodies."""

    def make(name="vmi1", namespace="monitoring", spec=None, status=None):
        body = {
            "apiVersion": API_VERSION,
            "kind": KIND,
            "metadata": {
                "name": name,
                "namespace": namespace,
                "uid": f"uid-{name}",
                "resourceVersion": "1",
            },
            "spec": copy.deepcopy(spec) if spec is not None else {},
        }
        if status is not None:
            body["status"] = copy.deepcopy(status)
        return body

    return make


@pytest.fixture
def full_spec():
    """Spec enabling every component, with storage and OpenSearch node groups."""
    return {
        "uri": "vmi.example.com",
        "grafana": {"enabled": True, "storage": {"size": "5Gi"}},
        "prometheus": {"enabled": True, "storage": {"size": "50Gi"}},
        "alertmanager": {"enabled": True},
        "opensearchDashboards": {"enabled": True},
        "api": {"enabled": True},
        "opensearch": {
            "enabled": True,
            "masterNode": {"replicas": 3},
            "ingestNode": {"replicas": 1},
            "dataNode": {"replicas": 2, "storage": {"size": "50Gi"}},
            "policies": [{"policyName": "vz-system", "indexPattern": "verrazzano-system*"}],
        },
    }
