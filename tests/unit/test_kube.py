"""Tests for the Kubernetes access layer and the object cache."""

import pytest
from kubernetes.client.rest import ApiException

from vmo_operator.constants import INSTANCE_KIND, INSTANCE_LABEL
from vmo_operator.exceptions import (
    ConflictError,
    KubernetesAPIError,
    KubernetesUnavailableError,
    NotFoundError,
)
from vmo_operator.kube.cache import ObjectCache
from vmo_operator.kube.client import KINDS, translate_api_exception


def obj(name, namespace="monitoring", labels=None, **extra):
    body = {"metadata": {"name": name, "namespace": namespace, "labels": labels or {}}}
    body.update(extra)
    return body


class ListingKube:
    """Answers listings from canned results."""

    def __init__(self, objects):
        self.objects = objects
        self.calls = []

    async def list(self, kind, namespace="", label_selector=""):
        self.calls.append((kind, namespace, label_selector))
        return self.objects.get(kind, [])

    async def list_instances(self, namespace=""):
        self.calls.append((INSTANCE_KIND, namespace, ""))
        return self.objects.get(INSTANCE_KIND, [])


class TestTranslateApiException:
    """Test mapping of API errors."""

    @pytest.mark.parametrize("status,expected", [
        (409, ConflictError),
        (404, NotFoundError),
        (503, KubernetesUnavailableError),
        (500, KubernetesUnavailableError),
        (429, KubernetesUnavailableError),
        (0, KubernetesUnavailableError),
        (403, KubernetesAPIError),
        (422, KubernetesAPIError),
    ])
    def test_status_mapping(self, status, expected):
        error = translate_api_exception(ApiException(status=status, reason="r"), "create service")
        assert type(error) is expected
        assert error.status_code == status
        assert "create service" in str(error)


class TestObjectCache:
    """Test cache reads and writes."""

    def test_get_returns_copy(self):
        cache = ObjectCache()
        cache.apply_event("services", "ADDED", obj("a", spec={"type": "ClusterIP"}))

        copy = cache.get("services", "monitoring", "a")
        copy["spec"]["type"] = "NodePort"

        assert cache.get("services", "monitoring", "a")["spec"]["type"] == "ClusterIP"

    def test_deleted_event_removes(self):
        cache = ObjectCache()
        cache.apply_event("services", "ADDED", obj("a"))
        cache.apply_event("services", "DELETED", obj("a"))
        assert cache.get("services", "monitoring", "a") is None
        assert cache.count("services") == 0

    def test_list_filters(self):
        cache = ObjectCache()
        cache.apply_event("services", "ADDED", obj("b", labels={INSTANCE_LABEL: "vmi1"}))
        cache.apply_event("services", "ADDED", obj("a", labels={INSTANCE_LABEL: "vmi1"}))
        cache.apply_event("services", "ADDED", obj("c", labels={INSTANCE_LABEL: "vmi2"}))
        cache.apply_event("services", "ADDED", obj("d", namespace="other", labels={INSTANCE_LABEL: "vmi1"}))

        found = cache.list("services", "monitoring", {INSTANCE_LABEL: "vmi1"})

        assert [o["metadata"]["name"] for o in found] == ["a", "b"]
        assert len(cache.list("services")) == 4

    def test_unknown_kind_is_empty(self):
        cache = ObjectCache()
        assert cache.list("deployments") == []
        assert cache.get("deployments", "ns", "x") is None

    @pytest.mark.asyncio
    async def test_prime(self):
        kube = ListingKube({
            "services": [obj("vmi-a-grafana")],
            INSTANCE_KIND: [obj("a")],
        })
        cache = ObjectCache()
        cache.apply_event("services", "ADDED", obj("stale"))

        await cache.prime(kube, "monitoring")

        assert cache.synced
        assert cache.get("services", "monitoring", "stale") is None
        assert cache.get(INSTANCE_KIND, "monitoring", "a") is not None
        listed = {kind for kind, _, _ in kube.calls}
        assert listed == set(KINDS) | {INSTANCE_KIND}
        assert all(ns == "monitoring" for _, ns, _ in kube.calls)
