"""Tests for the sync loop."""

import asyncio

import pytest
from prometheus_client import REGISTRY

from vmo_operator.constants import INSTANCE_KIND, INSTANCE_LABEL
from vmo_operator.controller.engine import Controller, split_key
from vmo_operator.exceptions import (
    InvalidKeyError,
    KubernetesUnavailableError,
    StepError,
)


def locked_gauge(namespace, name):
    return REGISTRY.get_sample_value(
        "vmo_instance_locked", {"namespace": namespace, "instance_name": name}
    )


class TestSplitKey:
    """Test queue key parsing."""

    def test_valid_key(self):
        assert split_key("monitoring/vmi1") == ("monitoring", "vmi1")

    @pytest.mark.parametrize("key", ["vmi1", "a/b/c", "/vmi1", "monitoring/", ""])
    def test_malformed_keys(self, key):
        with pytest.raises(InvalidKeyError):
            split_key(key)


class TestSync:
    """Test a single sync pass."""

    @pytest.mark.asyncio
    async def test_first_pass_creates_everything(self, controller, kube, cache, instance_body, full_spec):
        cache.apply_event(INSTANCE_KIND, "ADDED", instance_body(spec=full_spec))

        result = await controller.sync("monitoring/vmi1")

        assert not result.failed
        assert result.completed == [
            "rolebindings", "configmaps", "services", "credentials",
            "persistentvolumeclaims", "workloads", "ingresses", "index_policies",
        ]
        created_kinds = {kind for verb, kind, _ in kube.writes if verb == "create"}
        assert created_kinds == {
            "rolebindings", "configmaps", "services", "persistentvolumeclaims",
            "deployments", "statefulsets", "ingresses",
        }
        for kind in created_kinds:
            for body in cache.list(kind, "monitoring"):
                assert body["metadata"]["labels"][INSTANCE_LABEL] == "vmi1"
                assert body["metadata"]["ownerReferences"][0]["controller"] is True

    @pytest.mark.asyncio
    async def test_second_pass_makes_no_writes(self, controller, kube, cache, instance_body, full_spec):
        cache.apply_event(INSTANCE_KIND, "ADDED", instance_body(spec=full_spec))
        await controller.sync("monitoring/vmi1")
        kube.writes.clear()

        result = await controller.sync("monitoring/vmi1")

        assert not result.failed
        assert kube.writes == []

    @pytest.mark.asyncio
    async def test_spec_written_back_with_defaults(self, controller, cache, instance_body, full_spec):
        cache.apply_event(INSTANCE_KIND, "ADDED", instance_body(spec=full_spec))

        await controller.sync("monitoring/vmi1")

        spec = cache.get(INSTANCE_KIND, "monitoring", "vmi1")["spec"]
        assert spec["serviceType"] == "ClusterIP"
        assert spec["prometheus"]["retentionPeriod"] == 90
        assert spec["prometheus"]["configMap"] == "vmi-vmi1-prometheus-config"
        assert spec["opensearch"]["dataNode"]["storage"]["pvcNames"] == [
            "vmi-vmi1-es-data", "vmi-vmi1-es-data-1",
        ]
        assert spec["opensearch"]["masterNode"]["roles"] == ["master"]

    @pytest.mark.asyncio
    async def test_status_after_clean_pass(self, controller, cache, instance_body, full_spec):
        cache.apply_event(INSTANCE_KIND, "ADDED", instance_body(spec=full_spec))

        await controller.sync("monitoring/vmi1")

        status = cache.get(INSTANCE_KIND, "monitoring", "vmi1")["status"]
        assert status["state"] == "Running"
        assert status["envName"] == "test"
        assert status["currentVersion"] == "1.2.0"
        assert len(status["hash"]) == 64
        assert status["creationTime"]

    @pytest.mark.asyncio
    async def test_partial_failure_runs_later_steps(self, controller, kube, cache, instance_body, full_spec):
        kube.failures["services"] = KubernetesUnavailableError("api down", status_code=503)
        cache.apply_event(INSTANCE_KIND, "ADDED", instance_body(spec=full_spec))

        result = await controller.sync("monitoring/vmi1")

        assert result.failed
        assert set(result.errors) == {"services"}
        assert isinstance(result.errors["services"], StepError)
        assert "ingresses" in result.completed
        assert cache.list("ingresses", "monitoring")
        assert cache.list("deployments", "monitoring")

    @pytest.mark.asyncio
    async def test_version_not_advanced_after_failure(self, controller, kube, cache, instance_body, full_spec):
        kube.failures["ingresses"] = KubernetesUnavailableError("api down", status_code=503)
        cache.apply_event(INSTANCE_KIND, "ADDED", instance_body(spec=full_spec))

        await controller.sync("monitoring/vmi1")

        status = cache.get(INSTANCE_KIND, "monitoring", "vmi1")["status"]
        assert status["currentVersion"] == ""

        del kube.failures["ingresses"]
        await controller.sync("monitoring/vmi1")

        status = cache.get(INSTANCE_KIND, "monitoring", "vmi1")["status"]
        assert status["currentVersion"] == "1.2.0"

    @pytest.mark.asyncio
    async def test_missing_instance_is_a_no_op(self, controller, kube):
        result = await controller.sync("monitoring/absent")

        assert result.skipped
        assert not result.failed
        assert kube.writes == []

    @pytest.mark.asyncio
    async def test_watch_instance_filter(self, controller, kube, cache, instance_body):
        controller.watch_instance = "other"
        cache.apply_event(INSTANCE_KIND, "ADDED", instance_body())

        result = await controller.sync("monitoring/vmi1")

        assert result.skipped
        assert kube.writes == []

    @pytest.mark.asyncio
    async def test_policy_error_is_a_step_failure(self, controller, gate, cache, instance_body, full_spec):
        gate.policy_error = RuntimeError("ism unavailable")
        cache.apply_event(INSTANCE_KIND, "ADDED", instance_body(spec=full_spec))

        result = await controller.sync("monitoring/vmi1")

        assert "index_policies" in result.errors

    @pytest.mark.asyncio
    async def test_slow_policy_task_is_detached(self, controller, gate, cache, instance_body, full_spec):
        gate.policy_delay = 1.0
        cache.apply_event(INSTANCE_KIND, "ADDED", instance_body(spec=full_spec))

        result = await controller.sync("monitoring/vmi1")

        assert "index_policies" in result.completed
        assert not result.failed
        await asyncio.sleep(1.0)

    @pytest.mark.asyncio
    async def test_no_policy_task_without_opensearch(self, controller, gate, cache, instance_body):
        cache.apply_event(INSTANCE_KIND, "ADDED", instance_body(spec={"grafana": {"enabled": True}}))

        await controller.sync("monitoring/vmi1")

        assert "configure_lifecycle_policies" not in gate.calls


class TestPolicyTasks:
    """Test ISM provisioning across passes."""

    @pytest.fixture(autouse=True)
    def short_wait(self, live_config):
        live_config.apply({"config": "envName: test\npolicyWaitSeconds: 0.05\n"})

    @pytest.mark.asyncio
    async def test_running_task_is_reused(self, controller, gate, cache, instance_body, full_spec):
        gate.policy_delay = 0.3
        cache.apply_event(INSTANCE_KIND, "ADDED", instance_body(spec=full_spec))

        for _ in range(3):
            result = await controller.sync("monitoring/vmi1")
            assert "index_policies" in result.completed

        assert gate.calls.count("configure_lifecycle_policies") == 1

        await asyncio.sleep(0.4)
        gate.policy_delay = 0.0
        await controller.sync("monitoring/vmi1")

        assert gate.calls.count("configure_lifecycle_policies") == 2

    @pytest.mark.asyncio
    async def test_each_instance_gets_its_own_task(self, controller, gate, cache, instance_body, full_spec):
        gate.policy_delay = 0.2
        for name in ("vmi1", "vmi2"):
            cache.apply_event(INSTANCE_KIND, "ADDED", instance_body(name=name, spec=full_spec))
            await controller.sync(f"monitoring/{name}")

        assert gate.calls.count("configure_lifecycle_policies") == 2
        await asyncio.sleep(0.3)

    @pytest.mark.asyncio
    async def test_detached_outcome_is_logged(self, controller, gate, cache, instance_body, full_spec, caplog):
        gate.policy_delay = 0.1
        gate.policy_error = RuntimeError("ism unavailable")
        cache.apply_event(INSTANCE_KIND, "ADDED", instance_body(spec=full_spec))

        with caplog.at_level("INFO", logger="vmo_operator.controller.engine"):
            result = await controller.sync("monitoring/vmi1")
            assert not result.failed
            await asyncio.sleep(0.2)

        assert "ISM policy provisioning failed: ism unavailable" in caplog.text


class TestLock:
    """Test spec.lock handling."""

    @pytest.mark.asyncio
    async def test_locked_instance_is_left_alone(self, controller, kube, cache, instance_body, full_spec):
        spec = dict(full_spec, lock=True)
        cache.apply_event(INSTANCE_KIND, "ADDED", instance_body(name="locked", spec=spec))

        result = await controller.sync("monitoring/locked")

        assert result.locked
        assert kube.writes == []
        assert locked_gauge("monitoring", "locked") == 1.0

    @pytest.mark.asyncio
    async def test_unlocking_clears_gauge(self, controller, cache, instance_body):
        cache.apply_event(INSTANCE_KIND, "ADDED", instance_body(name="flip", spec={"lock": True}))
        await controller.sync("monitoring/flip")
        assert locked_gauge("monitoring", "flip") == 1.0

        cache.apply_event(INSTANCE_KIND, "MODIFIED", instance_body(name="flip", spec={"lock": False}))
        await controller.sync("monitoring/flip")

        assert locked_gauge("monitoring", "flip") is None


class TestDataNodeGate:
    """Test gating of disruptive data-node changes."""

    async def converge(self, controller, cache, instance_body, spec):
        cache.apply_event(INSTANCE_KIND, "ADDED", instance_body(spec=spec))
        result = await controller.sync("monitoring/vmi1")
        assert not result.failed
        return cache.get(INSTANCE_KIND, "monitoring", "vmi1")

    @pytest.mark.asyncio
    async def test_resize_deferred_below_minimum(self, controller, kube, gate, cache, instance_body):
        spec = {"opensearch": {"enabled": True, "masterNode": {"replicas": 1},
                               "dataNode": {"replicas": 1, "storage": {"size": "10Gi"}}}}
        body = await self.converge(controller, cache, instance_body, spec)
        body["spec"]["opensearch"]["dataNode"]["storage"]["size"] = "20Gi"
        cache.apply_event(INSTANCE_KIND, "MODIFIED", body)
        kube.writes.clear()

        result = await controller.sync("monitoring/vmi1")

        assert not result.failed
        assert result.deployments_dirty
        assert result.policy_errors
        assert not [w for w in kube.writes if w[1] == "persistentvolumeclaims"]
        status = cache.get(INSTANCE_KIND, "monitoring", "vmi1")["status"]
        assert status["currentVersion"] == "1.2.0"

    @pytest.mark.asyncio
    async def test_resize_allowed_when_healthy(self, controller, kube, cache, instance_body):
        spec = {"opensearch": {"enabled": True, "masterNode": {"replicas": 1},
                               "dataNode": {"replicas": 2, "storage": {"size": "10Gi"}}}}
        body = await self.converge(controller, cache, instance_body, spec)
        body["spec"]["opensearch"]["dataNode"]["storage"]["size"] = "20Gi"
        cache.apply_event(INSTANCE_KIND, "MODIFIED", body)

        result = await controller.sync("monitoring/vmi1")

        assert not result.policy_errors
        claim = cache.get("persistentvolumeclaims", "monitoring", "vmi-vmi1-es-data")
        assert claim["spec"]["resources"]["requests"]["storage"] == "20Gi"

    @pytest.mark.asyncio
    async def test_data_node_updates_roll_one_per_pass(self, controller, kube, cache, instance_body, live_config):
        spec = {"opensearch": {"enabled": True, "masterNode": {"replicas": 1},
                               "dataNode": {"replicas": 3}}}
        await self.converge(controller, cache, instance_body, spec)
        live_config.apply({"config": "images:\n  opensearch: opensearch:2.8.0\n"})
        kube.writes.clear()

        result = await controller.sync("monitoring/vmi1")

        updated = [name for verb, kind, name in kube.writes
                   if verb == "update" and kind == "deployments"]
        assert updated == ["vmi-vmi1-es-data-0"]
        assert result.deployments_dirty

    @pytest.mark.asyncio
    async def test_data_node_update_waits_for_green(self, controller, kube, gate, cache, instance_body, live_config):
        spec = {"opensearch": {"enabled": True, "masterNode": {"replicas": 1},
                               "dataNode": {"replicas": 2}}}
        await self.converge(controller, cache, instance_body, spec)
        live_config.apply({"config": "images:\n  opensearch: opensearch:2.8.0\n"})
        gate.green = False
        kube.writes.clear()

        result = await controller.sync("monitoring/vmi1")

        assert not [w for w in kube.writes if w[1] == "deployments"]
        assert result.deployments_dirty
        assert not result.failed

    @pytest.mark.asyncio
    async def test_data_node_removal_waits_for_green(self, controller, kube, gate, cache, instance_body):
        spec = {"opensearch": {"enabled": True, "masterNode": {"replicas": 1},
                               "dataNode": {"replicas": 2}}}
        body = await self.converge(controller, cache, instance_body, spec)
        body["spec"]["opensearch"]["dataNode"]["replicas"] = 1
        cache.apply_event(INSTANCE_KIND, "MODIFIED", body)
        gate.green = False

        result = await controller.sync("monitoring/vmi1")

        assert cache.get("deployments", "monitoring", "vmi-vmi1-es-data-1") is not None
        assert result.deployments_dirty

        gate.green = True
        await controller.sync("monitoring/vmi1")

        assert cache.get("deployments", "monitoring", "vmi-vmi1-es-data-1") is None

    @pytest.mark.asyncio
    async def test_held_back_changes_are_logged(self, controller, cache, instance_body, caplog):
        spec = {"opensearch": {"enabled": True, "masterNode": {"replicas": 1},
                               "dataNode": {"replicas": 1, "storage": {"size": "10Gi"}}}}
        body = await self.converge(controller, cache, instance_body, spec)
        body["spec"]["opensearch"]["dataNode"]["storage"]["size"] = "20Gi"
        cache.apply_event(INSTANCE_KIND, "MODIFIED", body)

        with caplog.at_level("WARNING", logger="vmo_operator.controller.engine"):
            await controller.sync("monitoring/vmi1")

        assert "held back until the cluster allows them" in caplog.text
        assert "too few data nodes" in caplog.text


class TestStatefulSets:
    """Test the OpenSearch master StatefulSet."""

    SPEC = {"opensearch": {"enabled": True,
                           "masterNode": {"replicas": 1, "storage": {"size": "50Gi"}},
                           "dataNode": {"replicas": 2}}}

    async def converge(self, controller, cache, instance_body):
        cache.apply_event(INSTANCE_KIND, "ADDED", instance_body(spec=self.SPEC))
        result = await controller.sync("monitoring/vmi1")
        assert not result.failed
        return cache.get(INSTANCE_KIND, "monitoring", "vmi1")

    @pytest.mark.asyncio
    async def test_claim_template_change_recreates(self, controller, kube, cache, instance_body):
        body = await self.converge(controller, cache, instance_body)
        body["spec"]["opensearch"]["masterNode"]["storage"]["size"] = "100Gi"
        cache.apply_event(INSTANCE_KIND, "MODIFIED", body)
        kube.writes.clear()

        result = await controller.sync("monitoring/vmi1")

        assert not result.failed
        assert result.deployments_dirty
        assert ("orphan", "statefulsets", "vmi-vmi1-es-master") in kube.writes
        assert cache.get("statefulsets", "monitoring", "vmi-vmi1-es-master") is None

        result = await controller.sync("monitoring/vmi1")

        assert not result.failed
        assert not result.deployments_dirty
        master = cache.get("statefulsets", "monitoring", "vmi-vmi1-es-master")
        template = master["spec"]["volumeClaimTemplates"][0]
        assert template["spec"]["resources"]["requests"]["storage"] == "100Gi"

        kube.writes.clear()
        await controller.sync("monitoring/vmi1")
        assert not [w for w in kube.writes if w[1] == "statefulsets"]

    @pytest.mark.asyncio
    async def test_replica_change_is_patched(self, controller, kube, cache, instance_body):
        body = await self.converge(controller, cache, instance_body)
        body["spec"]["opensearch"]["masterNode"]["replicas"] = 3
        cache.apply_event(INSTANCE_KIND, "MODIFIED", body)
        kube.writes.clear()

        result = await controller.sync("monitoring/vmi1")

        assert not result.failed
        assert ("update", "statefulsets", "vmi-vmi1-es-master") in kube.writes
        master = cache.get("statefulsets", "monitoring", "vmi-vmi1-es-master")
        assert master["spec"]["replicas"] == 3

    @pytest.mark.asyncio
    async def test_statefulset_being_deleted_waits(self, controller, kube, cache, instance_body):
        body = await self.converge(controller, cache, instance_body)
        master = cache.get("statefulsets", "monitoring", "vmi-vmi1-es-master")
        master["metadata"]["deletionTimestamp"] = "2026-10-19T00:00:00Z"
        cache.apply_event("statefulsets", "MODIFIED", master)
        body["spec"]["opensearch"]["masterNode"]["storage"]["size"] = "100Gi"
        cache.apply_event(INSTANCE_KIND, "MODIFIED", body)
        kube.writes.clear()

        result = await controller.sync("monitoring/vmi1")

        assert result.deployments_dirty
        assert not [w for w in kube.writes if w[1] == "statefulsets"]


class TestWorkers:
    """Test queue processing."""

    @pytest.mark.asyncio
    async def test_malformed_key_is_dropped(self, controller):
        controller.queue.add("not-a-key")

        assert await controller.process_next_work_item() is True
        assert len(controller.queue) == 0
        assert controller.queue.num_requeues("not-a-key") == 0

    @pytest.mark.asyncio
    async def test_failed_sync_is_requeued(self, controller, kube, cache, instance_body, full_spec):
        kube.failures["services"] = KubernetesUnavailableError("api down", status_code=503)
        cache.apply_event(INSTANCE_KIND, "ADDED", instance_body(spec=full_spec))
        controller.queue.add("monitoring/vmi1")

        await controller.process_next_work_item()
        await asyncio.sleep(0.05)

        assert controller.queue.num_requeues("monitoring/vmi1") == 1
        assert len(controller.queue) == 1

    @pytest.mark.asyncio
    async def test_successful_sync_is_forgotten(self, controller, cache, instance_body):
        cache.apply_event(INSTANCE_KIND, "ADDED", instance_body())
        controller.queue.add("monitoring/vmi1")

        await controller.process_next_work_item()

        assert controller.queue.num_requeues("monitoring/vmi1") == 0
        assert len(controller.queue) == 0

    @pytest.mark.asyncio
    async def test_workers_drain_and_stop(self, controller, cache, instance_body):
        for name in ("a", "b", "c"):
            cache.apply_event(INSTANCE_KIND, "ADDED", instance_body(name=name))
            controller.queue.add(f"monitoring/{name}")

        controller.start_workers(2)
        await controller.shutdown(drain_timeout=5.0)

        for name in ("a", "b", "c"):
            status = cache.get(INSTANCE_KIND, "monitoring", name)["status"]
            assert status["state"] == "Running"


class TestHealth:
    """Test the liveness checks."""

    @pytest.mark.asyncio
    async def test_healthy(self, controller):
        healthy, _ = await controller.is_healthy()
        assert healthy

    @pytest.mark.asyncio
    async def test_missing_crd(self, controller, kube):
        kube.crd_registered = False
        healthy, reason = await controller.is_healthy()
        assert not healthy
        assert "CRD" in reason

    @pytest.mark.asyncio
    async def test_api_unreachable(self, controller, kube):
        kube.api_reachable = False
        healthy, _ = await controller.is_healthy()
        assert not healthy

    @pytest.mark.asyncio
    async def test_stale_backlog(self, kube, cache, live_config, gate):
        now = [1000.0]
        controller = Controller(kube, cache, live_config, clock=lambda: now[0],
                                gate_factory=lambda *_: gate)
        controller.queue.add("monitoring/vmi1")
        now[0] += 61

        healthy, reason = await controller.is_healthy()

        assert not healthy
        assert "work queue" in reason
