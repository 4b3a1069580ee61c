"""
The sync loop.

Workers take instance keys off the queue and converge each instance through
a fixed sequence of steps. A failing step is logged and recorded; later
steps still run, and the key is retried with backoff once the pass is over.
"""

import asyncio
import functools
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

from .. import metrics
from ..config import config
from ..constants import HEALTH_QUEUE_MAX_AGE_SECONDS, INSTANCE_KIND
from ..exceptions import InvalidInstanceError, InvalidKeyError
from ..kube.cache import ObjectCache
from ..kube.client import KubeClient
from ..live_config import LiveConfig, OperatorConfig
from ..models import Instance
from ..opensearch.client import OpenSearchClient
from ..opensearch.gate import ClusterHealthGate
from ..resources import ingresses, rolebindings, services
from ..utils.url_builder import build_opensearch_url
from .apply import apply_objects
from .configmaps import reconcile_config_maps
from .context import SyncContext, SyncResult
from .credentials import load_credentials
from .initialize import initialize_instance
from .queue import RateLimitingQueue
from .storage import reconcile_storage
from .workloads import reconcile_workloads

logger = logging.getLogger(__name__)

Step = Callable[[SyncContext], Awaitable[Any]]
GateFactory = Callable[[Any, Optional[Tuple[str, str]], OperatorConfig], ClusterHealthGate]


def split_key(key: str) -> Tuple[str, str]:
    """
    Split a ``namespace/name`` queue key.

    Raises:
        InvalidKeyError: If the key is not exactly two non-empty parts
    """
    parts = key.split("/") if isinstance(key, str) else []
    if len(parts) != 2 or not all(parts):
        raise InvalidKeyError(f"invalid resource key: {key!r}")
    return parts[0], parts[1]


def default_gate_factory(
    instance, credentials: Optional[Tuple[str, str]], cfg: OperatorConfig
) -> ClusterHealthGate:
    """Gate talking to the instance's OpenSearch service."""
    url = build_opensearch_url(instance, config.opensearch_scheme)
    return ClusterHealthGate(
        lambda: OpenSearchClient(url, auth=credentials),
        cfg.min_data_nodes_for_resize,
    )


async def reconcile_rolebindings(ctx: SyncContext) -> None:
    await apply_objects(ctx, "rolebindings", rolebindings.new(ctx.instance, ctx.cfg))


async def reconcile_services(ctx: SyncContext) -> None:
    await apply_objects(ctx, "services", services.new(ctx.instance))


async def reconcile_ingresses(ctx: SyncContext) -> None:
    await apply_objects(ctx, "ingresses", ingresses.new(ctx.instance))


def _log_policy_result(task: "asyncio.Task", key: str) -> None:
    if task.cancelled():
        logger.warning("%s: ISM policy provisioning was cancelled", key)
        return
    error = task.result()
    if error is not None:
        logger.error("%s: ISM policy provisioning failed: %s", key, error)
    else:
        logger.info("%s: ISM policies provisioned", key)


class Controller:
    """Pulls keys off the work queue and converges the instances they name."""

    def __init__(
        self,
        kube: KubeClient,
        cache: ObjectCache,
        live_config: LiveConfig,
        queue: Optional[RateLimitingQueue] = None,
        build_version: str = "",
        gate_factory: Optional[GateFactory] = None,
        watch_namespace: str = "",
        watch_instance: str = "",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.kube = kube
        self.cache = cache
        self.live_config = live_config
        self.queue = queue or RateLimitingQueue(clock=clock)
        self.build_version = build_version
        self.gate_factory = gate_factory or default_gate_factory
        self.watch_namespace = watch_namespace
        self.watch_instance = watch_instance
        self._clock = clock
        self._workers: List[asyncio.Task] = []
        # At most one provisioning task per instance key
        self._policy_tasks: Dict[str, asyncio.Task] = {}
        self._detached_policy_tasks: Set[asyncio.Task] = set()

    def steps(self) -> List[Tuple[str, Step]]:
        """Pipeline steps in the order they run."""
        return [
            ("rolebindings", reconcile_rolebindings),
            ("configmaps", reconcile_config_maps),
            ("services", reconcile_services),
            ("credentials", load_credentials),
            ("persistentvolumeclaims", reconcile_storage),
            ("workloads", reconcile_workloads),
            ("ingresses", reconcile_ingresses),
            ("index_policies", self.reconcile_index_policies),
        ]

    def policy_task(self, instance, gate: ClusterHealthGate) -> asyncio.Task:
        """
        The ISM provisioning task for an instance.

        A task still running from an earlier pass is returned instead of
        starting a second one against the same policies.
        """
        key = instance.key
        task = self._policy_tasks.get(key)
        if task is not None and not task.done():
            logger.debug("%s: ISM policy provisioning already running", key)
            return task
        task = gate.configure_lifecycle_policies(instance)
        self._policy_tasks[key] = task
        task.add_done_callback(functools.partial(self._policy_task_done, key))
        return task

    def _policy_task_done(self, key: str, task: asyncio.Task) -> None:
        if self._policy_tasks.get(key) is task:
            del self._policy_tasks[key]
        if task in self._detached_policy_tasks:
            self._detached_policy_tasks.discard(task)
            _log_policy_result(task, key)

    async def reconcile_index_policies(self, ctx: SyncContext) -> None:
        """
        Wait a bounded time for ISM policy provisioning.

        If the task is still running it is left to finish on its own and its
        outcome is logged.
        """
        task = ctx.policy_task
        if task is None:
            return
        try:
            error = await asyncio.wait_for(asyncio.shield(task), timeout=ctx.cfg.policy_wait_seconds)
        except asyncio.TimeoutError:
            if not task.done():
                logger.info("%s: ISM policy provisioning still running, not waiting for it", ctx.instance.key)
                self._detached_policy_tasks.add(task)
                return
            error = task.result()
        if error is not None:
            raise error

    def watches(self, namespace: str, name: str) -> bool:
        """Whether an instance is in this operator's scope."""
        if self.watch_namespace and namespace != self.watch_namespace:
            return False
        if self.watch_instance and name != self.watch_instance:
            return False
        return True

    def enqueue(self, body: Dict[str, Any]) -> None:
        """Queue the instance described by a watch event body."""
        meta = body.get("metadata") or {}
        namespace, name = meta.get("namespace", ""), meta.get("name", "")
        if not self.watches(namespace, name):
            logger.debug("Ignoring %s/%s outside the watched scope", namespace, name)
            return
        self.queue.add_rate_limited(f"{namespace}/{name}")

    async def sync(self, key: str) -> SyncResult:
        """
        Converge one instance.

        Raises:
            InvalidKeyError: If the key is malformed
            InvalidInstanceError: If the cached spec cannot be parsed
        """
        namespace, name = split_key(key)
        result = SyncResult(key=key)

        if not self.watches(namespace, name):
            result.skipped = True
            return result

        body = self.cache.get(INSTANCE_KIND, namespace, name)
        if body is None:
            logger.debug("%s no longer exists", key)
            result.skipped = True
            return result

        instance = Instance(body)
        if instance.spec.lock:
            logger.info("%s is locked, skipping reconciliation", key)
            metrics.set_locked(namespace, name)
            result.locked = True
            return result
        metrics.clear_locked(namespace, name)

        cfg = self.live_config.get()
        original_spec = instance.spec_dict()
        original_status = instance.status_dict()
        initialize_instance(instance, cfg)

        ctx = SyncContext(kube=self.kube, cache=self.cache, instance=instance, cfg=cfg, result=result)
        for step_name, step in self.steps():
            try:
                await step(ctx)
                result.completed.append(step_name)
            except Exception as e:  # pylint: disable=broad-except
                logger.error("%s: step %s failed: %s", key, step_name, e)
                result.errors[step_name] = e
            if step_name == "credentials":
                ctx.gate = self.gate_factory(instance, ctx.credentials, cfg)
            elif step_name == "workloads" and instance.spec.opensearch.enabled:
                ctx.policy_task = self.policy_task(instance, ctx.gate)

        await self._write_back(instance, original_spec, original_status, result)
        if result.policy_errors:
            logger.warning(
                "%s: %d OpenSearch change(s) held back until the cluster allows them: %s",
                key, len(result.policy_errors), "; ".join(str(e) for e in result.policy_errors),
            )
        return result

    async def _write_back(
        self,
        instance: Instance,
        original_spec: Dict[str, Any],
        original_status: Dict[str, Any],
        result: SyncResult,
    ) -> None:
        if instance.spec_dict() != original_spec:
            try:
                await self.kube.replace_instance(instance.to_body())
            except Exception as e:  # pylint: disable=broad-except
                logger.error("%s: failed to update spec: %s", instance.key, e)
                result.errors["spec"] = e

        status = instance.status
        status.hash = instance.spec_hash()
        if (
            not result.errors
            and not result.deployments_dirty
            and self.build_version
            and status.current_version != self.build_version
        ):
            logger.info("%s: now at version %s", instance.key, self.build_version)
            status.current_version = self.build_version

        new_status = instance.status_dict()
        if new_status == original_status:
            return
        try:
            await self.kube.patch_instance_status(instance.namespace, instance.name, new_status)
        except Exception as e:  # pylint: disable=broad-except
            logger.error("%s: failed to update status: %s", instance.key, e)
            result.errors["status"] = e

    async def process_next_work_item(self) -> bool:
        """
        Take one key off the queue and sync it.

        Returns:
            False once the queue is shut down and drained
        """
        key, shutdown = await self.queue.get()
        if shutdown:
            return False

        try:
            with metrics.sync_duration.time():
                result = await self.sync(key)
        except (InvalidKeyError, InvalidInstanceError) as e:
            logger.error("Dropping %s: %s", key, e)
            metrics.sync_total.labels(result="invalid").inc()
            self.queue.forget(key)
        except Exception as e:  # pylint: disable=broad-except
            logger.exception("Unexpected error syncing %s: %s", key, e)
            metrics.sync_total.labels(result="error").inc()
            self.queue.add_rate_limited(key)
        else:
            if result.failed or result.deployments_dirty:
                metrics.sync_total.labels(result="error" if result.failed else "deferred").inc()
                self.queue.add_rate_limited(key)
            else:
                metrics.sync_total.labels(result="success").inc()
                self.queue.forget(key)
        finally:
            self.queue.done(key)
        return True

    async def run_worker(self) -> None:
        while await self.process_next_work_item():
            pass

    def start_workers(self, threadiness: int) -> None:
        """Start ``threadiness`` worker tasks."""
        logger.info("Starting %d workers", threadiness)
        self._workers = [
            asyncio.create_task(self.run_worker(), name=f"vmo-worker-{index}")
            for index in range(threadiness)
        ]

    async def shutdown(self, drain_timeout: float) -> None:
        """Stop taking new keys, let in-flight syncs finish, then cancel stragglers."""
        self.queue.shut_down()
        if not self._workers:
            return
        _, pending = await asyncio.wait(self._workers, timeout=drain_timeout)
        if pending:
            logger.warning("Cancelling %d workers still busy after %.0fs", len(pending), drain_timeout)
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
        self._workers = []

    async def is_healthy(self) -> Tuple[bool, str]:
        """Health of the sync loop and its connection to the cluster."""
        last = self.queue.last_enqueue
        if len(self.queue) > 0 and last is not None:
            age = self._clock() - last
            if age >= HEALTH_QUEUE_MAX_AGE_SECONDS:
                return False, f"work queue has not moved for {age:.0f}s"
        if not await self.kube.reachable():
            return False, "Kubernetes API is not reachable"
        if not await self.kube.crd_exists():
            return False, "MonitoringInstance CRD is not registered"
        return True, "ok"
