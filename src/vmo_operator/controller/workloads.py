"""
Deployment and StatefulSet step.

OpenSearch data nodes each run in their own Deployment. Changing or removing
one restarts a node, so data-node Deployments are updated at most one per
pass and only while the cluster is green with every node present, and are
removed only while the cluster is green. Anything held back marks the pass
as deferred so the key is retried.

The API server refuses patches to a StatefulSet's claim templates, selector
or service name. When one of those changes the StatefulSet is deleted with
its pods orphaned and created again on a later pass, which adopts the pods.
"""

import logging
from typing import Dict, List

from ..exceptions import ClusterHealthError, StepError
from ..resources import deployments, statefulsets
from ..resources.deployments import is_data_node
from ..utils.diff import compare_ignore_target_empties
from .apply import prune_objects, with_resource_version
from .context import SyncContext

logger = logging.getLogger(__name__)

DEPLOYMENTS = "deployments"
STATEFULSETS = "statefulsets"

IMMUTABLE_STATEFULSET_FIELDS = (
    ".spec.volumeClaimTemplates",
    ".spec.selector",
    ".spec.serviceName",
)


async def reconcile_deployments(ctx: SyncContext, failures: Dict[str, Exception]) -> None:
    instance = ctx.instance
    desired = deployments.new(instance, ctx.cfg)
    data_node_updated = False

    for body in desired:
        name = body["metadata"]["name"]
        try:
            observed = ctx.observed(DEPLOYMENTS, name)
            if observed is None:
                await ctx.kube.create(DEPLOYMENTS, body)
                continue

            diffs = compare_ignore_target_empties(observed, body)
            if not diffs:
                continue

            if is_data_node(body):
                if data_node_updated:
                    logger.debug("Deferring data node %s to a later pass", name)
                    ctx.result.deployments_dirty = True
                    continue
                try:
                    await ctx.gate.check_updated(instance)
                except ClusterHealthError as e:
                    ctx.result.defer(e)
                    continue
                data_node_updated = True

            logger.info("Deployment %s/%s drifted at %s", instance.namespace, name, ", ".join(diffs[:5]))
            await ctx.kube.update(DEPLOYMENTS, with_resource_version(body, observed))
        except Exception as e:  # pylint: disable=broad-except
            logger.warning("Failed to reconcile deployment %s/%s: %s", instance.namespace, name, e)
            failures[name] = e

    wanted = {body["metadata"]["name"] for body in desired}
    for observed in ctx.owned(DEPLOYMENTS):
        name = observed["metadata"]["name"]
        if name in wanted:
            continue
        try:
            # Without OpenSearch there is no cluster left to protect
            if is_data_node(observed) and instance.spec.opensearch.enabled:
                try:
                    await ctx.gate.check_green(instance)
                except ClusterHealthError as e:
                    ctx.result.defer(e)
                    continue
            await ctx.kube.delete(DEPLOYMENTS, instance.namespace, name)
        except Exception as e:  # pylint: disable=broad-except
            logger.warning("Failed to delete deployment %s/%s: %s", instance.namespace, name, e)
            failures[name] = e


def immutable_changes(diffs: List[str]) -> List[str]:
    """Drifted paths the API server will not accept in a StatefulSet patch."""
    return [path for path in diffs if path.startswith(IMMUTABLE_STATEFULSET_FIELDS)]


async def reconcile_statefulsets(ctx: SyncContext, failures: Dict[str, Exception]) -> None:
    instance = ctx.instance
    desired = statefulsets.new(instance, ctx.cfg)

    for body in desired:
        name = body["metadata"]["name"]
        try:
            observed = ctx.observed(STATEFULSETS, name)
            if observed is None:
                await ctx.kube.create(STATEFULSETS, body)
                continue

            diffs = compare_ignore_target_empties(observed, body)
            if not diffs:
                continue

            if observed["metadata"].get("deletionTimestamp"):
                logger.debug("StatefulSet %s/%s is still being deleted", instance.namespace, name)
                ctx.result.deployments_dirty = True
                continue

            immutable = immutable_changes(diffs)
            if immutable:
                logger.info("StatefulSet %s/%s changed at %s, recreating it",
                            instance.namespace, name, ", ".join(immutable[:5]))
                await ctx.kube.delete(STATEFULSETS, instance.namespace, name, orphan=True)
                ctx.result.deployments_dirty = True
                continue

            logger.info("StatefulSet %s/%s drifted at %s", instance.namespace, name, ", ".join(diffs[:5]))
            await ctx.kube.update(STATEFULSETS, with_resource_version(body, observed))
        except Exception as e:  # pylint: disable=broad-except
            logger.warning("Failed to reconcile statefulset %s/%s: %s", instance.namespace, name, e)
            failures[name] = e

    await prune_objects(ctx, STATEFULSETS, {body["metadata"]["name"] for body in desired}, failures)


async def reconcile_workloads(ctx: SyncContext) -> None:
    """
    Converge Deployments, then the OpenSearch master StatefulSet.

    Raises:
        StepError: If any workload could not be written or deleted
    """
    failures: Dict[str, Exception] = {}
    await reconcile_deployments(ctx, failures)
    await reconcile_statefulsets(ctx, failures)

    if failures:
        raise StepError("workloads", failures)
