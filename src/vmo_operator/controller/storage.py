"""Persistent volume claim step."""

import logging
from typing import Dict

from ..constants import COMPONENT_LABEL
from ..exceptions import ClusterHealthError, StepError
from ..resources import OPENSEARCH_DATA, pvcs
from .context import SyncContext

logger = logging.getLogger(__name__)

KIND = "persistentvolumeclaims"


def _resize_patch(observed: Dict, size: str) -> Dict:
    meta = observed["metadata"]
    return {
        "metadata": {
            "name": meta["name"],
            "namespace": meta["namespace"],
            "resourceVersion": meta.get("resourceVersion"),
        },
        "spec": {"resources": {"requests": {"storage": size}}},
    }


async def reconcile_storage(ctx: SyncContext) -> None:
    """
    Create missing claims and resize claims whose requested size changed.

    Claims are never deleted here: a claim dropped from the spec may still
    hold data, so it is only reported.

    Raises:
        StepError: If any claim could not be written
    """
    instance = ctx.instance
    failures: Dict[str, Exception] = {}
    desired = pvcs.new(instance, ctx.cfg.storage_class)

    for claim in desired:
        name = claim["metadata"]["name"]
        try:
            observed = ctx.observed(KIND, name)
            if observed is None:
                await ctx.kube.create(KIND, claim)
                continue

            size = pvcs.claim_size(claim)
            if pvcs.claim_size(observed) == size:
                continue

            if claim["metadata"]["labels"].get(COMPONENT_LABEL) == OPENSEARCH_DATA.name:
                try:
                    await ctx.gate.check_resizable(instance)
                except ClusterHealthError as e:
                    ctx.result.defer(e)
                    continue

            logger.info("Resizing claim %s/%s to %s", instance.namespace, name, size)
            await ctx.kube.update(KIND, _resize_patch(observed, size))
        except Exception as e:  # pylint: disable=broad-except
            logger.warning("Failed to reconcile claim %s/%s: %s", instance.namespace, name, e)
            failures[name] = e

    wanted = {claim["metadata"]["name"] for claim in desired}
    for observed in ctx.owned(KIND):
        name = observed["metadata"]["name"]
        if name not in wanted:
            logger.info("Claim %s/%s is no longer used by %s; leaving it in place",
                        instance.namespace, name, instance.key)

    if failures:
        raise StepError("persistentvolumeclaims", failures)
