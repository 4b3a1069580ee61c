"""Create, update and prune owned objects from their desired manifests."""

import copy
import logging
from typing import Any, Dict, Iterable, Optional, Set

from ..exceptions import StepError
from ..utils.diff import compare_ignore_target_empties
from .context import SyncContext

logger = logging.getLogger(__name__)


def _name(body: Dict[str, Any]) -> str:
    return body["metadata"]["name"]


def with_resource_version(desired: Dict[str, Any], observed: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of ``desired`` carrying the observed resourceVersion."""
    body = copy.deepcopy(desired)
    version = (observed.get("metadata") or {}).get("resourceVersion")
    if version:
        body["metadata"]["resourceVersion"] = version
    return body


async def ensure_object(ctx: SyncContext, kind: str, desired: Dict[str, Any]) -> bool:
    """
    Create the object if it is missing, update it if it drifted.

    Returns:
        True if a write was made
    """
    name = _name(desired)
    observed = ctx.observed(kind, name)
    if observed is None:
        await ctx.kube.create(kind, desired)
        return True

    diffs = compare_ignore_target_empties(observed, desired)
    if not diffs:
        return False
    logger.info("%s %s/%s drifted at %s", kind, ctx.namespace, name, ", ".join(diffs[:5]))
    await ctx.kube.update(kind, with_resource_version(desired, observed))
    return True


async def prune_objects(
    ctx: SyncContext, kind: str, keep: Set[str], failures: Dict[str, Exception]
) -> None:
    """Delete owned objects of a kind whose name is not in ``keep``."""
    for observed in ctx.owned(kind):
        name = _name(observed)
        if name in keep:
            continue
        try:
            await ctx.kube.delete(kind, ctx.namespace, name)
        except Exception as e:  # pylint: disable=broad-except
            logger.warning("Failed to delete %s %s/%s: %s", kind, ctx.namespace, name, e)
            failures[name] = e


async def apply_objects(
    ctx: SyncContext,
    kind: str,
    desired: Iterable[Dict[str, Any]],
    step: Optional[str] = None,
    prune: bool = True,
) -> None:
    """
    Converge every desired object of a kind, then delete owned leftovers.

    Every object is attempted even when an earlier one fails.

    Raises:
        StepError: Listing each object that could not be written or deleted
    """
    failures: Dict[str, Exception] = {}
    keep = set()
    for body in desired:
        name = _name(body)
        keep.add(name)
        try:
            await ensure_object(ctx, kind, body)
        except Exception as e:  # pylint: disable=broad-except
            logger.warning("Failed to apply %s %s/%s: %s", kind, ctx.namespace, name, e)
            failures[name] = e

    if prune:
        await prune_objects(ctx, kind, keep, failures)

    if failures:
        raise StepError(step or kind, failures)
