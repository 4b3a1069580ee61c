"""KOPF handlers keeping the object cache current for every owned kind."""

import logging
from typing import Any, Callable, Dict

import kopf

from ..constants import INSTANCE_LABEL
from ..kube.client import KINDS
from ..state import get_cache

logger = logging.getLogger(__name__)


def make_cache_handler(kind: str) -> Callable[..., Any]:
    """Handler recording watch events of one kind in the cache."""

    async def handle_owned_event(event: Dict[str, Any], **_):
        get_cache().apply_event(kind, event.get("type"), event["object"])

    handle_owned_event.__name__ = f"handle_{kind}_event"
    return handle_owned_event


for _kind, _info in KINDS.items():
    kopf.on.event(
        _info.group, _info.version, _kind,
        id=f"cache-{_kind}",
        labels={INSTANCE_LABEL: kopf.PRESENT},
    )(make_cache_handler(_kind))
