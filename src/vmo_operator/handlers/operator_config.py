"""KOPF handler reloading the operator ConfigMap while the operator runs."""

import logging
from typing import Any, Dict

import kopf

from ..config import config
from ..exceptions import LiveConfigError
from ..live_config import operator_config_summary
from ..state import get_live_config

logger = logging.getLogger(__name__)


def is_operator_config(name: str, namespace: str, **_) -> bool:
    """Only the operator's own ConfigMap."""
    return name == config.config_map_name and namespace == config.namespace


@kopf.on.event('', 'v1', 'configmaps', id="operator-config", when=is_operator_config)
async def handle_operator_config_event(event: Dict[str, Any], **_):
    """Swap in a changed configuration; keep the current one if it is malformed."""
    if event.get("type") == "DELETED":
        logger.warning("Operator ConfigMap %s/%s deleted, keeping the current configuration",
                       config.namespace, config.config_map_name)
        return

    data = event["object"].get("data") or {}
    live_config = get_live_config()
    try:
        changed = live_config.apply(data)
    except LiveConfigError as e:
        logger.error("Rejected operator configuration, keeping the last good one: %s", e)
        return

    if changed:
        logger.info("Operator configuration: %s", operator_config_summary(live_config.get()))
