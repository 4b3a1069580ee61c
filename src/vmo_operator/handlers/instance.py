"""
KOPF handlers for MonitoringInstance resources.

kopf only observes here. The instance is cached and its key queued, and the
workers do the actual reconciliation, so kopf never writes progress
annotations or finalizers onto the instance.
"""

import logging
from typing import Any, Dict

import kopf

from .. import metrics
from ..constants import GROUP, INSTANCE_KIND, PLURAL, VERSION
from ..kube.cache import object_key
from ..state import get_cache, get_controller

logger = logging.getLogger(__name__)


@kopf.on.event(GROUP, VERSION, PLURAL, id="instance-events")
async def handle_instance_event(event: Dict[str, Any], **_):
    """Cache the instance and queue it for reconciliation."""
    body = event["object"]
    event_type = event.get("type")
    namespace, name = object_key(body)
    cache = get_cache()

    if event_type == "DELETED":
        logger.info("MonitoringInstance %s/%s deleted", namespace, name)
        cache.remove(INSTANCE_KIND, namespace, name)
        metrics.clear_locked(namespace, name)
        return

    cache.apply_event(INSTANCE_KIND, event_type, body)

    controller = get_controller()
    if controller is None:
        logger.debug("Controller not started yet, %s/%s will be queued on startup", namespace, name)
        return
    controller.enqueue(body)
