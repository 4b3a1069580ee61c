"""Prometheus metrics exported by the operator."""

import logging

from prometheus_client import Counter, Gauge, Histogram

logger = logging.getLogger(__name__)

instance_locked = Gauge(
    'vmo_instance_locked',
    'Whether reconciliation of an instance is locked (1) by spec.lock',
    ['namespace', 'instance_name']
)
sync_total = Counter(
    'vmo_sync_total',
    'Total number of instance syncs by result',
    ['result']
)
sync_duration = Histogram(
    'vmo_sync_duration_seconds',
    'Duration of instance syncs'
)
queue_depth = Gauge(
    'vmo_queue_depth',
    'Number of keys waiting in the work queue'
)


def set_locked(namespace: str, name: str) -> None:
    """Report an instance as locked."""
    instance_locked.labels(namespace=namespace, instance_name=name).set(1)


def clear_locked(namespace: str, name: str) -> None:
    """Drop the locked series of an instance, if there is one."""
    try:
        instance_locked.remove(namespace, name)
    except KeyError:
        pass
