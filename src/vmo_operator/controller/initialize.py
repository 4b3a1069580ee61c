"""Fill in defaults on a MonitoringInstance before it is reconciled."""

import logging
from datetime import datetime, timezone

from ..constants import (
    ALERTMANAGER_CONFIG,
    ALERTMANAGER_CONFIG_VERSIONS,
    ALERTRULES_CONFIG,
    ALERTRULES_VERSIONS_CONFIG,
    DASHBOARD_CONFIG,
    DATASOURCE_CONFIG,
    DEFAULT_PROMETHEUS_RETENTION_DAYS,
    PROMETHEUS_CONFIG,
    PROMETHEUS_CONFIG_VERSIONS,
    ROLE_DATA,
    ROLE_INGEST,
    ROLE_MASTER,
    STATE_RUNNING,
)
from ..live_config import OperatorConfig
from ..resources import GRAFANA, PROMETHEUS, get_meta_name
from ..resources.sequence import ensure_claim_names

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _init_node(node, role: str) -> None:
    if not node.name:
        node.name = f"es-{role}"
    if not node.roles:
        node.roles = [role]


def _init_storage(instance, storage, replicas: int, component_name: str) -> None:
    # Nothing to name without a size
    if not storage.size:
        return
    storage.pvc_names = ensure_claim_names(
        storage.pvc_names, replicas, get_meta_name(instance.name, component_name)
    )


def initialize_instance(instance, cfg: OperatorConfig) -> None:
    """
    Default every unset field of the instance spec and status in place.

    Running this twice gives the same result as running it once; claim
    names already in the spec are never renumbered.
    """
    spec = instance.spec
    name = instance.name
    status = instance.status

    if not status.creation_time:
        status.creation_time = _now()
    if not status.env_name:
        status.env_name = cfg.env_name

    if not spec.service_type:
        spec.service_type = "ClusterIP"

    # Referenced config maps
    if not spec.grafana.dashboards_config_map:
        spec.grafana.dashboards_config_map = get_meta_name(name, DASHBOARD_CONFIG)
    if not spec.grafana.datasources_config_map:
        spec.grafana.datasources_config_map = get_meta_name(name, DATASOURCE_CONFIG)
    if not spec.prometheus.config_map:
        spec.prometheus.config_map = get_meta_name(name, PROMETHEUS_CONFIG)
    if not spec.prometheus.versions_config_map:
        spec.prometheus.versions_config_map = get_meta_name(name, PROMETHEUS_CONFIG_VERSIONS)
    if not spec.prometheus.rules_config_map:
        spec.prometheus.rules_config_map = get_meta_name(name, ALERTRULES_CONFIG)
    if not spec.prometheus.rules_versions_config_map:
        spec.prometheus.rules_versions_config_map = get_meta_name(name, ALERTRULES_VERSIONS_CONFIG)
    if not spec.alertmanager.config_map:
        spec.alertmanager.config_map = get_meta_name(name, ALERTMANAGER_CONFIG)
    if not spec.alertmanager.versions_config_map:
        spec.alertmanager.versions_config_map = get_meta_name(name, ALERTMANAGER_CONFIG_VERSIONS)

    # Replicas of the simple components
    for component in (spec.grafana, spec.prometheus, spec.alertmanager,
                      spec.opensearch_dashboards, spec.api):
        if component.replicas == 0:
            component.replicas = cfg.default_simple_component_replicas

    _init_node(spec.opensearch.master_node, ROLE_MASTER)
    _init_node(spec.opensearch.ingest_node, ROLE_INGEST)
    _init_node(spec.opensearch.data_node, ROLE_DATA)

    # Storage claim names
    _init_storage(instance, spec.prometheus.storage, spec.prometheus.replicas, PROMETHEUS.name)
    _init_storage(instance, spec.grafana.storage, spec.grafana.replicas, GRAFANA.name)
    data_node = spec.opensearch.data_node
    _init_storage(instance, data_node.storage, data_node.replicas, data_node.name)

    if spec.prometheus.retention_period == 0:
        spec.prometheus.retention_period = DEFAULT_PROMETHEUS_RETENTION_DAYS

    if not status.state:
        status.state = STATE_RUNNING

    logger.debug("Initialized spec of %s", instance.key)
