"""Deployment builders for every component except the OpenSearch masters."""

from typing import Any, Dict, List, Optional

from . import (
    ALERTMANAGER,
    ALERTMANAGER_CLUSTER,
    API,
    GRAFANA,
    OPENSEARCH_DASHBOARDS,
    OPENSEARCH_DATA,
    OPENSEARCH_INGEST,
    OPENSEARCH_MASTER,
    OPENSEARCH_MASTER_HTTP,
    PROMETHEUS,
    ComponentDetails,
    get_meta_name,
    new_metadata,
)
from ..constants import ALERTMANAGER_YAML, COMPONENT_LABEL, PROMETHEUS_YAML
from ..live_config import OperatorConfig

DATA_VOLUME = "storage-volume"
INDEX_LABEL = "index"


def opensearch_endpoint_component(instance) -> ComponentDetails:
    """Component serving OpenSearch HTTP traffic for the instance."""
    if instance.spec.opensearch.ingest_node.replicas > 0:
        return OPENSEARCH_INGEST
    return OPENSEARCH_MASTER_HTTP


def new_container(
    component: ComponentDetails,
    image: str,
    env: Optional[List[Dict[str, Any]]] = None,
    args: Optional[List[str]] = None,
    mounts: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    """Build the main container of a component."""
    container: Dict[str, Any] = {
        "name": component.name,
        "image": image,
        "ports": [{"containerPort": component.port}],
    }
    if args:
        container["args"] = args
    if env:
        container["env"] = env
    if mounts:
        container["volumeMounts"] = mounts
    return container


def new_deployment(
    instance,
    component: ComponentDetails,
    name: str,
    replicas: int,
    container: Dict[str, Any],
    volumes: Optional[List[Dict[str, Any]]] = None,
    extra_pod_labels: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    """Wrap a container in a Deployment."""
    pod_labels = {"app": get_meta_name(instance.name, component.name)}
    pod_labels.update(extra_pod_labels or {})
    pod_spec: Dict[str, Any] = {"containers": [container]}
    if volumes:
        pod_spec["volumes"] = volumes
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": new_metadata(instance, name, component.name),
        "spec": {
            "replicas": replicas,
            "selector": {"matchLabels": dict(pod_labels)},
            "template": {
                "metadata": {"labels": dict(pod_labels)},
                "spec": pod_spec,
            },
        },
    }


def _config_map_volume(name: str, config_map: str) -> Dict[str, Any]:
    return {"name": name, "configMap": {"name": config_map}}


def _data_volume(claim_name: Optional[str]) -> Dict[str, Any]:
    if claim_name:
        return {"name": DATA_VOLUME, "persistentVolumeClaim": {"claimName": claim_name}}
    return {"name": DATA_VOLUME, "emptyDir": {}}


def _storage_deployments(
    instance,
    component: ComponentDetails,
    storage,
    replicas: int,
    container: Dict[str, Any],
    volumes: List[Dict[str, Any]],
) -> List[Dict[str, Any]]:
    """One Deployment per claim when storage is declared, else a single Deployment."""
    meta_name = get_meta_name(instance.name, component.name)
    container = dict(container)
    container["volumeMounts"] = list(container.get("volumeMounts", [])) + [
        {"name": DATA_VOLUME, "mountPath": component.data_dir}
    ]

    if not storage.size:
        return [new_deployment(instance, component, meta_name, replicas, container,
                               volumes + [_data_volume(None)])]

    return [
        new_deployment(instance, component, f"{meta_name}-{index}", 1, container,
                       volumes + [_data_volume(claim)], {INDEX_LABEL: str(index)})
        for index, claim in enumerate(storage.pvc_names)
    ]


def _grafana(instance, cfg: OperatorConfig) -> List[Dict[str, Any]]:
    spec = instance.spec.grafana
    container = new_container(
        GRAFANA,
        cfg.image_for(GRAFANA.image_key),
        env=[{"name": "GF_PATHS_PROVISIONING", "value": "/etc/grafana/provisioning"}],
        mounts=[
            {"name": "datasources", "mountPath": "/etc/grafana/provisioning/datasources"},
            {"name": "dashboards-provider", "mountPath": "/etc/grafana/provisioning/dashboards"},
        ],
    )
    volumes = [
        _config_map_volume("datasources", spec.datasources_config_map),
        _config_map_volume("dashboards-provider", spec.dashboards_config_map),
    ]
    return _storage_deployments(instance, GRAFANA, spec.storage, spec.replicas, container, volumes)


def _prometheus(instance, cfg: OperatorConfig) -> List[Dict[str, Any]]:
    spec = instance.spec.prometheus
    container = new_container(
        PROMETHEUS,
        cfg.image_for(PROMETHEUS.image_key),
        args=[
            f"--config.file=/etc/prometheus/config/{PROMETHEUS_YAML}",
            f"--storage.tsdb.path={PROMETHEUS.data_dir}",
            f"--storage.tsdb.retention.time={spec.retention_period}d",
            "--web.enable-lifecycle",
        ],
        mounts=[
            {"name": "config-volume", "mountPath": "/etc/prometheus/config"},
            {"name": "rules-volume", "mountPath": "/etc/prometheus/rules"},
        ],
    )
    volumes = [
        _config_map_volume("config-volume", spec.config_map),
        _config_map_volume("rules-volume", spec.rules_config_map),
    ]
    return _storage_deployments(instance, PROMETHEUS, spec.storage, spec.replicas, container, volumes)


def _alertmanager(instance, cfg: OperatorConfig) -> List[Dict[str, Any]]:
    spec = instance.spec.alertmanager
    peers = get_meta_name(instance.name, ALERTMANAGER_CLUSTER.name)
    container = new_container(
        ALERTMANAGER,
        cfg.image_for(ALERTMANAGER.image_key),
        args=[
            f"--config.file=/etc/alertmanager/config/{ALERTMANAGER_YAML}",
            f"--storage.path={ALERTMANAGER.data_dir}",
            f"--cluster.listen-address=0.0.0.0:{ALERTMANAGER_CLUSTER.port}",
            f"--cluster.peer={peers}:{ALERTMANAGER_CLUSTER.port}",
        ],
        mounts=[{"name": "config-volume", "mountPath": "/etc/alertmanager/config"}],
    )
    return [
        new_deployment(
            instance, ALERTMANAGER, get_meta_name(instance.name, ALERTMANAGER.name), spec.replicas,
            container, [_config_map_volume("config-volume", spec.config_map)],
        )
    ]


def opensearch_env(instance, roles: List[str]) -> List[Dict[str, Any]]:
    """Environment shared by every OpenSearch node."""
    return [
        {"name": "node.name", "valueFrom": {"fieldRef": {"fieldPath": "metadata.name"}}},
        {"name": "cluster.name", "value": instance.name},
        {"name": "node.roles", "value": ",".join(roles)},
        {"name": "discovery.seed_hosts", "value": get_meta_name(instance.name, OPENSEARCH_MASTER.name)},
        {"name": "OPENSEARCH_JAVA_OPTS", "value": "-Xms1g -Xmx1g"},
        {"name": "DISABLE_INSTALL_DEMO_CONFIG", "value": "true"},
        {"name": "plugins.security.disabled", "value": "true"},
    ]


def _opensearch_ingest(instance, cfg: OperatorConfig) -> List[Dict[str, Any]]:
    node = instance.spec.opensearch.ingest_node
    if node.replicas < 1:
        return []
    container = new_container(
        OPENSEARCH_INGEST, cfg.image_for(OPENSEARCH_INGEST.image_key), env=opensearch_env(instance, node.roles)
    )
    return [
        new_deployment(instance, OPENSEARCH_INGEST, get_meta_name(instance.name, OPENSEARCH_INGEST.name),
                       node.replicas, container)
    ]


def _opensearch_data(instance, cfg: OperatorConfig) -> List[Dict[str, Any]]:
    """One single-replica Deployment per data node, each with its own claim."""
    node = instance.spec.opensearch.data_node
    meta_name = get_meta_name(instance.name, OPENSEARCH_DATA.name)
    container = new_container(
        OPENSEARCH_DATA,
        cfg.image_for(OPENSEARCH_DATA.image_key),
        env=opensearch_env(instance, node.roles),
        mounts=[{"name": DATA_VOLUME, "mountPath": OPENSEARCH_DATA.data_dir}],
    )
    claims = node.storage.pvc_names if node.storage.size else [None] * node.replicas
    return [
        new_deployment(instance, OPENSEARCH_DATA, f"{meta_name}-{index}", 1, container,
                       [_data_volume(claim)], {INDEX_LABEL: str(index)})
        for index, claim in enumerate(claims)
    ]


def _opensearch_dashboards(instance, cfg: OperatorConfig) -> List[Dict[str, Any]]:
    spec = instance.spec.opensearch_dashboards
    endpoint = opensearch_endpoint_component(instance)
    hosts = f"http://{get_meta_name(instance.name, endpoint.name)}:{endpoint.port}"
    container = new_container(
        OPENSEARCH_DASHBOARDS,
        cfg.image_for(OPENSEARCH_DASHBOARDS.image_key),
        env=[
            {"name": "OPENSEARCH_HOSTS", "value": hosts},
            {"name": "DISABLE_SECURITY_DASHBOARDS_PLUGIN", "value": "true"},
        ],
    )
    return [
        new_deployment(instance, OPENSEARCH_DASHBOARDS,
                       get_meta_name(instance.name, OPENSEARCH_DASHBOARDS.name), spec.replicas, container)
    ]


def _api(instance, cfg: OperatorConfig) -> List[Dict[str, Any]]:
    spec = instance.spec
    env: List[Dict[str, Any]] = [
        {"name": "VMI_NAME", "value": instance.name},
        {"name": "NAMESPACE", "value": instance.namespace},
    ]
    if spec.secrets_name:
        for key, var in (("username", "VMI_USERNAME"), ("password", "VMI_PASSWORD")):
            env.append({
                "name": var,
                "valueFrom": {"secretKeyRef": {"name": spec.secrets_name, "key": key}},
            })
    container = new_container(API, cfg.image_for(API.image_key), env=env)
    return [new_deployment(instance, API, get_meta_name(instance.name, API.name), spec.api.replicas, container)]


def new(instance, cfg: OperatorConfig) -> List[Dict[str, Any]]:
    """Build every Deployment the instance should have."""
    spec = instance.spec
    deployments = []
    if spec.grafana.enabled:
        deployments.extend(_grafana(instance, cfg))
    if spec.prometheus.enabled:
        deployments.extend(_prometheus(instance, cfg))
    if spec.alertmanager.enabled:
        deployments.extend(_alertmanager(instance, cfg))
    if spec.opensearch.enabled:
        deployments.extend(_opensearch_ingest(instance, cfg))
        deployments.extend(_opensearch_data(instance, cfg))
    if spec.opensearch_dashboards.enabled:
        deployments.extend(_opensearch_dashboards(instance, cfg))
    if spec.api.enabled:
        deployments.extend(_api(instance, cfg))
    return deployments


def is_data_node(workload: Dict[str, Any]) -> bool:
    """Whether a workload manifest runs OpenSearch data nodes."""
    labels = workload.get("metadata", {}).get("labels") or {}
    return labels.get(COMPONENT_LABEL) == OPENSEARCH_DATA.name
