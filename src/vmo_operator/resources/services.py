"""Service builders."""

from typing import Any, Dict, List

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
    get_spec_id,
    new_metadata,
)


def get_service_port(component: ComponentDetails) -> Dict[str, Any]:
    """Port exposed for a component."""
    return {"name": f"http-{component.name}", "port": component.port, "targetPort": component.port}


def new_service(instance, component: ComponentDetails, selector_component: str = "") -> Dict[str, Any]:
    """Build the Service of one component."""
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": new_metadata(
            instance, get_meta_name(instance.name, component.name), component.name
        ),
        "spec": {
            "type": instance.spec.service_type or "ClusterIP",
            "selector": get_spec_id(instance.name, selector_component or component.name),
            "ports": [get_service_port(component)],
        },
    }


def new_headless_service(instance, component: ComponentDetails, selector_component: str) -> Dict[str, Any]:
    """Build a headless Service used for peer discovery."""
    service = new_service(instance, component, selector_component)
    service["spec"]["type"] = "ClusterIP"
    service["spec"]["clusterIP"] = "None"
    return service


def new(instance) -> List[Dict[str, Any]]:
    """Build every Service the instance should have."""
    spec = instance.spec
    services = []

    if spec.grafana.enabled:
        services.append(new_service(instance, GRAFANA))
    if spec.prometheus.enabled:
        services.append(new_service(instance, PROMETHEUS))
    if spec.alertmanager.enabled:
        services.append(new_service(instance, ALERTMANAGER))
        services.append(new_headless_service(instance, ALERTMANAGER_CLUSTER, ALERTMANAGER.name))
    if spec.opensearch.enabled:
        services.append(new_headless_service(instance, OPENSEARCH_MASTER, OPENSEARCH_MASTER.name))
        services.append(new_service(instance, OPENSEARCH_MASTER_HTTP, OPENSEARCH_MASTER.name))
        services.append(new_service(instance, OPENSEARCH_DATA))
        if spec.opensearch.ingest_node.replicas > 0:
            services.append(new_service(instance, OPENSEARCH_INGEST))
    if spec.opensearch_dashboards.enabled:
        services.append(new_service(instance, OPENSEARCH_DASHBOARDS))
    if spec.api.enabled:
        services.append(new_service(instance, API))

    return services
