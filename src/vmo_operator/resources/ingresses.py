"""Ingress builders."""

from typing import Any, Dict, List

from . import (
    ALERTMANAGER,
    API,
    GRAFANA,
    OPENSEARCH_DASHBOARDS,
    PROMETHEUS,
    ComponentDetails,
    get_meta_name,
    new_metadata,
)
from .deployments import opensearch_endpoint_component
from ..utils.url_builder import build_ingress_host

HOST_PREFIXES = {
    GRAFANA.name: "grafana",
    PROMETHEUS.name: "prometheus",
    ALERTMANAGER.name: "alertmanager",
    OPENSEARCH_DASHBOARDS.name: "osd",
    API.name: "api",
}


def new_ingress(instance, component: ComponentDetails, host_prefix: str) -> Dict[str, Any]:
    """Build the Ingress routing ``<prefix>.<uri>`` to a component."""
    host = build_ingress_host(host_prefix, instance.spec.uri)
    service = get_meta_name(instance.name, component.name)
    annotations = {"kubernetes.io/tls-acme": "true"}
    if instance.spec.secrets_name:
        annotations.update({
            "nginx.ingress.kubernetes.io/auth-type": "basic",
            "nginx.ingress.kubernetes.io/auth-secret": instance.spec.secrets_name,
            "nginx.ingress.kubernetes.io/auth-realm": f"{host} auth",
        })
    metadata = new_metadata(instance, get_meta_name(instance.name, host_prefix), component.name)
    metadata["annotations"] = annotations
    return {
        "apiVersion": "networking.k8s.io/v1",
        "kind": "Ingress",
        "metadata": metadata,
        "spec": {
            "tls": [{"hosts": [host], "secretName": f"{service}-tls"}],
            "rules": [
                {
                    "host": host,
                    "http": {
                        "paths": [
                            {
                                "path": "/",
                                "pathType": "Prefix",
                                "backend": {
                                    "service": {"name": service, "port": {"number": component.port}}
                                },
                            }
                        ]
                    },
                }
            ],
        },
    }


def new(instance) -> List[Dict[str, Any]]:
    """Build the Ingresses of externally exposed components; none without a URI."""
    spec = instance.spec
    if not spec.uri:
        return []

    ingresses = []
    for component, enabled in (
        (GRAFANA, spec.grafana.enabled),
        (PROMETHEUS, spec.prometheus.enabled),
        (ALERTMANAGER, spec.alertmanager.enabled),
        (OPENSEARCH_DASHBOARDS, spec.opensearch_dashboards.enabled),
        (API, spec.api.enabled),
    ):
        if enabled:
            ingresses.append(new_ingress(instance, component, HOST_PREFIXES[component.name]))
    if spec.opensearch.enabled:
        ingresses.append(new_ingress(instance, opensearch_endpoint_component(instance), "opensearch"))
    return ingresses
