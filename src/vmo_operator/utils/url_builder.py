"""URL and host name construction for instance endpoints."""

import logging

from ..resources import get_meta_name
from ..resources.deployments import opensearch_endpoint_component

logger = logging.getLogger(__name__)


def build_ingress_host(prefix: str, uri: str) -> str:
    """Host name routed by an Ingress, e.g. ``grafana.vmi.example.com``."""
    return f"{prefix}.{uri}"


def build_service_url(
    service_name: str, namespace: str, port: int, scheme: str = "http"
) -> str:
    """In-cluster URL of a Service."""
    url = f"{scheme}://{service_name}.{namespace}.svc.cluster.local:{port}"
    logger.debug("Built Service URL: %s", url)
    return url


def build_opensearch_url(instance, scheme: str = "http") -> str:
    """HTTP endpoint of the instance's OpenSearch cluster."""
    component = opensearch_endpoint_component(instance)
    return build_service_url(
        get_meta_name(instance.name, component.name), instance.namespace, component.port, scheme
    )

