"""Desired-state builders for objects owned by a MonitoringInstance."""

from dataclasses import dataclass
from typing import Any, Dict, List

from ..constants import API_VERSION, COMPONENT_LABEL, INSTANCE_LABEL, KIND, META_NAME_PREFIX


@dataclass(frozen=True)
class ComponentDetails:
    """Static facts about a deployable component."""

    name: str
    port: int
    image_key: str
    data_dir: str = ""
    external: bool = True


GRAFANA = ComponentDetails("grafana", 3000, "grafana", "/var/lib/grafana")
PROMETHEUS = ComponentDetails("prometheus", 9090, "prometheus", "/prometheus")
ALERTMANAGER = ComponentDetails("alertmanager", 9093, "alertmanager", "/alertmanager")
ALERTMANAGER_CLUSTER = ComponentDetails("alertmanager-cluster", 9094, "alertmanager", external=False)
OPENSEARCH_MASTER = ComponentDetails(
    "es-master", 9300, "opensearch", "/usr/share/opensearch/data", external=False
)
OPENSEARCH_MASTER_HTTP = ComponentDetails("es-master-http", 9200, "opensearch", external=False)
OPENSEARCH_INGEST = ComponentDetails("es-ingest", 9200, "opensearch")
OPENSEARCH_DATA = ComponentDetails("es-data", 9200, "opensearch", "/usr/share/opensearch/data", external=False)
OPENSEARCH_DASHBOARDS = ComponentDetails("osd", 5601, "opensearchDashboards")
API = ComponentDetails("api", 9097, "api")


def get_meta_name(instance_name: str, component_name: str) -> str:
    """Name of an object owned by an instance."""
    return f"{META_NAME_PREFIX}{instance_name}-{component_name}"


def get_meta_labels(instance) -> Dict[str, str]:
    """Labels carried by every object owned by an instance."""
    return {INSTANCE_LABEL: instance.name}


def get_component_labels(instance, component_name: str) -> Dict[str, str]:
    """Owner labels plus the component label."""
    labels = get_meta_labels(instance)
    labels[COMPONENT_LABEL] = component_name
    return labels


def get_spec_id(instance_name: str, component_name: str) -> Dict[str, str]:
    """Pod selector for a component."""
    return {"app": get_meta_name(instance_name, component_name)}


def get_owner_references(instance) -> List[Dict[str, Any]]:
    """Owner reference pointing back at the instance."""
    return [
        {
            "apiVersion": API_VERSION,
            "kind": KIND,
            "name": instance.name,
            "uid": instance.uid,
            "controller": True,
            "blockOwnerDeletion": True,
        }
    ]


def new_metadata(instance, name: str, component_name: str = "") -> Dict[str, Any]:
    """Metadata for an owned object."""
    labels = (
        get_component_labels(instance, component_name)
        if component_name
        else get_meta_labels(instance)
    )
    return {
        "name": name,
        "namespace": instance.namespace,
        "labels": labels,
        "ownerReferences": get_owner_references(instance),
    }
