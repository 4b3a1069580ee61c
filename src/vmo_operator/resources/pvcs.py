"""PersistentVolumeClaim builders."""

from typing import Any, Dict, List, Tuple

from . import GRAFANA, OPENSEARCH_DATA, PROMETHEUS, new_metadata


def new_claim(instance, name: str, component_name: str, size: str, storage_class: str = "") -> Dict[str, Any]:
    """Build one claim."""
    spec: Dict[str, Any] = {
        "accessModes": ["ReadWriteOnce"],
        "resources": {"requests": {"storage": size}},
    }
    if storage_class:
        spec["storageClassName"] = storage_class
    return {
        "apiVersion": "v1",
        "kind": "PersistentVolumeClaim",
        "metadata": new_metadata(instance, name, component_name),
        "spec": spec,
    }


def storage_components(instance) -> List[Tuple[str, Any]]:
    """Enabled components with storage, as (component name, storage) pairs."""
    spec = instance.spec
    components = []
    if spec.prometheus.enabled:
        components.append((PROMETHEUS.name, spec.prometheus.storage))
    if spec.grafana.enabled:
        components.append((GRAFANA.name, spec.grafana.storage))
    if spec.opensearch.enabled:
        components.append((OPENSEARCH_DATA.name, spec.opensearch.data_node.storage))
    return [(name, storage) for name, storage in components if storage.size]


def new(instance, storage_class: str = "") -> List[Dict[str, Any]]:
    """Build every claim named in the instance's storage claim lists."""
    claims = []
    for component_name, storage in storage_components(instance):
        for pvc_name in storage.pvc_names:
            claims.append(new_claim(instance, pvc_name, component_name, storage.size, storage_class))
    return claims


def claim_size(claim: Dict[str, Any]) -> str:
    """Requested storage of a claim manifest."""
    return (
        claim.get("spec", {}).get("resources", {}).get("requests", {}).get("storage", "")
    )
