"""StatefulSet builder for the OpenSearch master nodes."""

from typing import Any, Dict, List

from . import OPENSEARCH_MASTER, get_meta_name, new_metadata
from .deployments import DATA_VOLUME, new_container, opensearch_env
from ..live_config import OperatorConfig


def new(instance, cfg: OperatorConfig) -> List[Dict[str, Any]]:
    """Build the master StatefulSet when OpenSearch is enabled."""
    opensearch = instance.spec.opensearch
    node = opensearch.master_node
    if not opensearch.enabled or node.replicas < 1:
        return []

    name = get_meta_name(instance.name, OPENSEARCH_MASTER.name)
    pod_labels = {"app": name}
    env = opensearch_env(instance, node.roles)
    env.append({
        "name": "cluster.initial_master_nodes",
        "value": ",".join(f"{name}-{index}" for index in range(node.replicas)),
    })
    container = new_container(
        OPENSEARCH_MASTER,
        cfg.image_for(OPENSEARCH_MASTER.image_key),
        env=env,
        mounts=[{"name": DATA_VOLUME, "mountPath": OPENSEARCH_MASTER.data_dir}],
    )

    spec: Dict[str, Any] = {
        "replicas": node.replicas,
        "serviceName": name,
        "selector": {"matchLabels": dict(pod_labels)},
        "template": {
            "metadata": {"labels": dict(pod_labels)},
            "spec": {"containers": [container]},
        },
    }

    if node.storage.size:
        claim_spec: Dict[str, Any] = {
            "accessModes": ["ReadWriteOnce"],
            "resources": {"requests": {"storage": node.storage.size}},
        }
        if cfg.storage_class:
            claim_spec["storageClassName"] = cfg.storage_class
        spec["volumeClaimTemplates"] = [{"metadata": {"name": DATA_VOLUME}, "spec": claim_spec}]
    else:
        spec["template"]["spec"]["volumes"] = [{"name": DATA_VOLUME, "emptyDir": {}}]

    return [
        {
            "apiVersion": "apps/v1",
            "kind": "StatefulSet",
            "metadata": new_metadata(instance, name, OPENSEARCH_MASTER.name),
            "spec": spec,
        }
    ]
