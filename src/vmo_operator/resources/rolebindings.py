"""RoleBinding builder."""

from typing import Any, Dict, List

from . import get_meta_name, new_metadata
from ..live_config import OperatorConfig


def new(instance, cfg: OperatorConfig) -> List[Dict[str, Any]]:
    """Bind the namespace's default service account to the operator's cluster role."""
    return [
        {
            "apiVersion": "rbac.authorization.k8s.io/v1",
            "kind": "RoleBinding",
            "metadata": new_metadata(instance, get_meta_name(instance.name, "cluster-role-binding")),
            "roleRef": {
                "apiGroup": "rbac.authorization.k8s.io",
                "kind": "ClusterRole",
                "name": cfg.cluster_role_name,
            },
            "subjects": [
                {"kind": "ServiceAccount", "name": "default", "namespace": instance.namespace}
            ],
        }
    ]
