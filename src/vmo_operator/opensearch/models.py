"""Pydantic models for OpenSearch API requests and responses."""

# pylint: disable=too-few-public-methods

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..constants import MANAGED_POLICY_DESCRIPTION


class ClusterHealth(BaseModel):
    """Response of GET /_cluster/health."""

    model_config = ConfigDict(extra="ignore")

    cluster_name: str = ""
    status: str
    number_of_nodes: int = 0
    number_of_data_nodes: int = 0
    unassigned_shards: int = 0


class NodeInfo(BaseModel):
    """One row of GET /_cat/nodes?format=json."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: str
    node_role: str = Field(default="", alias="node.role")


class ClusterHealthSnapshot(BaseModel):
    """Point-in-time view of cluster health and membership."""

    color: str
    node_count: int
    data_node_count: int
    node_names: List[str] = Field(default_factory=list)
    missing_nodes: List[str] = Field(default_factory=list)

    @property
    def is_green(self) -> bool:
        return self.color == "green"


class PolicyDocument(BaseModel):
    """An ISM policy as returned by GET /_plugins/_ism/policies/<id>."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    policy_id: str = Field(alias="_id")
    seq_no: Optional[int] = Field(default=None, alias="_seq_no")
    primary_term: Optional[int] = Field(default=None, alias="_primary_term")
    policy: Dict[str, Any] = Field(default_factory=dict)

    @property
    def managed(self) -> bool:
        """Whether the operator created this policy."""
        return self.policy.get("description") == MANAGED_POLICY_DESCRIPTION


def build_ism_policy(index_policy) -> Dict[str, Any]:
    """
    Render an ISM policy body from a declared IndexPolicy.

    Indices matching the pattern stay in an ``ingest`` state, optionally
    rolling over, and are deleted once older than ``minIndexAge``.
    """
    ingest_actions: List[Dict[str, Any]] = []
    rollover = index_policy.rollover
    if rollover is not None:
        conditions: Dict[str, Any] = {}
        if rollover.min_index_age:
            conditions["min_index_age"] = rollover.min_index_age
        if rollover.min_size:
            conditions["min_size"] = rollover.min_size
        if rollover.min_doc_count is not None:
            conditions["min_doc_count"] = rollover.min_doc_count
        if conditions:
            ingest_actions.append({"rollover": conditions})

    return {
        "policy": {
            "description": MANAGED_POLICY_DESCRIPTION,
            "default_state": "ingest",
            "states": [
                {
                    "name": "ingest",
                    "actions": ingest_actions,
                    "transitions": [
                        {
                            "state_name": "delete",
                            "conditions": {"min_index_age": index_policy.min_index_age},
                        }
                    ],
                },
                {
                    "name": "delete",
                    "actions": [{"delete": {}}],
                    "transitions": [],
                },
            ],
            "ism_template": [
                {"index_patterns": [index_policy.index_pattern], "priority": 1}
            ],
        }
    }
