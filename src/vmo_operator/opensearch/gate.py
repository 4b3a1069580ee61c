"""
Cluster-health gate for disruptive OpenSearch changes, and ISM policy
provisioning.

Data-node restarts, deletions and claim resizes can lose shards when the
cluster is not green or is missing nodes, so the workload and storage steps
ask the gate first. The gate raises a ``ClusterHealthError`` subclass when the
change must wait for a later pass.
"""

import asyncio
import logging
from typing import Callable, Dict, List, Optional

from ..constants import DEFAULT_MIN_DATA_NODES_FOR_RESIZE
from ..exceptions import (
    ClusterNotReadyError,
    ResizeNotAllowedError,
    TopologyMismatchError,
)
from ..resources import (
    OPENSEARCH_DATA,
    OPENSEARCH_INGEST,
    OPENSEARCH_MASTER,
    get_meta_name,
)
from ..utils.diff import compare_ignore_target_empties
from .client import OpenSearchClient
from .models import ClusterHealthSnapshot, PolicyDocument, build_ism_policy

logger = logging.getLogger(__name__)

ClientFactory = Callable[[], OpenSearchClient]


def expected_topology(instance) -> Dict[str, int]:
    """Node name prefix of each declared node group mapped to its replicas."""
    opensearch = instance.spec.opensearch
    groups = (
        (OPENSEARCH_MASTER, opensearch.master_node),
        (OPENSEARCH_INGEST, opensearch.ingest_node),
        (OPENSEARCH_DATA, opensearch.data_node),
    )
    return {
        get_meta_name(instance.name, component.name): node.replicas
        for component, node in groups
        if node.replicas > 0
    }


def missing_nodes(expected: Dict[str, int], node_names: List[str]) -> List[str]:
    """Describe every node group with fewer or more nodes than declared."""
    problems = []
    for prefix, replicas in sorted(expected.items()):
        found = sum(1 for name in node_names if name.startswith(f"{prefix}-"))
        if found != replicas:
            problems.append(f"{prefix}: expected {replicas}, found {found}")
    return problems


class ClusterHealthGate:
    """Answers whether a disruptive change to the OpenSearch cluster may proceed."""

    def __init__(
        self,
        client_factory: ClientFactory,
        min_data_nodes: int = DEFAULT_MIN_DATA_NODES_FOR_RESIZE,
    ):
        self.client_factory = client_factory
        self.min_data_nodes = min_data_nodes

    async def snapshot(self, instance) -> ClusterHealthSnapshot:
        """Read cluster health and membership."""
        async with self.client_factory() as client:
            health = await client.get_cluster_health()
            nodes = await client.list_nodes()

        node_names = [node.name for node in nodes]
        return ClusterHealthSnapshot(
            color=health.status,
            node_count=health.number_of_nodes,
            data_node_count=health.number_of_data_nodes,
            node_names=node_names,
            missing_nodes=missing_nodes(expected_topology(instance), node_names),
        )

    @staticmethod
    def _require_green(snapshot: ClusterHealthSnapshot) -> None:
        if not snapshot.is_green:
            raise ClusterNotReadyError(f"cluster health is {snapshot.color}, not green")

    @staticmethod
    def _require_topology(snapshot: ClusterHealthSnapshot) -> None:
        if snapshot.missing_nodes:
            raise TopologyMismatchError(
                "cluster nodes do not match the declared node groups: "
                + "; ".join(snapshot.missing_nodes)
            )

    async def check_resizable(self, instance) -> ClusterHealthSnapshot:
        """
        Allow a data-node storage change.

        Raises:
            ResizeNotAllowedError: Too few data nodes are declared; no
                request is made
            ClusterNotReadyError: The cluster is not green
            TopologyMismatchError: Nodes are missing
        """
        declared = instance.spec.opensearch.data_node.replicas
        if declared < self.min_data_nodes:
            raise ResizeNotAllowedError(
                f"{declared} data node(s) declared, at least {self.min_data_nodes} "
                "are required to resize storage"
            )
        snapshot = await self.snapshot(instance)
        self._require_green(snapshot)
        self._require_topology(snapshot)
        return snapshot

    async def check_updated(self, instance) -> ClusterHealthSnapshot:
        """Allow a rolling data-node update: green and every node present."""
        snapshot = await self.snapshot(instance)
        self._require_green(snapshot)
        self._require_topology(snapshot)
        return snapshot

    async def check_green(self, instance) -> ClusterHealthSnapshot:
        """Allow a data-node removal: green only."""
        async with self.client_factory() as client:
            health = await client.get_cluster_health()
        snapshot = ClusterHealthSnapshot(
            color=health.status,
            node_count=health.number_of_nodes,
            data_node_count=health.number_of_data_nodes,
        )
        self._require_green(snapshot)
        return snapshot

    def configure_lifecycle_policies(self, instance) -> "asyncio.Task[Optional[Exception]]":
        """
        Provision the declared ISM policies in a task of its own.

        The task resolves to None on success or to the first error; it never
        raises.
        """
        return asyncio.create_task(
            self._configure_lifecycle_policies(instance),
            name=f"ism-policies-{instance.key}",
        )

    async def _configure_lifecycle_policies(self, instance) -> Optional[Exception]:
        opensearch = instance.spec.opensearch
        if not opensearch.enabled:
            return None
        try:
            async with self.client_factory() as client:
                declared = set()
                for index_policy in opensearch.policies:
                    declared.add(index_policy.policy_name)
                    await self._ensure_policy(client, index_policy)
                await self._delete_stale_policies(client, declared)
        except Exception as e:  # pylint: disable=broad-except
            logger.debug("ISM policy provisioning for %s failed: %s", instance.key, e)
            return e
        return None

    @staticmethod
    async def _ensure_policy(client: OpenSearchClient, index_policy) -> None:
        desired = build_ism_policy(index_policy)
        existing = await client.get_policy(index_policy.policy_name)
        if existing is None:
            await client.put_policy(index_policy.policy_name, desired)
            return
        if not policy_differs(existing, desired):
            return
        await client.put_policy(
            index_policy.policy_name, desired,
            seq_no=existing.seq_no, primary_term=existing.primary_term,
        )

    @staticmethod
    async def _delete_stale_policies(client: OpenSearchClient, declared: set) -> None:
        for policy in await client.list_policies():
            if policy.managed and policy.policy_id not in declared:
                await client.delete_policy(policy.policy_id)


def policy_differs(existing: PolicyDocument, desired: dict) -> bool:
    """Compare the fields the operator sets; server-added fields are ignored."""
    return bool(compare_ignore_target_empties(existing.policy, desired["policy"]))
