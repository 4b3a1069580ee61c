"""State shared by the pipeline steps of one sync pass."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ..constants import INSTANCE_LABEL
from ..kube.cache import ObjectCache
from ..kube.client import KubeClient
from ..live_config import OperatorConfig

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    """Outcome of one sync pass."""

    key: str
    locked: bool = False
    skipped: bool = False
    errors: Dict[str, Exception] = field(default_factory=dict)
    policy_errors: List[Exception] = field(default_factory=list)
    completed: List[str] = field(default_factory=list)
    deployments_dirty: bool = False

    @property
    def failed(self) -> bool:
        """Whether any step failed and the key should be retried."""
        return bool(self.errors)

    def defer(self, error: Exception) -> None:
        """Record a change held back by the cluster-health gate."""
        logger.info("%s: deferring data-node change: %s", self.key, error)
        self.policy_errors.append(error)
        self.deployments_dirty = True


@dataclass
class SyncContext:
    """Everything a pipeline step needs."""

    kube: KubeClient
    cache: ObjectCache
    instance: Any
    cfg: OperatorConfig
    result: SyncResult
    gate: Any = None
    credentials: Optional[Tuple[str, str]] = None
    policy_task: Optional["asyncio.Task"] = None

    @property
    def namespace(self) -> str:
        return self.instance.namespace

    def owned(self, kind: str) -> List[Dict[str, Any]]:
        """Cached objects of a kind labelled as belonging to the instance."""
        return self.cache.list(kind, self.namespace, {INSTANCE_LABEL: self.instance.name})

    def observed(self, kind: str, name: str) -> Optional[Dict[str, Any]]:
        return self.cache.get(kind, self.namespace, name)
