"""Operator configuration read from a ConfigMap and swapped at runtime."""

import logging
import threading
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .constants import DEFAULT_MIN_DATA_NODES_FOR_RESIZE
from .exceptions import LiveConfigError

logger = logging.getLogger(__name__)

CONFIG_KEY = "config"

DEFAULT_IMAGES = {
    "prometheus": "quay.io/prometheus/prometheus:v2.44.0",
    "grafana": "docker.io/grafana/grafana:9.5.2",
    "alertmanager": "quay.io/prometheus/alertmanager:v0.25.0",
    "opensearch": "docker.io/opensearchproject/opensearch:2.7.0",
    "opensearchDashboards": "docker.io/opensearchproject/opensearch-dashboards:2.7.0",
    "api": "ghcr.io/verrazzano/monitoring-instance-api:1.0.0",
}


class OperatorConfig(BaseModel):
    """Settings recognized in the operator ConfigMap."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    env_name: str = Field(default="", alias="envName")
    default_simple_component_replicas: int = Field(
        default=1, ge=0, alias="defaultSimpleComponentReplicas"
    )
    min_data_nodes_for_resize: int = Field(
        default=DEFAULT_MIN_DATA_NODES_FOR_RESIZE, ge=1, alias="minDataNodesForResize"
    )
    metrics_port: int = Field(default=8090, ge=1, le=65535, alias="metricsPort")
    storage_class: str = Field(default="", alias="storageClass")
    cluster_role_name: str = Field(default="vmi-cluster-role-default", alias="clusterRoleName")
    cluster_name: str = Field(default="local", alias="clusterName")
    policy_wait_seconds: float = Field(default=10.0, ge=0, alias="policyWaitSeconds")
    images: Dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_IMAGES))

    def image_for(self, component: str) -> str:
        """Get the image for a component, falling back to the built-in default."""
        return self.images.get(component) or DEFAULT_IMAGES[component]


def parse_operator_config(data: Optional[Dict[str, str]]) -> OperatorConfig:
    """
    Build an OperatorConfig from ConfigMap data.

    Args:
        data: The ConfigMap ``data`` mapping

    Returns:
        Parsed configuration

    Raises:
        LiveConfigError: If the YAML is malformed or a value is invalid
    """
    raw = (data or {}).get(CONFIG_KEY)
    if not raw:
        return OperatorConfig()

    try:
        values = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise LiveConfigError(f"operator config is not valid YAML: {e}") from e

    if values is None:
        return OperatorConfig()
    if not isinstance(values, dict):
        raise LiveConfigError("operator config must be a YAML mapping")

    images = values.get("images")
    if images is not None and not isinstance(images, dict):
        raise LiveConfigError("operator config 'images' must be a mapping")
    if images:
        values = {**values, "images": {**DEFAULT_IMAGES, **images}}

    try:
        return OperatorConfig(**values)
    except ValidationError as e:
        raise LiveConfigError(f"invalid operator config: {e}") from e


class LiveConfig:
    """Holds the current OperatorConfig and the ConfigMap data it came from.

    Readers call ``get()``; the value is immutable and only ever replaced
    as a whole.
    """

    def __init__(self, initial: Optional[OperatorConfig] = None,
                 source: Optional[Dict[str, str]] = None):
        self._lock = threading.Lock()
        self._current = initial or OperatorConfig()
        self._source: Dict[str, str] = dict(source or {})

    def get(self) -> OperatorConfig:
        """Get the current configuration."""
        with self._lock:
            return self._current

    @property
    def source(self) -> Dict[str, str]:
        """ConfigMap data of the last applied configuration."""
        with self._lock:
            return dict(self._source)

    def apply(self, data: Optional[Dict[str, str]]) -> bool:
        """
        Swap in the configuration parsed from new ConfigMap data.

        Returns:
            True if the configuration was replaced, False if the data is
            unchanged from the last applied copy

        Raises:
            LiveConfigError: If the data is malformed; the current
                configuration is kept
        """
        data = dict(data or {})
        with self._lock:
            if data == self._source:
                return False

        new_config = parse_operator_config(data)

        with self._lock:
            self._current = new_config
            self._source = data
        logger.info("Operator configuration reloaded")
        return True


def operator_config_summary(cfg: OperatorConfig) -> Dict[str, Any]:
    """Fields worth logging at startup."""
    return cfg.model_dump(by_alias=True, exclude={"images"})
