"""Pydantic models for the MonitoringInstance custom resource."""

# pylint: disable=no-self-argument,too-few-public-methods

import copy
import hashlib
import json
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .constants import NODE_ROLES
from .exceptions import InvalidInstanceError


class CRModel(BaseModel):
    """Base model for custom resource fields; unknown fields round-trip."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")


class Storage(CRModel):
    """Storage declared for a stateful component."""

    size: str = ""
    pvc_names: List[str] = Field(default_factory=list, alias="pvcNames")


class Component(CRModel):
    """Fields shared by every simple component."""

    enabled: bool = False
    replicas: int = Field(default=0, ge=0)
    storage: Storage = Field(default_factory=Storage)


class Grafana(Component):
    """Dashboard server."""

    dashboards_config_map: str = Field(default="", alias="dashboardsConfigMap")
    datasources_config_map: str = Field(default="", alias="datasourcesConfigMap")


class Prometheus(Component):
    """Metrics server."""

    config_map: str = Field(default="", alias="configMap")
    versions_config_map: str = Field(default="", alias="versionsConfigMap")
    rules_config_map: str = Field(default="", alias="rulesConfigMap")
    rules_versions_config_map: str = Field(default="", alias="rulesVersionsConfigMap")
    retention_period: int = Field(default=0, ge=0, alias="retentionPeriod")


class AlertManager(Component):
    """Alert router."""

    config_map: str = Field(default="", alias="configMap")
    versions_config_map: str = Field(default="", alias="versionsConfigMap")
    config: str = ""


class OpenSearchNode(CRModel):
    """One OpenSearch node group."""

    name: str = ""
    replicas: int = Field(default=0, ge=0)
    roles: List[str] = Field(default_factory=list)
    storage: Storage = Field(default_factory=Storage)

    @field_validator("roles")
    def validate_roles(cls, v):
        """Roles must be known OpenSearch node roles."""
        for role in v:
            if role not in NODE_ROLES:
                raise ValueError(f"Invalid node role: {role}")
        return v


class Rollover(CRModel):
    """Rollover conditions of an index lifecycle policy."""

    min_index_age: Optional[str] = Field(default=None, alias="minIndexAge")
    min_size: Optional[str] = Field(default=None, alias="minSize")
    min_doc_count: Optional[int] = Field(default=None, alias="minDocCount")


class IndexPolicy(CRModel):
    """Index lifecycle policy to provision in OpenSearch."""

    policy_name: str = Field(..., min_length=1, alias="policyName")
    index_pattern: str = Field(..., min_length=1, alias="indexPattern")
    min_index_age: str = Field(default="7d", alias="minIndexAge")
    rollover: Optional[Rollover] = None


class OpenSearch(CRModel):
    """Log and search cluster."""

    enabled: bool = False
    master_node: OpenSearchNode = Field(default_factory=OpenSearchNode, alias="masterNode")
    ingest_node: OpenSearchNode = Field(default_factory=OpenSearchNode, alias="ingestNode")
    data_node: OpenSearchNode = Field(default_factory=OpenSearchNode, alias="dataNode")
    policies: List[IndexPolicy] = Field(default_factory=list)


class MonitoringInstanceSpec(CRModel):
    """Desired state of a monitoring stack."""

    uri: str = ""
    lock: bool = False
    secrets_name: str = Field(default="", alias="secretsName")
    service_type: str = Field(default="", alias="serviceType")
    grafana: Grafana = Field(default_factory=Grafana)
    prometheus: Prometheus = Field(default_factory=Prometheus)
    alertmanager: AlertManager = Field(default_factory=AlertManager)
    opensearch: OpenSearch = Field(default_factory=OpenSearch)
    opensearch_dashboards: Component = Field(default_factory=Component, alias="opensearchDashboards")
    api: Component = Field(default_factory=Component)


class MonitoringInstanceStatus(CRModel):
    """Observed state written by the operator."""

    creation_time: Optional[str] = Field(default=None, alias="creationTime")
    env_name: str = Field(default="", alias="envName")
    state: str = ""
    hash: str = ""
    current_version: str = Field(default="", alias="currentVersion")


def dump(model: BaseModel) -> Dict[str, Any]:
    """Serialize a model the way it is stored in the cluster."""
    return model.model_dump(by_alias=True, exclude_none=True, mode="json")


class Instance:
    """A MonitoringInstance body with a parsed spec and status."""

    def __init__(self, body: Dict[str, Any]):
        self.body = copy.deepcopy(body)
        metadata = self.body.get("metadata", {})
        self.name: str = metadata.get("name", "")
        self.namespace: str = metadata.get("namespace", "")
        self.uid: str = metadata.get("uid", "")
        self.labels: Dict[str, str] = dict(metadata.get("labels") or {})
        try:
            self.spec = MonitoringInstanceSpec(**(self.body.get("spec") or {}))
            self.status = MonitoringInstanceStatus(**(self.body.get("status") or {}))
        except ValidationError as e:
            raise InvalidInstanceError(
                f"invalid MonitoringInstance {self.namespace}/{self.name}: {e}"
            ) from e

    @property
    def key(self) -> str:
        """Work queue key of this instance."""
        return f"{self.namespace}/{self.name}"

    def spec_dict(self) -> Dict[str, Any]:
        """Current spec as stored in the cluster."""
        return dump(self.spec)

    def status_dict(self) -> Dict[str, Any]:
        """Current status as stored in the cluster."""
        return dump(self.status)

    def spec_hash(self) -> str:
        """Content hash of the spec."""
        encoded = json.dumps(self.spec_dict(), sort_keys=True).encode("utf-8")
        return hashlib.sha256(encoded).hexdigest()

    def to_body(self) -> Dict[str, Any]:
        """Body for a spec update, carrying the observed resourceVersion."""
        body = copy.deepcopy(self.body)
        body["spec"] = self.spec_dict()
        body.pop("status", None)
        return body
