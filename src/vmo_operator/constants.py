"""Constants shared across the operator."""

GROUP = "monitoring.vmo.io"
VERSION = "v1"
PLURAL = "monitoringinstances"
KIND = "MonitoringInstance"
API_VERSION = f"{GROUP}/{VERSION}"
CRD_NAME = f"{PLURAL}.{GROUP}"

# Cache kind for the custom resource itself
INSTANCE_KIND = PLURAL

# Labels placed on every owned object
INSTANCE_LABEL = f"{GROUP}/instance"
COMPONENT_LABEL = f"{GROUP}/component"

# Owned object names are vmi-<instance>-<component>
META_NAME_PREFIX = "vmi-"

# Alert rule files whose key starts with this prefix belong to the operator
RESERVED_RULES_PREFIX = "vmo-"

# Description stamped on ISM policies created by the operator
MANAGED_POLICY_DESCRIPTION = "__vmo_managed_policy__"

# Config map suffixes
DASHBOARD_CONFIG = "dashboards"
DATASOURCE_CONFIG = "datasources"
PROMETHEUS_CONFIG = "prometheus-config"
PROMETHEUS_CONFIG_VERSIONS = "prometheus-config-versions"
ALERTRULES_CONFIG = "alertrules"
ALERTRULES_VERSIONS_CONFIG = "alertrules-versions"
ALERTMANAGER_CONFIG = "alertmanager-config"
ALERTMANAGER_CONFIG_VERSIONS = "alertmanager-config-versions"

# Config map keys
PROMETHEUS_YAML = "prometheus.yml"
ALERTMANAGER_YAML = "alertmanager.yml"
DATASOURCE_YAML = "datasource.yaml"
DASHBOARD_PROVIDER_YAML = "vmo-dashboard-provider.yml"
DEFAULT_ALERTRULES_KEY = "vmo-1-alertrules.yml"

DEFAULT_PROMETHEUS_RETENTION_DAYS = 90
DEFAULT_MIN_DATA_NODES_FOR_RESIZE = 2

# Instance lifecycle states
STATE_RUNNING = "Running"
STATE_ERROR = "Error"
STATE_TERMINATING = "Terminating"

# OpenSearch node roles
ROLE_MASTER = "master"
ROLE_INGEST = "ingest"
ROLE_DATA = "data"
NODE_ROLES = (ROLE_MASTER, ROLE_INGEST, ROLE_DATA)

# Queue backlog older than this makes the operator unhealthy
HEALTH_QUEUE_MAX_AGE_SECONDS = 60
