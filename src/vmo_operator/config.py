"""
Process configuration for the vmo operator.
Supports both environment variables and YAML config files with defaults.

These settings are fixed for the lifetime of the process. Settings that can
change while the operator runs live in the operator ConfigMap, see
``live_config``.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)


class Config:
    """Configuration manager for the vmo operator."""

    def __init__(self, config_file: Optional[str] = None):
        self.config_file = config_file or os.getenv('VMO_CONFIG_FILE', '/app/config/defaults.yaml')
        self._config: Dict[str, Any] = {}
        self._load_config()

    def _load_config(self) -> None:
        """Load configuration from file and environment variables."""
        defaults = self._load_yaml_config()
        env_config = self._load_env_config()
        # Env takes precedence
        self._config = {**defaults, **env_config}

    def _load_yaml_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file."""
        config_path = Path(self.config_file)
        if not config_path.exists():
            return {}
        try:
            with open(config_path, 'r') as f:
                return yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning("Could not load config file %s: %s", self.config_file, e)
        return {}

    def _load_env_config(self) -> Dict[str, Any]:
        """Load configuration from environment variables."""
        config = {}

        # Operator identity
        if namespace := os.getenv('OPERATOR_NAMESPACE'):
            config.setdefault('operator', {})['namespace'] = namespace

        if config_map := os.getenv('OPERATOR_CONFIG_MAP'):
            config.setdefault('operator', {})['config_map'] = config_map

        if build_version := os.getenv('BUILD_VERSION'):
            config.setdefault('operator', {})['build_version'] = build_version

        # Watch scope
        if watch_namespace := os.getenv('WATCH_NAMESPACE'):
            config.setdefault('watch', {})['namespace'] = watch_namespace

        if watch_instance := os.getenv('WATCH_INSTANCE'):
            config.setdefault('watch', {})['instance'] = watch_instance

        # Worker pool
        if threadiness := os.getenv('WORKER_THREADS'):
            try:
                config.setdefault('workers', {})['threadiness'] = int(threadiness)
            except ValueError:
                logger.warning("Ignoring non-integer WORKER_THREADS=%s", threadiness)

        if drain_timeout := os.getenv('WORKER_DRAIN_TIMEOUT'):
            try:
                config.setdefault('workers', {})['drain_timeout'] = float(drain_timeout)
            except ValueError:
                logger.warning("Ignoring non-numeric WORKER_DRAIN_TIMEOUT=%s", drain_timeout)

        if sync_timeout := os.getenv('CACHE_SYNC_TIMEOUT'):
            try:
                config.setdefault('workers', {})['cache_sync_timeout'] = float(sync_timeout)
            except ValueError:
                logger.warning("Ignoring non-numeric CACHE_SYNC_TIMEOUT=%s", sync_timeout)

        # Retry configuration for OpenSearch calls
        if max_attempts := os.getenv('MAX_RETRY_ATTEMPTS'):
            try:
                config.setdefault('retry', {})['max_attempts'] = int(max_attempts)
            except ValueError:
                logger.warning("Ignoring non-integer MAX_RETRY_ATTEMPTS=%s", max_attempts)

        if backoff_factor := os.getenv('RETRY_BACKOFF_FACTOR'):
            try:
                config.setdefault('retry', {})['backoff_factor'] = float(backoff_factor)
            except ValueError:
                logger.warning("Ignoring non-numeric RETRY_BACKOFF_FACTOR=%s", backoff_factor)

        if max_delay := os.getenv('RETRY_MAX_DELAY'):
            try:
                config.setdefault('retry', {})['max_delay'] = int(max_delay)
            except ValueError:
                logger.warning("Ignoring non-integer RETRY_MAX_DELAY=%s", max_delay)

        # OpenSearch HTTP
        if os_timeout := os.getenv('OPENSEARCH_REQUEST_TIMEOUT'):
            try:
                config.setdefault('opensearch', {})['request_timeout'] = float(os_timeout)
            except ValueError:
                logger.warning("Ignoring non-numeric OPENSEARCH_REQUEST_TIMEOUT=%s", os_timeout)

        if os_scheme := os.getenv('OPENSEARCH_SCHEME'):
            config.setdefault('opensearch', {})['scheme'] = os_scheme

        # Health endpoint
        if health_port := os.getenv('HEALTH_PORT'):
            try:
                config['health_port'] = int(health_port)
            except ValueError:
                logger.warning("Ignoring non-integer HEALTH_PORT=%s", health_port)

        # Kubernetes API configuration
        k8s_config = {}
        if in_cluster := os.getenv('KUBERNETES_IN_CLUSTER'):
            k8s_config['in_cluster'] = in_cluster.lower() in ('true', '1', 'yes', 'on')

        if config_file := os.getenv('KUBECONFIG'):
            k8s_config['config_file'] = config_file

        if context := os.getenv('KUBERNETES_CONTEXT'):
            k8s_config['context'] = context

        if k8s_config:
            config['kubernetes'] = k8s_config

        return config

    @property
    def namespace(self) -> str:
        """Namespace the operator runs in."""
        return self._config.get('operator', {}).get('namespace', 'verrazzano-system')

    @property
    def config_map_name(self) -> str:
        """Name of the operator live configuration ConfigMap."""
        return self._config.get('operator', {}).get('config_map', 'vmo-config')

    @property
    def build_version(self) -> str:
        """Build identifier written to status.currentVersion after convergence."""
        return self._config.get('operator', {}).get('build_version', '')

    @property
    def watch_namespace(self) -> str:
        """Namespace to watch, empty for all namespaces."""
        return self._config.get('watch', {}).get('namespace', '')

    @property
    def watch_instance(self) -> str:
        """Only reconcile the instance with this name, empty for all."""
        return self._config.get('watch', {}).get('instance', '')

    @property
    def threadiness(self) -> int:
        """Number of queue workers."""
        return self._config.get('workers', {}).get('threadiness', 5)

    @property
    def drain_timeout(self) -> float:
        """Seconds to wait for in-flight items on shutdown."""
        return self._config.get('workers', {}).get('drain_timeout', 30.0)

    @property
    def cache_sync_timeout(self) -> float:
        """Seconds allowed for the initial cache listing."""
        return self._config.get('workers', {}).get('cache_sync_timeout', 120.0)

    @property
    def max_retry_attempts(self) -> int:
        """Get maximum retry attempts (-1 for infinite)."""
        return self._config.get('retry', {}).get('max_attempts', 3)

    @property
    def retry_backoff_factor(self) -> float:
        """Get retry backoff factor."""
        return self._config.get('retry', {}).get('backoff_factor', 2.0)

    @property
    def retry_max_delay(self) -> int:
        """Get maximum retry delay in seconds."""
        return self._config.get('retry', {}).get('max_delay', 30)

    @property
    def opensearch_request_timeout(self) -> float:
        """Timeout for a single OpenSearch HTTP request."""
        return self._config.get('opensearch', {}).get('request_timeout', 30.0)

    @property
    def opensearch_scheme(self) -> str:
        """Scheme used to reach the OpenSearch service."""
        return self._config.get('opensearch', {}).get('scheme', 'http')

    @property
    def health_port(self) -> int:
        """Port of the liveness endpoint."""
        return self._config.get('health_port', 8080)

    @property
    def kubernetes_config(self) -> Dict[str, Any]:
        """Get Kubernetes API configuration."""
        return self._config.get('kubernetes', {})

    def reload(self) -> None:
        """Reload configuration from files and environment."""
        self._load_config()


# Global config instance
config = Config()
