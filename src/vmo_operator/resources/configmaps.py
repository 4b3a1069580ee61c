"""ConfigMap builders and the default content rendered into them."""

from typing import Any, Dict, List

import yaml

from . import ALERTMANAGER, OPENSEARCH_INGEST, OPENSEARCH_MASTER_HTTP, PROMETHEUS, get_meta_name, new_metadata
from ..constants import DEFAULT_ALERTRULES_KEY


def new_config_map(instance, name: str, data: Dict[str, str]) -> Dict[str, Any]:
    """Build a ConfigMap owned by the instance."""
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": new_metadata(instance, name),
        "data": dict(data),
    }


def _dump(document: Any) -> str:
    return yaml.safe_dump(document, sort_keys=False)


def dashboard_provider() -> str:
    """Grafana dashboard provider file."""
    return _dump({
        "apiVersion": 1,
        "providers": [
            {
                "name": "default",
                "orgId": 1,
                "folder": "",
                "type": "file",
                "disableDeletion": False,
                "editable": True,
                "options": {"path": "/etc/grafana/provisioning/dashboardjson"},
            }
        ],
    })


def datasources(instance) -> str:
    """Grafana datasources pointing at the instance's Prometheus and Alertmanager."""
    prometheus = get_meta_name(instance.name, PROMETHEUS.name)
    alertmanager = get_meta_name(instance.name, ALERTMANAGER.name)
    return _dump({
        "apiVersion": 1,
        "datasources": [
            {
                "name": "Prometheus",
                "type": "prometheus",
                "access": "proxy",
                "orgId": 1,
                "url": f"http://{prometheus}:{PROMETHEUS.port}",
                "isDefault": True,
                "editable": True,
            },
            {
                "name": "Alertmanager",
                "type": "alertmanager",
                "access": "proxy",
                "orgId": 1,
                "url": f"http://{alertmanager}:{ALERTMANAGER.port}",
                "jsonData": {"implementation": "prometheus"},
            },
        ],
    })


def default_alertmanager_config() -> str:
    """Alertmanager configuration with a single no-op receiver."""
    return _dump({
        "route": {
            "receiver": "default",
            "group_by": ["alertname"],
            "group_wait": "30s",
            "group_interval": "5m",
            "repeat_interval": "12h",
        },
        "receivers": [{"name": "default"}],
    })


def default_alert_rules(instance) -> Dict[str, str]:
    """Operator-owned alert rule files."""
    rules: List[Dict[str, Any]] = [
        {
            "alert": "PrometheusTargetDown",
            "expr": "up == 0",
            "for": "5m",
            "labels": {"severity": "warning"},
            "annotations": {"summary": "Target {{ $labels.job }} is down"},
        }
    ]
    if instance.spec.opensearch.enabled:
        rules.append({
            "alert": "OpenSearchClusterNotGreen",
            "expr": 'opensearch_cluster_status{color!="green"} == 1',
            "for": "10m",
            "labels": {"severity": "critical"},
            "annotations": {"summary": "OpenSearch cluster health is not green"},
        })
    return {DEFAULT_ALERTRULES_KEY: _dump({"groups": [{"name": f"{instance.name}-default", "rules": rules}]})}


def _static_job(job_name: str, target: str) -> Dict[str, Any]:
    return {"job_name": job_name, "static_configs": [{"targets": [target]}]}


def default_prometheus_config(instance, cluster_name: str = "local") -> str:
    """prometheus.yml rendered from the instance spec."""
    spec = instance.spec
    jobs = [_static_job("prometheus", f"localhost:{PROMETHEUS.port}")]

    alerting: Dict[str, Any] = {}
    if spec.alertmanager.enabled:
        alertmanager = get_meta_name(instance.name, ALERTMANAGER.name)
        target = f"{alertmanager}:{ALERTMANAGER.port}"
        jobs.append(_static_job("alertmanager", target))
        alerting = {"alertmanagers": [{"static_configs": [{"targets": [target]}]}]}

    if spec.opensearch.enabled:
        component = OPENSEARCH_INGEST if spec.opensearch.ingest_node.replicas > 0 else OPENSEARCH_MASTER_HTTP
        opensearch = get_meta_name(instance.name, component.name)
        job = _static_job("opensearch", f"{opensearch}:{component.port}")
        job["metrics_path"] = "/_prometheus/metrics"
        jobs.append(job)

    jobs.append({
        "job_name": "kubernetes-pods",
        "kubernetes_sd_configs": [{"role": "pod", "namespaces": {"names": [instance.namespace]}}],
        "relabel_configs": [
            {
                "source_labels": ["__meta_kubernetes_pod_annotation_prometheus_io_scrape"],
                "action": "keep",
                "regex": "true",
            }
        ],
    })

    document: Dict[str, Any] = {
        "global": {
            "scrape_interval": "20s",
            "evaluation_interval": "30s",
            "external_labels": {"verrazzano_cluster": cluster_name},
        },
        "rule_files": ["/etc/prometheus/rules/*.yml"],
    }
    if alerting:
        document["alerting"] = alerting
    document["scrape_configs"] = jobs
    return _dump(document)
