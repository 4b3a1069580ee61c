"""
Config map step.

Most config maps are created once and then left to their users. The alert
rules map keeps user-added rule files next to the operator's own, and the
Prometheus map keeps user scrape jobs while default jobs are kept current.
"""

import logging
from typing import Any, Dict, List, Optional

from ..constants import (
    ALERTMANAGER_YAML,
    DASHBOARD_PROVIDER_YAML,
    DATASOURCE_YAML,
    PROMETHEUS_YAML,
    RESERVED_RULES_PREFIX,
)
from ..exceptions import StepError
from ..resources import configmaps
from ..resources.merge import merge_custom_keys, reconcile_scrape_config
from .apply import prune_objects, with_resource_version
from .context import SyncContext

logger = logging.getLogger(__name__)

KIND = "configmaps"


async def create_if_absent(ctx: SyncContext, name: str, data: Dict[str, str]) -> bool:
    """Create a config map unless one with this name exists."""
    if ctx.observed(KIND, name) is not None:
        return False
    await ctx.kube.create(KIND, configmaps.new_config_map(ctx.instance, name, data))
    return True


async def create_alertmanager_config(ctx: SyncContext) -> None:
    """Create the Alertmanager config map, moving inline config out of the spec."""
    spec = ctx.instance.spec.alertmanager
    name = spec.config_map
    if ctx.observed(KIND, name) is not None:
        return
    content = spec.config or configmaps.default_alertmanager_config()
    await ctx.kube.create(
        KIND, configmaps.new_config_map(ctx.instance, name, {ALERTMANAGER_YAML: content})
    )
    if spec.config:
        logger.info("%s: moved inline Alertmanager config into %s", ctx.instance.key, name)
        spec.config = ""


async def reconcile_alert_rules(ctx: SyncContext) -> None:
    """Keep operator rule files current and user rule files untouched."""
    name = ctx.instance.spec.prometheus.rules_config_map
    defaults = configmaps.default_alert_rules(ctx.instance)
    observed = ctx.observed(KIND, name)
    if observed is None:
        await ctx.kube.create(KIND, configmaps.new_config_map(ctx.instance, name, defaults))
        return

    existing = observed.get("data") or {}
    merged = merge_custom_keys(existing, defaults, RESERVED_RULES_PREFIX)
    if merged == existing:
        return
    logger.info("%s: updating alert rules in %s", ctx.instance.key, name)
    desired = configmaps.new_config_map(ctx.instance, name, merged)
    await ctx.kube.update(KIND, with_resource_version(desired, observed))


async def reconcile_prometheus_config(ctx: SyncContext) -> None:
    """Keep default scrape jobs current while preserving user jobs."""
    name = ctx.instance.spec.prometheus.config_map
    default_text = configmaps.default_prometheus_config(ctx.instance, ctx.cfg.cluster_name)
    observed = ctx.observed(KIND, name)
    if observed is None:
        await ctx.kube.create(
            KIND, configmaps.new_config_map(ctx.instance, name, {PROMETHEUS_YAML: default_text})
        )
        return

    existing: Dict[str, str] = observed.get("data") or {}
    text: Optional[str] = reconcile_scrape_config(existing.get(PROMETHEUS_YAML), default_text)
    if text is None:
        return
    logger.info("%s: updating scrape configuration in %s", ctx.instance.key, name)
    desired = configmaps.new_config_map(ctx.instance, name, {**existing, PROMETHEUS_YAML: text})
    await ctx.kube.update(KIND, with_resource_version(desired, observed))


async def reconcile_config_maps(ctx: SyncContext) -> None:
    """
    Converge every config map of the instance and delete owned leftovers.

    Raises:
        StepError: If any config map could not be written or deleted
    """
    instance = ctx.instance
    spec = instance.spec
    failures: Dict[str, Exception] = {}

    actions: List[Any] = [
        (spec.grafana.dashboards_config_map,
         lambda: create_if_absent(ctx, spec.grafana.dashboards_config_map,
                                  {DASHBOARD_PROVIDER_YAML: configmaps.dashboard_provider()})),
        (spec.grafana.datasources_config_map,
         lambda: create_if_absent(ctx, spec.grafana.datasources_config_map,
                                  {DATASOURCE_YAML: configmaps.datasources(instance)})),
        (spec.alertmanager.config_map, lambda: create_alertmanager_config(ctx)),
        (spec.alertmanager.versions_config_map,
         lambda: create_if_absent(ctx, spec.alertmanager.versions_config_map, {})),
        (spec.prometheus.rules_config_map, lambda: reconcile_alert_rules(ctx)),
        (spec.prometheus.rules_versions_config_map,
         lambda: create_if_absent(ctx, spec.prometheus.rules_versions_config_map, {})),
        (spec.prometheus.config_map, lambda: reconcile_prometheus_config(ctx)),
        (spec.prometheus.versions_config_map,
         lambda: create_if_absent(ctx, spec.prometheus.versions_config_map, {})),
    ]

    keep = set()
    for name, action in actions:
        keep.add(name)
        try:
            await action()
        except Exception as e:  # pylint: disable=broad-except
            logger.warning("Failed to reconcile configmap %s/%s: %s", instance.namespace, name, e)
            failures[name] = e

    await prune_objects(ctx, KIND, keep, failures)

    if failures:
        raise StepError("configmaps", failures)
