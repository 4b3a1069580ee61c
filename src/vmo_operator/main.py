"""Main KOPF operator module for MonitoringInstance reconciliation."""

import asyncio
import logging
import sys

import kopf
from kubernetes import config as kube_config
from prometheus_client import start_http_server

from .config import config
from .constants import INSTANCE_KIND
from .controller.engine import Controller
from .exceptions import KubernetesAPIError, LiveConfigError
from .handlers import cache_events, instance, operator_config  # noqa: F401  pylint: disable=unused-import
from .kube.client import KubeClient
from .live_config import operator_config_summary
from .state import get_cache, get_controller, get_live_config, set_controller

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def load_kubernetes_config() -> None:
    """Load Kubernetes configuration (in-cluster or kubeconfig)."""
    k8s = config.kubernetes_config
    if k8s.get('in_cluster', True):
        try:
            kube_config.load_incluster_config()
            logger.info("Loaded in-cluster Kubernetes configuration")
            return
        except kube_config.ConfigException:
            pass

    try:
        kube_config.load_kube_config(
            config_file=k8s.get('config_file'), context=k8s.get('context')
        )
        logger.info("Loaded kubeconfig configuration")
        return
    except kube_config.ConfigException:
        pass

    logger.critical("Could not load Kubernetes configuration")
    sys.exit(1)


async def load_operator_config(kube: KubeClient) -> None:
    """Read the operator ConfigMap; the operator cannot run without it."""
    try:
        config_map = await kube.read_config_map(config.namespace, config.config_map_name)
        get_live_config().apply(config_map.get("data"))
    except (KubernetesAPIError, LiveConfigError) as e:
        logger.critical("Cannot load operator ConfigMap %s/%s: %s",
                        config.namespace, config.config_map_name, e)
        sys.exit(1)


@kopf.on.startup()
async def startup(settings: kopf.OperatorSettings, **_):
    """Handle operator startup."""
    logger.info("vmo operator starting up...")
    load_kubernetes_config()

    settings.peering.standalone = True
    settings.posting.level = logging.WARNING
    settings.watching.server_timeout = 600

    kube = KubeClient()
    await load_operator_config(kube)
    cfg = get_live_config().get()

    logger.info("Configuration loaded:")
    logger.info("  - Operator namespace: %s", config.namespace)
    logger.info("  - Watch namespace: %s", config.watch_namespace or "<all>")
    logger.info("  - Watch instance: %s", config.watch_instance or "<all>")
    logger.info("  - Workers: %s", config.threadiness)
    logger.info("  - Build version: %s", config.build_version or "<unset>")
    logger.info("  - Operator config: %s", operator_config_summary(cfg))

    cache = get_cache()
    try:
        await asyncio.wait_for(
            cache.prime(kube, config.watch_namespace), timeout=config.cache_sync_timeout
        )
    except asyncio.TimeoutError:
        logger.critical("Initial cache sync did not finish within %.0fs", config.cache_sync_timeout)
        sys.exit(1)
    except KubernetesAPIError as e:
        logger.critical("Initial cache sync failed: %s", e)
        sys.exit(1)

    start_http_server(cfg.metrics_port)
    logger.info("Metrics server started on port %s", cfg.metrics_port)

    controller = Controller(
        kube,
        cache,
        get_live_config(),
        build_version=config.build_version,
        watch_namespace=config.watch_namespace,
        watch_instance=config.watch_instance,
    )
    set_controller(controller)
    for body in cache.list(INSTANCE_KIND):
        controller.enqueue(body)
    controller.start_workers(config.threadiness)


@kopf.on.cleanup()
async def cleanup(**_):
    """Handle operator cleanup."""
    logger.info("vmo operator shutting down...")
    controller = get_controller()
    if controller is not None:
        await controller.shutdown(config.drain_timeout)
        set_controller(None)


@kopf.on.probe(id="health")
async def health_check(**_):
    """Health check endpoint; raising marks the operator unhealthy."""
    controller = get_controller()
    if controller is None:
        raise RuntimeError("operator is still starting")
    healthy, reason = await controller.is_healthy()
    if not healthy:
        logger.warning("Health check failed: %s", reason)
        raise RuntimeError(reason)
    return {
        "status": "healthy",
        "queue_depth": len(controller.queue),
    }


def main() -> None:
    """Run the operator until it is signalled to stop."""
    liveness = f"http://0.0.0.0:{config.health_port}/health"
    if config.watch_namespace:
        namespaces = sorted({config.watch_namespace, config.namespace})
        kopf.run(namespaces=namespaces, liveness_endpoint=liveness)
    else:
        kopf.run(clusterwide=True, liveness_endpoint=liveness)


if __name__ == '__main__':
    main()
