"""Process-wide operator objects shared by the kopf handlers."""

from typing import Optional

from .controller.engine import Controller
from .kube.cache import ObjectCache
from .live_config import LiveConfig

# Global instances, set up on startup
_cache: Optional[ObjectCache] = None
_live_config: Optional[LiveConfig] = None
_controller: Optional[Controller] = None


def get_cache() -> ObjectCache:
    """Get or create the object cache."""
    global _cache
    if _cache is None:
        _cache = ObjectCache()
    return _cache


def get_live_config() -> LiveConfig:
    """Get or create the live operator configuration."""
    global _live_config
    if _live_config is None:
        _live_config = LiveConfig()
    return _live_config


def get_controller() -> Optional[Controller]:
    """The controller, once startup has created it."""
    return _controller


def set_controller(controller: Optional[Controller]) -> None:
    global _controller
    _controller = controller
