"""
stproxy - Path-prefix reverse proxy with SSDP discovery
Routes /<prefix>/<rest> to configured backends and advertises itself on the LAN
"""

__version__ = "1.0.0"

from .config import Configuration, ConfigError, load_config
from .router.cache import ProxyCache
from .router.core import create_app
from .shutdown import ShutdownCoordinator

__all__ = [
    "Configuration",
    "ConfigError",
    "load_config",
    "ProxyCache",
    "create_app",
    "ShutdownCoordinator",
    "__version__",
]
