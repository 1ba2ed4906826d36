"""
infraplan - Declarative infrastructure engine

Resolves a declared graph of cloud resources, orders it by dependency, and
converges it idempotently against a Provider API.
"""

__version__ = "0.1.0"
__author__ = "infraplan developers"


__all__ = ["Engine", "InfraplanConfig", "load_config", "get_infraplan_home"]

from .config import InfraplanConfig, load_config, get_infraplan_home
from .engine import Engine
