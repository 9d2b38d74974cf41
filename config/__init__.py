"""
Orchestrator Configuration Package.

This package contains the centralized settings for the orchestration server.
"""

from config.manager import EnvironmentManager, env_manager
from config.types import ServerSettings

# Re-export the singleton instance for easy access
env = env_manager


def get_server_settings() -> ServerSettings:
    """Return a typed snapshot of the current settings"""
    return ServerSettings.from_settings(env_manager.settings)


__all__ = [
    "EnvironmentManager",
    "env_manager",
    "env",
    "ServerSettings",
    "get_server_settings",
]
