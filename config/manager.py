from pathlib import Path
from typing import Dict, Any, List, Callable
import logging
import os


class EnvironmentManager:
    """
    Environment manager that holds the orchestration server settings.

    Settings come from their declared defaults, the first .env file found,
    the OS environment and finally explicit updates (CLI options).
    """

    _instance = None

    # Default settings with their types
    DEFAULT_SETTINGS = {
        # Session server
        "host": ("0.0.0.0", str),
        "port": (5555, int),
        "log_level": ("INFO", str),
        "browser_log_level": ("INFO", str),
        # Worker defaults
        "worker_binary": ("ansible-rulebook", str),
        "container_image": ("quay.io/ansible/ansible-rulebook:main", str),
        "default_execution_mode": ("container", str),
        # Execution lifecycle
        "stop_grace_seconds": (3.0, float),
        "port_release_delay_seconds": (0.5, float),
        "kill_wait_timeout_seconds": (5.0, float),
        "execution_retention_minutes": (60, int),
        "cleanup_interval_seconds": (300, int),
        # Webhook listeners and forwarding
        "webhook_request_timeout_seconds": (300.0, float),
        "webhook_keepalive_timeout_seconds": (65.0, float),
        "forward_timeout_seconds": (60.0, float),
        "proxy_timeout_seconds": (30.0, float),
        # Shutdown
        "shutdown_timeout_seconds": (5.0, float),
    }

    # Each setting can be set via its uppercase env var
    ENV_MAPPING = {setting.upper(): setting for setting in DEFAULT_SETTINGS.keys()}

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialize()
        return cls._instance

    def _initialize(self):
        """Initialize environment with default values"""
        self.env_variables: Dict[str, str] = {}
        self._providers: List[Callable[[], Dict[str, Any]]] = []
        self.settings: Dict[str, Any] = {}
        self.logger = logging.getLogger(__name__)

        for key, (default_value, _) in self.DEFAULT_SETTINGS.items():
            self.settings[key] = default_value

        self._load_from_env_file()

    def _convert_value(self, value: Any, target_type: type) -> Any:
        """Convert a raw value to the target type"""
        if target_type == bool:
            if isinstance(value, bool):
                return value
            return str(value).lower() in ("true", "1", "yes", "on")
        return target_type(value)

    def _apply_variable(self, key: str, value: str) -> None:
        """Record a raw variable and update the mapped setting if there is one"""
        self.env_variables[key] = value

        setting_name = self.ENV_MAPPING.get(key)
        if setting_name is None:
            return

        _, target_type = self.DEFAULT_SETTINGS[setting_name]
        try:
            self.settings[setting_name] = self._convert_value(value, target_type)
        except (TypeError, ValueError):
            self.logger.warning(
                f"Ignoring invalid value for {key}: {value!r} (expected {target_type.__name__})"
            )

    def _env_file_candidates(self) -> List[Path]:
        candidates = [Path.cwd() / ".env"]
        try:
            candidates.append(Path.home() / ".env")
        except (RuntimeError, OSError):
            # Skip home directory if it can't be determined
            pass
        return candidates

    def _load_from_env_file(self):
        """Find and load variables from a .env file"""
        for env_path in self._env_file_candidates():
            if env_path.exists() and env_path.is_file():
                self.logger.debug(f"Loading environment from: {env_path}")
                self._parse_env_file(env_path)
                return

    def _parse_env_file(self, env_file_path: Path):
        """Parse a .env file and load its variables"""
        try:
            with open(env_file_path, "r") as f:
                for line in f:
                    line = line.strip()
                    if not line or line.startswith("#") or "=" not in line:
                        continue

                    key, value = line.split("=", 1)
                    key = key.strip()
                    value = value.strip()

                    # Remove quotes if present
                    if (value.startswith('"') and value.endswith('"')) or (
                        value.startswith("'") and value.endswith("'")
                    ):
                        value = value[1:-1]

                    self._apply_variable(key, value)

        except OSError as e:
            self.logger.error(f"Error parsing .env file {env_file_path}: {e}")

    def register_provider(self, provider: Callable[[], Dict[str, Any]]):
        """Register a provider function that returns additional settings"""
        self._providers.append(provider)
        return self

    def load(self):
        """Load all environment information"""
        self._load_from_env_file()

        for key, value in os.environ.items():
            self._apply_variable(key, value)

        for provider in self._providers:
            try:
                additional = provider()
            except Exception as e:
                self.logger.error(f"Error from settings provider: {e}")
                continue
            self.update_configuration({"settings": additional.get("settings", {})})

        return self

    def get_setting(self, name: str, default: Any = None) -> Any:
        """Get a setting value by name"""
        return self.settings.get(name, default)

    def get_all_configuration(self) -> Dict[str, Any]:
        """Get all configuration settings in a JSON-serializable form"""
        default_settings_serializable = {}
        for key, (default_value, type_class) in self.DEFAULT_SETTINGS.items():
            default_settings_serializable[key] = {
                "default_value": default_value,
                "type": type_class.__name__,
            }

        return {
            "settings": dict(self.settings),
            "default_settings": default_settings_serializable,
            "env_mapping": dict(self.ENV_MAPPING),
        }

    def update_configuration(self, updates: Dict[str, Any]) -> Dict[str, Any]:
        """Update configuration settings and return result"""
        updated_settings = []
        errors = {}

        for key, value in updates.get("settings", {}).items():
            if key not in self.DEFAULT_SETTINGS:
                errors[key] = f"Unknown setting: {key}"
                continue

            _, target_type = self.DEFAULT_SETTINGS[key]
            try:
                self.settings[key] = self._convert_value(value, target_type)
            except (TypeError, ValueError) as e:
                errors[key] = f"Invalid value for {key}: {e}"
                continue
            updated_settings.append(key)

        result = {
            "success": not errors,
            "updated_settings": updated_settings,
            "message": f"Updated {len(updated_settings)} settings",
        }
        if errors:
            result["errors"] = errors
        return result

    def reset_setting(self, setting_name: str) -> Dict[str, Any]:
        """Reset a specific setting to its default value"""
        if setting_name not in self.DEFAULT_SETTINGS:
            return {"success": False, "error": f"Unknown setting: {setting_name}"}

        default_value, _ = self.DEFAULT_SETTINGS[setting_name]
        self.settings[setting_name] = default_value
        return {
            "success": True,
            "message": f"Reset {setting_name} to default value: {default_value}",
        }


# Create a global instance
env_manager = EnvironmentManager()
