import os
import shutil
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from config.manager import EnvironmentManager


class TestEnvironmentManager(unittest.TestCase):
    """Test cases for the EnvironmentManager class."""

    def setUp(self):
        """Set up test fixtures."""
        # Create a new instance for each test to avoid singleton issues
        EnvironmentManager._instance = None
        self.env_manager = EnvironmentManager()

        self.temp_dir = tempfile.mkdtemp()
        self.original_cwd = os.getcwd()

    def tearDown(self):
        """Clean up after tests."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)
        os.chdir(self.original_cwd)
        EnvironmentManager._instance = None

    def create_env_file(self, content):
        """Create a temporary .env file with the given content."""
        env_file = Path(self.temp_dir) / ".env"
        env_file.write_text(content)
        return env_file

    def test_initialization(self):
        """Test that EnvironmentManager initializes with defaults."""
        self.assertIsInstance(self.env_manager.env_variables, dict)
        self.assertIsInstance(self.env_manager._providers, list)
        for name, (default_value, _) in EnvironmentManager.DEFAULT_SETTINGS.items():
            self.assertIn(name, self.env_manager.settings)

        self.assertEqual(EnvironmentManager.DEFAULT_SETTINGS["port"][0], 5555)
        self.assertEqual(
            EnvironmentManager.DEFAULT_SETTINGS["default_execution_mode"][0], "container"
        )

    def test_singleton_pattern(self):
        """Test that EnvironmentManager follows singleton pattern."""
        EnvironmentManager._instance = None

        manager1 = EnvironmentManager()
        manager2 = EnvironmentManager()

        self.assertIs(manager1, manager2)

    def test_parse_env_file(self):
        """Test parsing an environment file."""
        env_content = """
        # Test environment file
        PORT=6000
        WORKER_BINARY=/opt/worker/bin/ansible-rulebook
        STOP_GRACE_SECONDS=1.5
        EDA_UNRELATED=kept
        """
        env_file = self.create_env_file(env_content)

        self.env_manager._parse_env_file(env_file)

        self.assertEqual(self.env_manager.settings["port"], 6000)
        self.assertEqual(
            self.env_manager.settings["worker_binary"], "/opt/worker/bin/ansible-rulebook"
        )
        self.assertEqual(self.env_manager.settings["stop_grace_seconds"], 1.5)
        self.assertEqual(self.env_manager.env_variables["EDA_UNRELATED"], "kept")

    def test_parse_env_file_with_quotes(self):
        """Test parsing an environment file with quoted values."""
        env_content = """
        CONTAINER_IMAGE="registry.example.com/rulebook:latest"
        LOG_LEVEL='DEBUG'
        """
        env_file = self.create_env_file(env_content)

        self.env_manager._parse_env_file(env_file)

        self.assertEqual(
            self.env_manager.settings["container_image"], "registry.example.com/rulebook:latest"
        )
        self.assertEqual(self.env_manager.settings["log_level"], "DEBUG")

    def test_invalid_value_keeps_previous_setting(self):
        """Test that a malformed numeric value is ignored."""
        env_file = self.create_env_file("PORT=not-a-number\n")

        with self.assertLogs("config.manager", level="WARNING"):
            self.env_manager._parse_env_file(env_file)

        self.assertEqual(self.env_manager.settings["port"], 5555)

    def test_load_from_cwd_env_file(self):
        """Test that load() picks up a .env file in the working directory."""
        self.create_env_file("EXECUTION_RETENTION_MINUTES=5\n")
        os.chdir(self.temp_dir)

        with mock.patch.dict(os.environ, {}, clear=True):
            self.env_manager.load()

        self.assertEqual(self.env_manager.settings["execution_retention_minutes"], 5)

    def test_os_environment_overrides_env_file(self):
        """Test that OS environment variables win over the .env file."""
        self.create_env_file("PORT=6000\n")
        os.chdir(self.temp_dir)

        with mock.patch.dict(os.environ, {"PORT": "7000"}, clear=True):
            self.env_manager.load()

        self.assertEqual(self.env_manager.settings["port"], 7000)

    def test_register_provider(self):
        """Test registering a provider function."""
        provider = mock.Mock(return_value={"settings": {"cleanup_interval_seconds": 30}})

        self.env_manager.register_provider(provider)
        self.assertIn(provider, self.env_manager._providers)

        with mock.patch.dict(os.environ, {}, clear=True):
            self.env_manager.load()

        provider.assert_called_once()
        self.assertEqual(self.env_manager.settings["cleanup_interval_seconds"], 30)

    def test_provider_exception_handling(self):
        """Test that exceptions from providers are handled gracefully."""

        def failing_provider():
            raise Exception("Provider failure test")

        self.env_manager.register_provider(failing_provider)

        try:
            with mock.patch.dict(os.environ, {}, clear=True):
                self.env_manager.load()
        except Exception:
            self.fail("load() raised an exception from a failing provider")

    def test_update_configuration(self):
        """Test updating settings with type conversion."""
        result = self.env_manager.update_configuration(
            {"settings": {"port": "8080", "forward_timeout_seconds": 10}}
        )

        self.assertTrue(result["success"])
        self.assertEqual(sorted(result["updated_settings"]), ["forward_timeout_seconds", "port"])
        self.assertEqual(self.env_manager.get_setting("port"), 8080)
        self.assertEqual(self.env_manager.get_setting("forward_timeout_seconds"), 10.0)

    def test_update_configuration_rejects_unknown_and_invalid(self):
        """Test that bad updates are reported and do not apply."""
        result = self.env_manager.update_configuration(
            {"settings": {"nonexistent": 1, "port": "abc", "host": "127.0.0.1"}}
        )

        self.assertFalse(result["success"])
        self.assertIn("nonexistent", result["errors"])
        self.assertIn("port", result["errors"])
        self.assertEqual(result["updated_settings"], ["host"])
        self.assertEqual(self.env_manager.get_setting("port"), 5555)

    def test_reset_setting(self):
        """Test resetting a setting to its default value."""
        self.env_manager.update_configuration({"settings": {"log_level": "DEBUG"}})

        result = self.env_manager.reset_setting("log_level")

        self.assertTrue(result["success"])
        self.assertEqual(self.env_manager.get_setting("log_level"), "INFO")
        self.assertFalse(self.env_manager.reset_setting("nonexistent")["success"])

    def test_get_all_configuration(self):
        """Test the serializable configuration snapshot."""
        config = self.env_manager.get_all_configuration()

        self.assertEqual(config["settings"]["worker_binary"], "ansible-rulebook")
        self.assertEqual(
            config["default_settings"]["stop_grace_seconds"],
            {"default_value": 3.0, "type": "float"},
        )
        self.assertEqual(config["env_mapping"]["WORKER_BINARY"], "worker_binary")


if __name__ == "__main__":
    unittest.main()
