"""Configuration management with YAML files, environment overrides and hot reload.

Usage:
    from crashguard.lib.config import ConfigManager

    config_manager = ConfigManager("crashguard.yaml")
    config = config_manager.load_config()

    # With hot-reload
    config_manager = ConfigManager("crashguard.yaml", hot_reload=True)
    config_manager.on_config_changed = my_callback
"""

import os
import time
from pathlib import Path
from typing import Dict, Any, Optional, Callable, Union
from datetime import datetime
from threading import Thread, Event

import yaml
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from ...models.monitor_configuration import MonitorConfiguration
from .validation import (
    ConfigValidationError,
    ConfigValidator,
    ValidationResult,
    create_config_schema,
    generate_example_config,
    validate_config_file,
)


class ConfigurationError(Exception):
    """Exception raised for configuration-related errors."""
    pass


class ConfigChangeHandler(FileSystemEventHandler):
    """Forwards modifications of the watched file to the manager."""

    def __init__(self, config_manager: 'ConfigManager'):
        super().__init__()
        self.config_manager = config_manager

    def on_modified(self, event):
        if event.is_directory:
            return

        if Path(event.src_path).resolve() == self.config_manager.config_path.resolve():
            self.config_manager._trigger_reload()


class ConfigManager:
    """YAML configuration manager with validation and optional hot reload."""

    # env var suffix -> (config path, converter)
    ENV_OVERRIDES = {
        "CONTACT": (["contact"], str),
        "THRESHOLD": (["detection", "threshold"], float),
        "COUNTDOWN_MS": (["countdown", "duration_ms"], int),
        "API_PORT": (["api_port"], int),
        "DEBUG": (["enable_debug_logging"], "bool"),
        "MESSAGING_PROVIDER": (["messaging", "provider"], str),
    }

    def __init__(
        self,
        config_path: Union[str, Path],
        validate: bool = True,
        strict_validation: bool = False,
        hot_reload: bool = False,
        create_if_missing: bool = False
    ):
        self.config_path = Path(config_path)
        self.validate = validate
        self.strict_validation = strict_validation
        self.hot_reload = hot_reload
        self.create_if_missing = create_if_missing

        self._current_config: Optional[MonitorConfiguration] = None
        self._last_loaded: Optional[datetime] = None
        self._last_validation: Optional[ValidationResult] = None

        # Hot-reload components
        self._observer: Optional[Observer] = None
        self._reload_event = Event()
        self._reload_thread: Optional[Thread] = None
        self._shutdown_event = Event()

        # Callbacks
        self.on_config_changed: Optional[Callable[[MonitorConfiguration], None]] = None
        self.on_config_error: Optional[Callable[[Exception], None]] = None
        self.on_validation_warning: Optional[Callable[[ValidationResult], None]] = None

        self.env_prefix = "CRASHGUARD_"

        if self.create_if_missing and not self.config_path.exists():
            self._save_yaml_file(generate_example_config())

        if self.hot_reload:
            self._start_hot_reload()

    def load_config(self) -> MonitorConfiguration:
        """Load, override, validate and return the configuration."""
        try:
            config_data = self._load_yaml_file()
            config_data = self._apply_env_overrides(config_data)

            if self.validate:
                validation_result = self._validate_config(config_data)
                self._last_validation = validation_result

                if not validation_result.is_valid:
                    raise ConfigurationError(
                        f"Configuration validation failed: {validation_result.errors[0]}"
                    )

                if validation_result.warnings and self.on_validation_warning:
                    self.on_validation_warning(validation_result)

            # Unknown top-level keys are ignored outside strict mode
            config_data = {k: v for k, v in config_data.items() if k in ConfigValidator.KNOWN_KEYS}

            try:
                self._current_config = MonitorConfiguration(**config_data)
            except ValueError as e:
                raise ConfigurationError(f"Invalid configuration: {e}")
            self._last_loaded = datetime.now()

            return self._current_config

        except Exception as e:
            if self.on_config_error:
                self.on_config_error(e)
            raise

    def save_config(self, config: MonitorConfiguration) -> None:
        """Save configuration to the YAML file."""
        try:
            self._save_yaml_file(config.export_dict())
            self._current_config = config
            self._last_loaded = datetime.now()

        except Exception as e:
            if self.on_config_error:
                self.on_config_error(e)
            raise

    def reload_config(self) -> MonitorConfiguration:
        return self.load_config()

    def get_current_config(self) -> Optional[MonitorConfiguration]:
        return self._current_config

    def get_validation_result(self) -> Optional[ValidationResult]:
        return self._last_validation

    def is_config_stale(self) -> bool:
        """True if the file changed since it was last loaded."""
        if not self._last_loaded:
            return True

        try:
            file_mtime = datetime.fromtimestamp(self.config_path.stat().st_mtime)
            return file_mtime > self._last_loaded
        except OSError:
            return True

    def export_config_yaml(self, output_path: Optional[Path] = None) -> str:
        """Export current configuration to a YAML string, optionally writing it."""
        if not self._current_config:
            raise ConfigurationError("No configuration loaded")

        yaml_content = self._dict_to_yaml(self._current_config.export_dict())

        if output_path:
            with open(output_path, 'w', encoding='utf-8') as f:
                f.write(yaml_content)

        return yaml_content

    def merge_config(self, override_data: Dict[str, Any]) -> MonitorConfiguration:
        """Deep-merge override data onto the current (or example) configuration."""
        if not self._current_config:
            base_data = generate_example_config()
        else:
            base_data = self._current_config.export_dict()

        merged_data = self._deep_merge(base_data, override_data)

        if self.validate:
            validation_result = self._validate_config(merged_data)
            if not validation_result.is_valid:
                raise ConfigurationError(
                    f"Merged configuration validation failed: {validation_result.errors[0]}"
                )

        try:
            return MonitorConfiguration(**merged_data)
        except ValueError as e:
            raise ConfigurationError(f"Invalid configuration: {e}")

    def _load_yaml_file(self) -> Dict[str, Any]:
        if not self.config_path.exists():
            raise ConfigurationError(f"Configuration file not found: {self.config_path}")

        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"YAML parsing error: {e}")
        except OSError as e:
            raise ConfigurationError(f"Error reading config file: {e}")

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigurationError("Configuration file must contain a mapping")
        return data

    def _save_yaml_file(self, config_data: Dict[str, Any]) -> None:
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_path, 'w', encoding='utf-8') as f:
                f.write(self._dict_to_yaml(config_data))
        except OSError as e:
            raise ConfigurationError(f"Error writing config file: {e}")

    def _dict_to_yaml(self, data: Dict[str, Any]) -> str:
        header = f"""# CrashGuard Configuration
# Generated: {datetime.now().isoformat()}
#
# contact: emergency contact in E.164 format, e.g. +15551234567
# detection.threshold: linear acceleration (m/s^2) that starts an alert
# countdown.duration_ms: time to cancel before the SMS is sent

"""
        yaml_content = yaml.dump(
            data,
            default_flow_style=False,
            indent=2,
            sort_keys=False,
            allow_unicode=True
        )
        return header + yaml_content

    def _validate_config(self, config_data: Dict[str, Any]) -> ValidationResult:
        validator = ConfigValidator(strict_mode=self.strict_validation)
        return validator.validate_config(config_data)

    def _apply_env_overrides(self, config_data: Dict[str, Any]) -> Dict[str, Any]:
        modified_data = self._deep_merge({}, config_data)

        for suffix, (path, converter) in self.ENV_OVERRIDES.items():
            env_var = f"{self.env_prefix}{suffix}"
            env_value = os.getenv(env_var)
            if env_value is None:
                continue

            try:
                if converter == "bool":
                    value = env_value.lower() in ('true', '1', 'yes', 'on')
                else:
                    value = converter(env_value)
            except ValueError:
                raise ConfigurationError(f"Invalid value for {env_var}: {env_value!r}")

            self._set_nested_value(modified_data, path, value)

        return modified_data

    def _set_nested_value(self, data: Dict[str, Any], path: list, value: Any) -> None:
        current = data
        for key in path[:-1]:
            if not isinstance(current.get(key), dict):
                current[key] = {}
            current = current[key]
        current[path[-1]] = value

    def _deep_merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        result = dict(base)

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            elif isinstance(value, dict):
                result[key] = self._deep_merge({}, value)
            else:
                result[key] = value

        return result

    def _start_hot_reload(self) -> None:
        if not self.config_path.exists():
            return

        try:
            self._observer = Observer()
            self._observer.schedule(ConfigChangeHandler(self), str(self.config_path.parent), recursive=False)
            self._observer.start()

            self._reload_thread = Thread(target=self._reload_worker, daemon=True)
            self._reload_thread.start()

        except Exception as e:
            if self.on_config_error:
                self.on_config_error(e)

    def _reload_worker(self) -> None:
        while not self._shutdown_event.is_set():
            if self._reload_event.wait(timeout=1.0):
                self._reload_event.clear()

                try:
                    # Let the writer finish
                    time.sleep(0.1)
                    new_config = self.load_config()

                    if self.on_config_changed:
                        self.on_config_changed(new_config)

                except Exception as e:
                    if self.on_config_error:
                        self.on_config_error(e)

    def _trigger_reload(self) -> None:
        self._reload_event.set()

    def shutdown(self) -> None:
        """Stop file watching."""
        self._shutdown_event.set()

        if self._observer:
            self._observer.stop()
            self._observer.join()
            self._observer = None

        if self._reload_thread:
            self._reload_thread.join(timeout=5.0)
            self._reload_thread = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()


def load_config_from_file(
    config_path: Union[str, Path],
    validate: bool = True
) -> MonitorConfiguration:
    """Load configuration from YAML file (convenience function)."""
    manager = ConfigManager(config_path, validate=validate)
    return manager.load_config()


def save_config_to_file(
    config: MonitorConfiguration,
    config_path: Union[str, Path]
) -> None:
    """Save configuration to YAML file (convenience function)."""
    manager = ConfigManager(config_path, validate=False)
    manager.save_config(config)


def create_default_config_file(config_path: Union[str, Path]) -> None:
    """Create default configuration file (convenience function)."""
    ConfigManager(config_path, create_if_missing=True, validate=False)


__all__ = [
    "ConfigManager",
    "ConfigurationError",
    "ConfigValidationError",
    "ConfigValidator",
    "ValidationResult",
    "create_config_schema",
    "create_default_config_file",
    "generate_example_config",
    "load_config_from_file",
    "save_config_to_file",
    "validate_config_file",
]
