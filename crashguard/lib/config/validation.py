"""Configuration validation utilities for YAML config files.

Schema validation through the pydantic models plus safety checks that a
valid-but-unwise crash monitor configuration should surface as warnings
(missing contact, hair-trigger threshold, very short countdown).
"""

import re
from pathlib import Path
from typing import Dict, List, Any, Optional, Union

import yaml
from pydantic import ValidationError

from ...models.monitor_configuration import (
    MonitorConfiguration,
    MessagingProvider,
    SensorSourceKind,
)


E164_PATTERN = re.compile(r"^\+[1-9]\d{6,14}$")

# Linear acceleration of a hard stumble or a dropped phone is well below this.
MIN_RECOMMENDED_THRESHOLD = 15.0
MIN_RECOMMENDED_COUNTDOWN_MS = 10000


class ConfigValidationError(Exception):
    """Custom exception for configuration validation errors."""

    def __init__(self, message: str, path: str = "", details: Optional[Dict] = None):
        self.message = message
        self.path = path
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.path:
            return f"Config validation error at '{self.path}': {self.message}"
        return f"Config validation error: {self.message}"


class ValidationResult:
    """Result of configuration validation."""

    def __init__(self):
        self.is_valid = True
        self.errors: List[ConfigValidationError] = []
        self.warnings: List[str] = []
        self.info: List[str] = []

    def add_error(self, error: ConfigValidationError) -> None:
        self.errors.append(error)
        self.is_valid = False

    def add_warning(self, message: str, path: str = "") -> None:
        warning_msg = f"Warning at '{path}': {message}" if path else f"Warning: {message}"
        self.warnings.append(warning_msg)

    def add_info(self, message: str) -> None:
        self.info.append(message)

    def get_summary(self) -> Dict[str, Any]:
        """Get validation summary."""
        return {
            "valid": self.is_valid,
            "error_count": len(self.errors),
            "warning_count": len(self.warnings),
            "info_count": len(self.info),
            "errors": [str(error) for error in self.errors],
            "warnings": self.warnings,
            "info": self.info
        }

    def print_results(self, verbose: bool = True) -> None:
        """Print validation results to console."""
        if self.is_valid:
            print("✓ Configuration is valid")
        else:
            print("✗ Configuration is invalid")

        if self.errors:
            print(f"\nErrors ({len(self.errors)}):")
            for error in self.errors:
                print(f"  • {error}")

        if self.warnings and verbose:
            print(f"\nWarnings ({len(self.warnings)}):")
            for warning in self.warnings:
                print(f"  • {warning}")

        if self.info and verbose:
            print(f"\nInfo ({len(self.info)}):")
            for info in self.info:
                print(f"  • {info}")


class ConfigValidator:
    """Crash monitor configuration validator."""

    KNOWN_KEYS = {
        "contact", "detection", "countdown", "location", "message",
        "messaging", "sensor", "enable_debug_logging", "api_host", "api_port"
    }

    def __init__(self, strict_mode: bool = False):
        self.strict_mode = strict_mode
        self.result = ValidationResult()

    def validate_config(self, config_data: Dict[str, Any]) -> ValidationResult:
        """Validate complete configuration dictionary."""
        self.result = ValidationResult()

        if not isinstance(config_data, dict):
            self.result.add_error(ConfigValidationError("Configuration must be a mapping"))
            return self.result

        try:
            config_data = self._check_unknown_keys(config_data)

            config_obj = self._validate_pydantic_model(config_data)
            if config_obj:
                self._validate_contact(config_obj)
                self._validate_detection(config_obj)
                self._validate_delivery(config_obj)
                self._validate_system(config_obj)

        except Exception as e:
            self.result.add_error(ConfigValidationError(
                f"Unexpected validation error: {str(e)}"
            ))

        return self.result

    def validate_yaml_file(self, file_path: Union[str, Path]) -> ValidationResult:
        """Validate YAML configuration file."""
        self.result = ValidationResult()
        file_path = Path(file_path)

        if not file_path.is_file():
            self.result.add_error(ConfigValidationError(
                f"Configuration file does not exist: {file_path}"
            ))
            return self.result

        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            self.result.add_error(ConfigValidationError(f"YAML parsing error: {str(e)}"))
            return self.result
        except OSError as e:
            self.result.add_error(ConfigValidationError(f"File validation error: {str(e)}"))
            return self.result

        return self.validate_config(config_data)

    def _check_unknown_keys(self, config: Dict[str, Any]) -> Dict[str, Any]:
        unknown_keys = set(config.keys()) - self.KNOWN_KEYS
        if not unknown_keys:
            return config

        if self.strict_mode:
            for key in sorted(unknown_keys):
                self.result.add_error(ConfigValidationError(
                    f"Unknown configuration key: {key}",
                    path=key
                ))
        else:
            self.result.add_warning(
                f"Unknown configuration keys (will be ignored): {', '.join(sorted(unknown_keys))}"
            )

        return {k: v for k, v in config.items() if k in self.KNOWN_KEYS}

    def _validate_pydantic_model(self, config: Dict[str, Any]) -> Optional[MonitorConfiguration]:
        try:
            config_obj = MonitorConfiguration(**config)
            self.result.add_info("Pydantic model validation passed")
            return config_obj

        except ValidationError as e:
            for error in e.errors():
                field_path = ".".join(str(x) for x in error['loc'])
                self.result.add_error(ConfigValidationError(
                    error['msg'],
                    path=field_path,
                    details={"type": error['type'], "input": error.get('input')}
                ))
            return None

    def _validate_contact(self, config: MonitorConfiguration) -> None:
        if not config.has_contact:
            self.result.add_warning(
                "No emergency contact configured - alerts cannot be sent",
                path="contact"
            )
            return

        digits = config.contact.replace(" ", "").replace("-", "")
        if not E164_PATTERN.match(digits):
            self.result.add_warning(
                f"Contact '{config.contact}' is not in E.164 format (+<country><number>)",
                path="contact"
            )

    def _validate_detection(self, config: MonitorConfiguration) -> None:
        threshold = config.detection.threshold
        if threshold < MIN_RECOMMENDED_THRESHOLD:
            self.result.add_warning(
                f"Low impact threshold ({threshold} m/s^2) may trigger on normal movement",
                path="detection.threshold"
            )

        duration_ms = config.countdown.duration_ms
        if duration_ms < MIN_RECOMMENDED_COUNTDOWN_MS:
            self.result.add_warning(
                f"Short countdown ({duration_ms} ms) leaves little time to cancel a false alarm",
                path="countdown.duration_ms"
            )

        if config.countdown.tick_interval_ms > duration_ms:
            self.result.add_warning(
                "Tick interval is longer than the countdown",
                path="countdown.tick_interval_ms"
            )

        if config.sensor.source == SensorSourceKind.REPLAY and not config.sensor.replay_path:
            self.result.add_error(ConfigValidationError(
                "Replay sensor source requires replay_path",
                path="sensor.replay_path"
            ))
        elif config.sensor.source == SensorSourceKind.NONE:
            self.result.add_warning("No sensor source configured - detection cannot be enabled",
                                    path="sensor.source")

    def _validate_delivery(self, config: MonitorConfiguration) -> None:
        if config.messaging.provider == MessagingProvider.TWILIO and not config.messaging.from_number:
            self.result.add_error(ConfigValidationError(
                "Twilio messaging requires from_number",
                path="messaging.from_number"
            ))

        if config.messaging.provider == MessagingProvider.LOG:
            self.result.add_info("Messages are logged only (messaging.provider: log)")

        if not config.location.geolocation_url and not config.location.static_fix_configured:
            self.result.add_info("No location source configured - messages will say location unavailable")

    def _validate_system(self, config: MonitorConfiguration) -> None:
        if config.api_host not in ("localhost", "127.0.0.1"):
            self.result.add_warning(
                f"API bound to {config.api_host} - the alert endpoints have no authentication",
                path="api_host"
            )


def validate_config_dict(config_data: Dict[str, Any], strict: bool = False) -> ValidationResult:
    """Validate configuration dictionary (convenience function)."""
    validator = ConfigValidator(strict_mode=strict)
    return validator.validate_config(config_data)


def validate_config_file(file_path: Union[str, Path], strict: bool = False) -> ValidationResult:
    """Validate configuration YAML file (convenience function)."""
    validator = ConfigValidator(strict_mode=strict)
    return validator.validate_yaml_file(file_path)


def create_config_schema() -> Dict[str, Any]:
    """JSON schema for the configuration file."""
    return MonitorConfiguration.model_json_schema()


def generate_example_config() -> Dict[str, Any]:
    """Generate example configuration dictionary."""
    return {
        "contact": "",
        "detection": {
            "threshold": 25.0,
            "smoothing_alpha": 0.8
        },
        "countdown": {
            "duration_ms": 30000,
            "tick_interval_ms": 1000
        },
        "location": {
            "priority": "high_accuracy",
            "fresh_fix_timeout_s": 10.0
        },
        "messaging": {
            "provider": "log"
        },
        "sensor": {
            "source": "simulated",
            "sample_rate_hz": 5.0
        },
        "enable_debug_logging": False,
        "api_host": "localhost",
        "api_port": 5002
    }
