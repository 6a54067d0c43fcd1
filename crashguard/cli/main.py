"""Main CLI application wiring the crash monitor together."""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Optional, Dict, Any

import structlog

from .. import __version__
from ..errors import CrashGuardError
from ..models import Capability, MonitorConfiguration, MonitorStatus
from ..services import MonitoringController
from ..lib.api_server import create_app, run_server, set_controller
from ..lib.capabilities import (
    LogMessageSender,
    SimulatedSensorSource,
    StaticLocationProvider,
    StaticPermissionGate,
    create_location_provider,
    create_message_sender,
    create_sensor_source,
)
from ..lib.config import ConfigManager, ConfigurationError, generate_example_config, save_config_to_file


logger = structlog.get_logger(__name__)

DEMO_CONTACT = "+15550100000"
DEMO_LOCATION = (51.507351, -0.127758)


class CrashGuardApplication:
    """Owns the controller, its capabilities and the optional API server."""

    def __init__(self):
        self.configuration: Optional[MonitorConfiguration] = None
        self.config_manager: Optional[ConfigManager] = None
        self.controller: Optional[MonitoringController] = None
        self.sensor_source = None

        self.is_running = False
        self.demo_mode = False
        self.contact_override: Optional[str] = None
        self.api_server = None
        self.api_server_task: Optional[asyncio.Task] = None
        self.demo_task: Optional[asyncio.Task] = None
        self._shutdown_event: Optional[asyncio.Event] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    async def initialize(self,
                         config_path: Optional[str] = None,
                         contact: Optional[str] = None,
                         demo_mode: bool = False) -> None:
        """Load configuration and build the controller."""
        logger.info("Initializing crash monitor", version=__version__)
        self._loop = asyncio.get_running_loop()
        self._shutdown_event = asyncio.Event()
        self.demo_mode = demo_mode

        if config_path:
            self.config_manager = ConfigManager(config_path, hot_reload=True)
            self.config_manager.on_config_changed = self._on_config_file_changed
            self.config_manager.on_validation_warning = self._on_validation_warning
            self.config_manager.on_config_error = self._on_config_error
            self.configuration = self.config_manager.load_config()
            logger.info("Loaded configuration from file", config_path=config_path)
        else:
            self.configuration = MonitorConfiguration()
            logger.info("Using default configuration")

        if contact:
            self.contact_override = contact
            self.configuration.contact = contact

        if demo_mode:
            logger.info("Running in demo mode - simulated accelerometer, messages are logged only")
            if not self.configuration.has_contact:
                self.configuration.contact = DEMO_CONTACT
            self.sensor_source = SimulatedSensorSource(sample_rate_hz=self.configuration.sensor.sample_rate_hz)
            location_provider = StaticLocationProvider.at(*DEMO_LOCATION)
            message_sender = LogMessageSender()
        else:
            self.sensor_source = create_sensor_source(self.configuration.sensor)
            location_provider = create_location_provider(self.configuration.location)
            message_sender = create_message_sender(self.configuration.messaging)

        self.controller = MonitoringController(
            configuration=self.configuration,
            sensor_source=self.sensor_source,
            location_provider=location_provider,
            message_sender=message_sender,
            permission_gate=StaticPermissionGate(granted=list(Capability))
        )
        self.controller.add_status_callback(self._on_status_change)
        set_controller(self.controller)

    async def start(self,
                    enable_api: bool = True,
                    api_host: Optional[str] = None,
                    api_port: Optional[int] = None,
                    debug: bool = False) -> None:
        """Start the controller, enable detection and start the API server."""
        self.is_running = True
        await self.controller.start()

        if not self.configuration.has_contact:
            logger.warning("No emergency contact configured - alerts cannot be sent until one is set")

        await self.controller.enable()

        if enable_api:
            app = create_app()
            self.api_server = run_server(
                app,
                host=api_host or self.configuration.api_host,
                port=api_port or self.configuration.api_port,
                debug=debug
            )
            self.api_server_task = asyncio.create_task(self._serve_api())

        if self.demo_mode:
            self.demo_task = asyncio.create_task(self._demo_impact_loop())

        self._setup_signal_handlers()
        logger.info("Crash monitor started", api=enable_api)

    async def run_until_stopped(self) -> None:
        await self._shutdown_event.wait()

    async def stop(self) -> None:
        """Stop all components."""
        if not self.is_running:
            if self.config_manager:
                self.config_manager.shutdown()
            return

        logger.info("Stopping crash monitor")
        self.is_running = False

        if self.demo_task:
            self.demo_task.cancel()
            try:
                await self.demo_task
            except asyncio.CancelledError:
                pass

        if self.api_server is not None:
            self.api_server.should_exit = True
        if self.api_server_task:
            try:
                await asyncio.wait_for(self.api_server_task, timeout=5.0)
            except (asyncio.TimeoutError, asyncio.CancelledError):
                self.api_server_task.cancel()

        if self.controller:
            await self.controller.stop()
        set_controller(None)

        if self.config_manager:
            self.config_manager.shutdown()

        logger.info("Crash monitor stopped")

    def request_shutdown(self) -> None:
        if self._shutdown_event is not None:
            self._shutdown_event.set()

    def get_status(self) -> Dict[str, Any]:
        return {
            "application": {
                "is_running": self.is_running,
                "demo_mode": self.demo_mode,
                "api_server": self.api_server_task is not None and not self.api_server_task.done()
            },
            "status": self.controller.status.export_dict() if self.controller else None,
            "monitoring": self.controller.get_monitoring_stats() if self.controller else None
        }

    def _setup_signal_handlers(self) -> None:
        loop = self._loop

        def signal_handler(sig, frame):
            logger.info("Received shutdown signal", signal=sig)
            loop.call_soon_threadsafe(self.request_shutdown)

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    def _on_status_change(self, status: MonitorStatus) -> None:
        if status.is_alerting:
            logger.warning(str(status))
        else:
            logger.info(str(status))

    def _on_config_file_changed(self, configuration: MonitorConfiguration) -> None:
        # Called from the watchdog reload thread
        logger.info("Configuration file changed, applying")
        future = asyncio.run_coroutine_threadsafe(self._apply_reloaded_config(configuration), self._loop)
        future.add_done_callback(self._on_config_applied)
        return future

    async def _apply_reloaded_config(self, configuration: MonitorConfiguration) -> None:
        if self.contact_override:
            configuration.contact = self.contact_override
        elif not configuration.has_contact and self.controller.configuration.has_contact:
            # Keep a contact set at runtime through the API
            configuration.contact = self.controller.configuration.contact

        await self.controller.update_configuration(configuration)
        self.configuration = configuration

    def _on_config_applied(self, future) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error("Failed to apply reloaded configuration", error=str(error))

    def _on_config_error(self, error: Exception) -> None:
        logger.error("Configuration reload failed", error=str(error))

    def _on_validation_warning(self, result) -> None:
        for warning in result.warnings:
            logger.warning("Configuration warning", detail=warning)

    async def _serve_api(self) -> None:
        try:
            await self.api_server.serve()
        except (OSError, SystemExit) as e:
            logger.error("API server error", error=str(e))

    async def _demo_impact_loop(self) -> None:
        """Inject an impact every so often so the full alert cycle can be watched."""
        while self.is_running:
            await asyncio.sleep(self.configuration.countdown.duration_seconds + 15)
            if isinstance(self.sensor_source, SimulatedSensorSource) and self.controller.is_sampling:
                logger.info("Demo: injecting impact")
                self.sensor_source.inject_impact()


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="crashguard",
        description="CrashGuard - crash detection with a cancellable countdown and SMS escalation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  crashguard --config crashguard.yaml        # Start with a configuration file
  crashguard --demo                          # Simulated accelerometer, logged messages
  crashguard --contact +15551234567 --no-api # Override contact, no HTTP API
  crashguard --demo --simulate               # Start an alert countdown right away
  crashguard --export-config crashguard.yaml # Write an example config and exit
        """
    )

    parser.add_argument("--config", type=str, help="Path to YAML configuration file")
    parser.add_argument("--contact", type=str, help="Emergency contact number (overrides config)")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--demo", action="store_true", help="Run with simulated sensor, location and messaging")
    parser.add_argument("--no-api", action="store_true", help="Disable the HTTP API server")
    parser.add_argument("--api-host", type=str, help="Host for HTTP API server (default: from config)")
    parser.add_argument("--api-port", type=int, help="Port for HTTP API server (default: from config)")
    parser.add_argument("--export-config", type=str, help="Write an example configuration to path and exit")
    parser.add_argument("--simulate", action="store_true", help="Start an alert countdown after startup")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    return parser


def configure_logging(debug: bool) -> None:
    log_level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(level=log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="%H:%M:%S"),
            structlog.dev.ConsoleRenderer(colors=True)
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


async def main_async(argv=None) -> int:
    args = create_parser().parse_args(argv)
    configure_logging(args.debug)

    if args.export_config:
        try:
            save_config_to_file(MonitorConfiguration(**generate_example_config()), args.export_config)
            logger.info("Configuration exported successfully", path=args.export_config)
            return 0
        except ConfigurationError as e:
            logger.error("Failed to export configuration", error=str(e))
            return 1

    if args.config and not Path(args.config).exists():
        logger.error("Configuration file not found", path=args.config)
        return 1

    app = CrashGuardApplication()

    try:
        await app.initialize(config_path=args.config, contact=args.contact, demo_mode=args.demo)

        if app.configuration.enable_debug_logging and not args.debug:
            configure_logging(True)

        await app.start(
            enable_api=not args.no_api,
            api_host=args.api_host,
            api_port=args.api_port,
            debug=args.debug
        )

        if args.simulate:
            try:
                await app.controller.simulate()
            except CrashGuardError as e:
                logger.error("Could not start simulated alert", error=str(e))

        await app.run_until_stopped()
        return 0

    except ConfigurationError as e:
        logger.error("Configuration error", error=str(e))
        return 1
    finally:
        await app.stop()


def main():
    """Console script entry point."""
    try:
        return asyncio.run(main_async())
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
