"""
Host capability interfaces and adapters.

The crash monitor never talks to hardware or networks directly; it calls
these capabilities:

    SensorSource: accelerometer samples (simulated, CSV replay)
    LocationProvider: last known / fresh location (static, HTTP geolocation)
    MessageSender: text message delivery (log, Twilio)
    PermissionGate: granted host permissions

Usage:
    from crashguard.lib.capabilities import create_sensor_source

    source = create_sensor_source(config.sensor)
    source.start(controller.submit_sample)
"""

import logging

from ...models import (
    LocationSettings,
    MessagingProvider,
    MessagingSettings,
    SensorSettings,
    SensorSourceKind,
)
from .interfaces import (
    SampleCallback,
    SensorSource,
    LocationProvider,
    MessageSender,
    Clock,
    Timer,
    TimerHandle,
    PermissionGate,
)
from .sensors import SimulatedSensorSource, ReplaySensorSource, UnavailableSensorSource
from .location import StaticLocationProvider, HttpLocationProvider
from .messaging import LogMessageSender, TwilioMessageSender
from .permissions import StaticPermissionGate

logger = logging.getLogger(__name__)


def create_sensor_source(settings: SensorSettings) -> SensorSource:
    """Build the configured accelerometer source."""
    if settings.source == SensorSourceKind.SIMULATED:
        return SimulatedSensorSource(sample_rate_hz=settings.sample_rate_hz)

    if settings.source == SensorSourceKind.REPLAY:
        if not settings.replay_path:
            logger.error("Replay sensor source selected without replay_path")
            return UnavailableSensorSource()
        try:
            return ReplaySensorSource.from_csv(settings.replay_path, sample_rate_hz=settings.sample_rate_hz)
        except (OSError, ValueError) as e:
            logger.error(f"Cannot load replay recording {settings.replay_path}: {e}")
            return UnavailableSensorSource()

    return UnavailableSensorSource()


def create_location_provider(settings: LocationSettings) -> LocationProvider:
    """Build the configured location provider."""
    if settings.geolocation_url:
        return HttpLocationProvider(settings.geolocation_url, timeout_s=settings.fresh_fix_timeout_s)

    if settings.static_fix_configured:
        return StaticLocationProvider.at(settings.static_latitude, settings.static_longitude)

    return StaticLocationProvider()


def create_message_sender(settings: MessagingSettings) -> MessageSender:
    """Build the configured message sender."""
    if settings.provider == MessagingProvider.TWILIO:
        return TwilioMessageSender(from_number=settings.from_number)
    return LogMessageSender()


__all__ = [
    'SampleCallback',
    'SensorSource',
    'LocationProvider',
    'MessageSender',
    'Clock',
    'Timer',
    'TimerHandle',
    'PermissionGate',
    'SimulatedSensorSource',
    'ReplaySensorSource',
    'UnavailableSensorSource',
    'StaticLocationProvider',
    'HttpLocationProvider',
    'LogMessageSender',
    'TwilioMessageSender',
    'StaticPermissionGate',
    'create_sensor_source',
    'create_location_provider',
    'create_message_sender',
]
