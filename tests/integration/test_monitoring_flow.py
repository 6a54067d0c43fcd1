"""
Integration tests for the full detection -> countdown -> escalation cycle.

The controller runs on a fake clock and a manually fired timer; sensor
samples are pushed through the same thread-safe entry point a real source
uses.
"""

import asyncio

import pytest
import pytest_asyncio
from unittest.mock import AsyncMock

from crashguard.errors import AlertAlreadyActiveError, InvalidContactError
from crashguard.lib.capabilities import LogMessageSender, StaticLocationProvider, StaticPermissionGate
from crashguard.lib.countdown import AsyncioCountdownTimer, MonotonicClock
from crashguard.models import (
    AlertTrigger,
    Capability,
    DetectorState,
    LocationFix,
    LocationSource,
    MonitorConfiguration,
    Sample,
    SequencerState,
    SessionStatus,
    StatusKind,
)
from crashguard.services import MonitoringController


EXPECTED_BODY = (
    "I may have been in an accident. My last known location: "
    "https://maps.google.com/?q=1.234567,2.345678"
)


async def warm_up(sensor, controller, count=50):
    """Feed a device lying still until the gravity estimate settles."""
    for _ in range(count):
        sensor.emit(0.0, 0.0, 9.81)
    await controller.wait_until_idle()


async def crash(sensor, controller):
    """Lateral jolt of ~30 m/s^2 linear acceleration on a warmed-up filter."""
    sensor.emit(37.5, 0.0, 9.81)
    await controller.wait_until_idle()


def kinds(controller):
    return [status.kind for status in controller.status_history]


@pytest_asyncio.fixture
async def build_controller(configuration, sensor, location, sender, gate, clock, timer):
    """Factory for controllers with some capabilities swapped out."""
    built = []

    async def build(**overrides):
        params = dict(
            configuration=configuration,
            sensor_source=sensor,
            location_provider=location,
            message_sender=sender,
            permission_gate=gate,
            clock=clock,
            timer=timer
        )
        params.update(overrides)
        controller = MonitoringController(**params)
        await controller.start()
        built.append(controller)
        return controller

    yield build

    for controller in built:
        await controller.stop()


@pytest.mark.integration
class TestDetection:
    """Sampling and impact detection through the controller."""

    @pytest.mark.asyncio
    async def test_enable_arms_and_starts_sensor(self, controller, sensor):
        assert await controller.enable() is True

        assert controller.status.kind == StatusKind.ARMED
        assert controller.detector.state == DetectorState.ARMED
        assert sensor.running
        assert controller.is_sampling

    @pytest.mark.asyncio
    async def test_resting_device_never_alerts(self, controller, sensor):
        await controller.enable()

        await warm_up(sensor, controller, count=50)

        assert controller.sequencer.state == SequencerState.NO_SESSION
        assert controller.samples_processed == 50
        assert controller.impacts_detected == 0
        assert controller.status.kind == StatusKind.ARMED

    @pytest.mark.asyncio
    async def test_impact_suppresses_and_starts_countdown(self, controller, sensor):
        await controller.enable()
        await warm_up(sensor, controller)

        await crash(sensor, controller)

        assert controller.impacts_detected == 1
        assert controller.last_impact.magnitude == pytest.approx(30.0, abs=0.01)
        assert controller.detector.state == DetectorState.SUPPRESSED
        assert not sensor.running
        assert controller.sequencer.state == SequencerState.PENDING
        assert controller.active_session.trigger == AlertTrigger.IMPACT
        assert controller.status.kind == StatusKind.PENDING
        assert controller.status.seconds_remaining == 30

    @pytest.mark.asyncio
    async def test_samples_dropped_while_not_sampling(self, controller):
        controller.submit_sample(Sample(x=0.0, y=0.0, z=9.81))
        await controller.wait_until_idle()

        assert controller.samples_processed == 0
        assert controller.samples_dropped == 1

    @pytest.mark.asyncio
    async def test_enable_without_sensor(self, controller, sensor):
        sensor.available = False

        assert await controller.enable() is False
        assert controller.status.kind == StatusKind.SENSOR_UNAVAILABLE
        assert not controller.enabled

    @pytest.mark.asyncio
    async def test_enable_without_accelerometer_permission(self, build_controller, sensor):
        gate = StaticPermissionGate(granted=[Capability.LOCATION, Capability.SMS])
        controller = await build_controller(permission_gate=gate)

        assert await controller.enable() is False
        assert controller.status.kind == StatusKind.MISSING_PERMISSION
        assert controller.status.capability == Capability.ACCELEROMETER
        assert [Capability.ACCELEROMETER] in gate.requests
        assert not sensor.running

    @pytest.mark.asyncio
    async def test_disable_stops_sampling(self, controller, sensor):
        await controller.enable()

        await controller.disable()

        assert controller.status.kind == StatusKind.DISABLED
        assert controller.detector.state == DetectorState.IDLE
        assert not sensor.running


@pytest.mark.integration
class TestCancellation:
    """User cancels during the countdown."""

    @pytest.mark.asyncio
    async def test_cancel_at_five_seconds_rearms_with_same_gravity(self, controller, sensor, clock, timer, sender):
        await controller.enable()
        await warm_up(sensor, controller)
        await crash(sensor, controller)
        gravity = controller.detector.gravity

        clock.advance(5000)
        timer.last.tick()
        await controller.wait_until_idle()
        assert controller.status.seconds_remaining == 25

        # Sensor is stopped during the countdown
        assert sensor.emit(0.0, 0.0, 9.81) is False

        assert await controller.cancel() is True

        assert timer.last.cancelled
        assert controller.sequencer.state == SequencerState.NO_SESSION
        assert controller.recent_sessions[-1].status == SessionStatus.CANCELED
        assert controller.status.kind == StatusKind.CANCELED
        assert controller.detector.state == DetectorState.ARMED
        assert controller.detector.gravity == gravity
        assert sensor.running
        assert sender.attempts == 0

    @pytest.mark.asyncio
    async def test_cancel_without_alert(self, controller):
        assert await controller.cancel() is False

    @pytest.mark.asyncio
    async def test_new_impact_after_cancel(self, controller, sensor):
        await controller.enable()
        await warm_up(sensor, controller)
        await crash(sensor, controller)
        await controller.cancel()

        await warm_up(sensor, controller, count=20)
        await crash(sensor, controller)

        assert controller.impacts_detected == 2
        assert controller.sequencer.state == SequencerState.PENDING


@pytest.mark.integration
class TestEscalation:
    """Countdown runs out and the message goes out."""

    @pytest.mark.asyncio
    async def test_deadline_uses_fresh_fix_fallback(self, build_controller, sensor, clock, timer, sender):
        location = StaticLocationProvider(
            last_known=None,
            fresh=LocationFix(latitude=1.234567, longitude=2.345678, source=LocationSource.FRESH)
        )
        controller = await build_controller(location_provider=location)
        await controller.enable()
        await warm_up(sensor, controller)
        await crash(sensor, controller)

        clock.advance(30000)
        timer.last.expire()
        await controller.wait_until_idle()

        assert [(m.recipient, m.body) for m in sender.sent] == [("+15551234567", EXPECTED_BODY)]
        assert location.fresh_requests == 1
        session = controller.recent_sessions[-1]
        assert session.status == SessionStatus.COMPLETED
        assert session.outcome.location.source == LocationSource.FRESH
        assert controller.status.kind == StatusKind.SENT
        assert controller.sequencer.state == SequencerState.NO_SESSION
        assert controller.detector.state == DetectorState.ARMED
        assert sensor.running

    @pytest.mark.asyncio
    async def test_status_sequence(self, controller, sensor, clock, timer):
        await controller.enable()
        await warm_up(sensor, controller)
        await crash(sensor, controller)

        clock.advance(1000)
        timer.last.tick()
        await controller.wait_until_idle()
        clock.advance(29000)
        timer.last.expire()
        await controller.wait_until_idle()

        assert kinds(controller)[-5:] == [
            StatusKind.ARMED,
            StatusKind.PENDING,
            StatusKind.PENDING,
            StatusKind.SENDING,
            StatusKind.SENT,
        ]

    @pytest.mark.asyncio
    async def test_late_cancel_rejected_and_message_sent_once(self, build_controller, sensor, clock, timer):
        release = asyncio.Event()
        sender = LogMessageSender()
        original_send = sender.send

        async def slow_send(recipient, body):
            await release.wait()
            await original_send(recipient, body)

        sender.send = slow_send
        controller = await build_controller(message_sender=sender)
        await controller.enable()
        await warm_up(sensor, controller)
        await crash(sensor, controller)

        clock.advance(30000)
        timer.last.expire()

        assert await controller.cancel() is False
        assert controller.sequencer.state == SequencerState.RESOLVING
        assert controller.status.kind == StatusKind.SENDING

        release.set()
        await controller.wait_until_idle()

        assert len(sender.sent) == 1
        assert controller.recent_sessions[-1].status == SessionStatus.COMPLETED
        assert controller.sequencer.cancellations_rejected == 1

    @pytest.mark.asyncio
    async def test_cancel_after_deadline_before_expiry_escalates(self, controller, sensor, clock, timer, sender):
        await controller.enable()
        await warm_up(sensor, controller)
        await crash(sensor, controller)

        clock.advance(30000)

        assert await controller.cancel() is False
        await controller.wait_until_idle()

        assert timer.last.cancelled
        assert len(sender.sent) == 1
        assert controller.recent_sessions[-1].status == SessionStatus.COMPLETED
        assert controller.status.kind == StatusKind.SENT

    @pytest.mark.asyncio
    async def test_tick_past_deadline_and_expiry_escalate_once(self, controller, sensor, clock, timer, sender):
        await controller.enable()
        await warm_up(sensor, controller)
        await crash(sensor, controller)

        clock.advance(30000)
        timer.last.tick()
        timer.last.on_expiry()
        await controller.wait_until_idle()

        assert len(sender.sent) == 1
        assert controller.escalation.escalation_count == 1

    @pytest.mark.asyncio
    async def test_send_failure_reported_then_rearmed(self, build_controller, sensor, clock, timer):
        sender = LogMessageSender(fail_with="generic failure")
        controller = await build_controller(message_sender=sender)
        await controller.enable()
        await warm_up(sensor, controller)
        await crash(sensor, controller)

        clock.advance(30000)
        timer.last.expire()
        await controller.wait_until_idle()

        assert controller.status.kind == StatusKind.FAILED
        assert str(controller.status) == "Status: SMS failed: generic failure"
        assert controller.recent_sessions[-1].status == SessionStatus.FAILED
        assert sender.attempts == 1
        assert controller.detector.state == DetectorState.ARMED
        assert sensor.running

    @pytest.mark.asyncio
    async def test_missing_location_permission_fails_cycle(self, build_controller, sensor, clock, timer, sender):
        gate = StaticPermissionGate(granted=[Capability.ACCELEROMETER, Capability.SMS])
        controller = await build_controller(permission_gate=gate)
        await controller.enable()
        await warm_up(sensor, controller)
        await crash(sensor, controller)

        clock.advance(30000)
        timer.last.expire()
        await controller.wait_until_idle()

        assert controller.status.kind == StatusKind.MISSING_PERMISSION
        assert controller.status.capability == Capability.LOCATION
        assert controller.recent_sessions[-1].status == SessionStatus.FAILED
        assert sender.attempts == 0
        assert sensor.running

    @pytest.mark.asyncio
    async def test_unexpected_escalation_error_is_contained(self, controller, sensor, clock, timer):
        controller.escalation.escalate = AsyncMock(side_effect=RuntimeError("boom"))
        await controller.enable()
        await warm_up(sensor, controller)
        await crash(sensor, controller)

        clock.advance(30000)
        timer.last.expire()
        await controller.wait_until_idle()

        assert controller.status.kind == StatusKind.FAILED
        assert controller.status.reason == "boom"
        assert controller.sequencer.state == SequencerState.NO_SESSION
        assert sensor.running


@pytest.mark.integration
class TestSimulateAndControl:
    """Manual trigger, contact handling and lifecycle."""

    @pytest.mark.asyncio
    async def test_simulate_pauses_detection(self, controller, sensor):
        await controller.enable()

        session = await controller.simulate()

        assert session.trigger == AlertTrigger.SIMULATED
        assert controller.detector.state == DetectorState.SUPPRESSED
        assert not sensor.running
        assert controller.status.kind == StatusKind.PENDING

    @pytest.mark.asyncio
    async def test_simulate_while_active(self, controller):
        await controller.simulate()

        with pytest.raises(AlertAlreadyActiveError):
            await controller.simulate()

        assert controller.sequencer.sessions_started == 1

    @pytest.mark.asyncio
    async def test_simulate_without_contact(self, controller, sensor, timer):
        await controller.set_contact("")
        await controller.enable()

        with pytest.raises(InvalidContactError):
            await controller.simulate()

        assert controller.status.kind == StatusKind.INVALID_CONTACT
        assert timer.handles == []
        assert controller.detector.state == DetectorState.ARMED
        assert sensor.running

    @pytest.mark.asyncio
    async def test_impact_without_contact_resumes_monitoring(self, build_controller, sensor, timer):
        controller = await build_controller(configuration=MonitorConfiguration())
        await controller.enable()
        await warm_up(sensor, controller)

        await crash(sensor, controller)

        assert controller.status.kind == StatusKind.INVALID_CONTACT
        assert controller.sequencer.state == SequencerState.NO_SESSION
        assert timer.handles == []
        assert controller.detector.state == DetectorState.ARMED
        assert sensor.running

    @pytest.mark.asyncio
    async def test_disable_during_countdown_lets_alert_finish(self, controller, sensor, clock, timer, sender):
        await controller.enable()
        await warm_up(sensor, controller)
        await crash(sensor, controller)

        await controller.disable()
        assert controller.status.kind == StatusKind.PENDING

        clock.advance(30000)
        timer.last.expire()
        await controller.wait_until_idle()

        assert len(sender.sent) == 1
        assert controller.status.kind == StatusKind.SENT
        assert controller.detector.state == DetectorState.IDLE
        assert not sensor.running

    @pytest.mark.asyncio
    async def test_update_configuration(self, controller, configuration):
        updated = configuration.model_copy(deep=True)
        updated.detection.threshold = 40.0
        updated.countdown.duration_ms = 10000

        await controller.update_configuration(updated)
        session = await controller.simulate()

        assert controller.detector.threshold == 40.0
        assert session.deadline_ms - session.start_ms == 10000

    @pytest.mark.asyncio
    async def test_status_callbacks(self, controller):
        seen = []

        async def async_observer(status):
            seen.append(("async", status.kind))

        def broken_observer(status):
            raise RuntimeError("observer bug")

        controller.add_status_callback(broken_observer)
        controller.add_status_callback(async_observer)
        controller.add_status_callback(lambda status: seen.append(("sync", status.kind)))

        await controller.simulate()
        await asyncio.sleep(0)

        assert ("sync", StatusKind.PENDING) in seen
        assert ("async", StatusKind.PENDING) in seen

    @pytest.mark.asyncio
    async def test_stop_cancels_countdown(self, controller, timer):
        await controller.simulate()

        await controller.stop()

        assert timer.last.cancelled
        assert controller.status.kind == StatusKind.DISABLED
        assert not controller.is_running

    @pytest.mark.asyncio
    async def test_operations_require_start(self, configuration, sensor, location, sender, gate):
        controller = MonitoringController(configuration, sensor, location, sender, gate)

        with pytest.raises(RuntimeError):
            await controller.enable()

    @pytest.mark.asyncio
    async def test_monitoring_stats(self, controller, sensor):
        await controller.enable()
        await warm_up(sensor, controller, count=10)

        stats = controller.get_monitoring_stats()

        assert stats["enabled"] is True
        assert stats["samples_processed"] == 10
        assert stats["detector_state"] == "armed"
        assert stats["sequencer_state"] == "no_session"


@pytest.mark.integration
class TestRealTimer:
    """One full cycle on the asyncio countdown and monotonic clock."""

    @pytest.mark.asyncio
    async def test_simulated_alert_sends_after_countdown(self, sensor, location, sender, gate):
        configuration = MonitorConfiguration(
            contact="+15551234567",
            countdown={"duration_ms": 1000, "tick_interval_ms": 100}
        )
        controller = MonitoringController(
            configuration, sensor, location, sender, gate,
            clock=MonotonicClock(), timer=AsyncioCountdownTimer()
        )
        seconds = []
        controller.add_status_callback(
            lambda status: seconds.append(status.seconds_remaining) if status.kind == StatusKind.PENDING else None
        )

        async with controller:
            await controller.simulate()
            await asyncio.sleep(1.3)
            await controller.wait_until_idle()

            assert [m.body for m in sender.sent] == [EXPECTED_BODY]
            assert controller.status.kind == StatusKind.SENT
            assert seconds[0] == 1
            assert seconds == sorted(seconds, reverse=True)
