"""
Integration tests for the crash monitor.

These tests drive the monitoring controller end to end: samples go in through
the sensor callback, countdowns are advanced with a fake clock and timer, and
the resulting status stream and sent messages are checked.

Test Categories:
- Detection: sampling, impact detection and suppression
- Cancellation: user cancels during the countdown
- Escalation: location lookup, message dispatch and failure reporting
- Control: manual trigger, contact handling and lifecycle
"""
