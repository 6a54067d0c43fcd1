"""
Contract tests for the CrashGuard API.

These tests verify the HTTP endpoints and the WebSocket status stream,
covering both success and error responses.

Test Categories:
- Status endpoints: current status, history and health
- Configuration endpoint: retrieval and updates
- Control endpoints: enable/disable, simulate and cancel
- WebSocket: connection, ping and status requests

Usage:
    pytest tests/contract/ -m contract
"""
