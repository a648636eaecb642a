"""Shared test fixtures and utilities for integration tests.

Note: Common fixtures are defined in tests/conftest.py and are
automatically available to all integration tests.
"""

# Integration tests can use fixtures from tests/conftest.py:
# - monitor, realtime, history (services writing into tmp_path)
# - app, client
# - fake_websocket_factory, mock_supabase_client
