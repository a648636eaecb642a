"""Shared test fixtures and utilities for contract tests.

Note: Common fixtures are defined in tests/conftest.py and are
automatically available to all contract tests.
"""

# Contract tests can use fixtures from tests/conftest.py:
# - app, client (healthy Supabase mock, no background timers)
# - unhealthy_app, unhealthy_client (Supabase unreachable)
# - probes (mutable memory ratio / uptime)
