"""Supabase client factory.

Uses the service-role key so monitoring probes bypass row-level security. The
client is created lazily on first use; creating it performs no network I/O.
"""

import os

from supabase import Client, create_client

# Global client instance (lazy-initialized)
_client: Client | None = None


def create_supabase_client() -> Client:
    """Create a new service-role client from the environment.

    Raises:
        ValueError: If the Supabase environment variables are missing
    """
    url = os.getenv('SUPABASE_URL')
    key = os.getenv('SUPABASE_SERVICE_ROLE_KEY')
    if not url or not key:
        missing = [name for name, value in (('SUPABASE_URL', url), ('SUPABASE_SERVICE_ROLE_KEY', key)) if not value]
        raise ValueError(f"Missing required configuration: {', '.join(missing)}")
    return create_client(url, key)


def get_supabase_client() -> Client:
    """Get or create the process-wide client."""
    global _client
    if _client is None:
        _client = create_supabase_client()
    return _client
