"""Correlation IDs for request and background-tick tracing.

Every log line written by the structured logger carries the current correlation
ID. HTTP requests take it from the X-Correlation-ID header; background ticks
(health checks, realtime collection) generate their own.
"""

import contextvars
from uuid import uuid4

DEFAULT_CORRELATION_ID = 'no-request-id'

# Async-safe, propagates into tasks created from the current context
correlation_id: contextvars.ContextVar[str] = contextvars.ContextVar(
  'request_id', default=DEFAULT_CORRELATION_ID
)


def get_correlation_id() -> str:
  """Return the correlation ID of the current request or tick."""
  return correlation_id.get()


def set_correlation_id(request_id: str) -> contextvars.Token:
  """Bind a correlation ID to the current context.

  Args:
      request_id: Identifier taken from the X-Correlation-ID header or generated

  Returns:
      Token that can be passed to reset_correlation_id()
  """
  return correlation_id.set(request_id)


def generate_correlation_id(prefix: str | None = None) -> str:
  """Generate a new correlation ID and bind it to the current context.

  Args:
      prefix: Optional label (e.g. 'health-check') prepended to the UUID

  Returns:
      Generated correlation ID
  """
  request_id = f'{prefix}-{uuid4()}' if prefix else str(uuid4())
  set_correlation_id(request_id)
  return request_id


def reset_correlation_id(token: contextvars.Token | None = None) -> None:
  """Restore the previous correlation ID, or the default when no token is given."""
  if token is not None:
    correlation_id.reset(token)
  else:
    correlation_id.set(DEFAULT_CORRELATION_ID)
