"""
Error taxonomy shared by the geo and auth layers.

- MalformedInput: a caller handed us coordinates, precisions or documents
  that do not satisfy the contract. Fail fast.
- Unauthorized: any token or rotation failure. Deliberately carries no
  reason so callers cannot tell an expired token from a forged one.
- UpstreamUnavailable: the identity provider or a store could not be
  reached. Retryable, unlike Unauthorized.
"""

from typing import Optional


class MalformedInput(ValueError):
    """Invalid coordinate, precision or stored document."""


class Unauthorized(Exception):
    """No valid session. The cause is intentionally not exposed."""

    def __init__(self):
        super().__init__("unauthorized")


class UpstreamUnavailable(Exception):
    """An external collaborator failed or timed out."""

    def __init__(self, service: str, retry_after_seconds: Optional[int] = 5):
        super().__init__(f"{service}_unavailable")
        self.service = service
        self.retry_after_seconds = retry_after_seconds
