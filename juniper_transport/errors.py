"""Exception hierarchy for the transport.

Every error carries the ``hop`` it happened on (``direct``, ``bastion-N``,
``target`` or ``proxy``) so callers can tell where a multi-hop connection
broke.  Messages never include credential values.
"""

from __future__ import annotations

from typing import Optional


class JuniperTransportError(Exception):
    """Base class for all transport failures."""

    retryable = False

    def __init__(self, message: str, *, hop: Optional[str] = None) -> None:
        self.hop = hop
        if hop:
            message = f"[{hop}] {message}"
        super().__init__(message)


class ConfigurationError(JuniperTransportError):
    """Missing, malformed or contradictory connection settings."""


class ProxyConfigurationError(ConfigurationError):
    """No bastion proxy strategy is usable on this host."""


class NetworkError(JuniperTransportError):
    """Socket-level failure (refused, unreachable, timed out).

    Only failures before any hop authenticated are ``retryable``; a
    connection lost after login is not retried.
    """

    def __init__(self, message: str, *, hop: Optional[str] = None, retryable: bool = True) -> None:
        super().__init__(message, hop=hop)
        self.retryable = retryable


class AuthenticationError(JuniperTransportError):
    """Credential or host-key rejection."""


class CommandTimeoutError(JuniperTransportError):
    """The device prompt did not reappear within the inactivity timeout."""


class ProtocolError(JuniperTransportError):
    """Device output could not be parsed into the expected structure."""


class SessionStateError(JuniperTransportError):
    """Operation invoked in a session state that does not allow it."""


class CommandRejectedError(JuniperTransportError):
    """Command refused by the sanitiser before reaching the device."""
