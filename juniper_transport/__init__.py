"""SSH transport for Juniper JunOS devices, with bastion and proxy support."""

from juniper_transport.config import BastionHop, ConnectionSettings, HostKeyPolicy, load_settings
from juniper_transport.errors import (
    AuthenticationError,
    CommandRejectedError,
    CommandTimeoutError,
    ConfigurationError,
    JuniperTransportError,
    NetworkError,
    ProtocolError,
    ProxyConfigurationError,
    SessionStateError,
)
from juniper_transport.models.commands import CommandResult
from juniper_transport.models.platform import DeviceFacts
from juniper_transport.services.connection_manager import ConnectionManager
from juniper_transport.utils.logging import get_logger, setup_logging

__version__ = "0.1.0"

__all__ = [
    "AuthenticationError",
    "BastionHop",
    "CommandRejectedError",
    "CommandResult",
    "CommandTimeoutError",
    "ConfigurationError",
    "ConnectionManager",
    "ConnectionSettings",
    "DeviceFacts",
    "HostKeyPolicy",
    "JuniperTransportError",
    "NetworkError",
    "ProtocolError",
    "ProxyConfigurationError",
    "SessionStateError",
    "get_logger",
    "load_settings",
    "setup_logging",
]
