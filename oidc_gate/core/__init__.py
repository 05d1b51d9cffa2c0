"""Core relying-party components."""

from oidc_gate.core.logging import (
    HTTPExchange,
    LoggingClient,
    LogLevel,
    ProtocolLogger,
    configure_logging,
    get_protocol_logger,
    redact_sensitive,
    set_protocol_logger,
)

__all__ = [
    "HTTPExchange",
    "LoggingClient",
    "LogLevel",
    "ProtocolLogger",
    "configure_logging",
    "get_protocol_logger",
    "redact_sensitive",
    "set_protocol_logger",
]
