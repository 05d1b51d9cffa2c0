"""Protocol logging for provider traffic.

Every HTTP exchange with the OIDC provider (discovery, JWKS, token
endpoint) is logged through the ``oidc_gate.protocol`` logger, with
secrets, authorization codes and tokens redacted unless TRACE logging has
been explicitly enabled.

Log levels:
- ERROR: Only log errors
- INFO: Log one line per exchange
- DEBUG: Add headers, redirects and timing
- TRACE: Add request/response bodies (requires explicit enable)
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import IntEnum
from itertools import count
from typing import Any

import httpx

# Custom log level for TRACE (below DEBUG)
TRACE = 5
logging.addLevelName(TRACE, "TRACE")

logger = logging.getLogger("oidc_gate.protocol")


class LogLevel(IntEnum):
    """Protocol logging levels."""

    ERROR = logging.ERROR
    INFO = logging.INFO
    DEBUG = logging.DEBUG
    TRACE = TRACE


_REDACTED = "[REDACTED]"

SENSITIVE_PATTERNS = [
    # Form and query parameters
    (re.compile(r"(client_secret=)[^&\s]+", re.IGNORECASE), rf"\1{_REDACTED}"),
    (re.compile(r"((?<![a-z_])code=)[^&\s]+", re.IGNORECASE), rf"\1{_REDACTED}"),
    (re.compile(r"(access_token=)[^&\s]+", re.IGNORECASE), rf"\1{_REDACTED}"),
    (re.compile(r"(refresh_token=)[^&\s]+", re.IGNORECASE), rf"\1{_REDACTED}"),
    (re.compile(r"(id_token=)[^&\s]+", re.IGNORECASE), rf"\1{_REDACTED}"),
    (re.compile(r"(id_token_hint=)[^&\s]+", re.IGNORECASE), rf"\1{_REDACTED}"),
    # Header values
    (re.compile(r"^(Bearer\s+)\S+", re.IGNORECASE), rf"\1{_REDACTED}"),
    (re.compile(r"^(Basic\s+)\S+", re.IGNORECASE), rf"\1{_REDACTED}"),
    # JSON fields
    (re.compile(r'"(client_secret)"\s*:\s*"[^"]+"', re.IGNORECASE), rf'"\1": "{_REDACTED}"'),
    (re.compile(r'"(access_token)"\s*:\s*"[^"]+"', re.IGNORECASE), rf'"\1": "{_REDACTED}"'),
    (re.compile(r'"(refresh_token)"\s*:\s*"[^"]+"', re.IGNORECASE), rf'"\1": "{_REDACTED}"'),
    (re.compile(r'"(id_token)"\s*:\s*"[^"]+"', re.IGNORECASE), rf'"\1": "{_REDACTED}"'),
]


def redact_sensitive(text: str) -> str:
    """Redact secrets, codes and tokens from text.

    Args:
        text: Text that may contain sensitive data.

    Returns:
        Text with sensitive data redacted.
    """
    result = text
    for pattern, replacement in SENSITIVE_PATTERNS:
        result = pattern.sub(replacement, result)
    return result


@dataclass
class HTTPExchange:
    """A single HTTP request/response exchange with the provider."""

    id: str
    timestamp: datetime
    method: str
    url: str
    request_headers: dict[str, str]
    request_body: str | None = None
    response_status: int | None = None
    response_headers: dict[str, str] = field(default_factory=dict)
    response_body: str | None = None
    duration_ms: float | None = None
    error: str | None = None
    redirects: list[dict[str, Any]] = field(default_factory=list)

    def format_log(self, level: LogLevel, include_sensitive: bool = False) -> str:
        """Format the exchange for logging.

        Args:
            level: Log level determines how much detail to include.
            include_sensitive: If True, include raw sensitive data.

        Returns:
            Formatted log string.
        """

        def show(value: str) -> str:
            return value if include_sensitive else redact_sensitive(value)

        status = self.response_status or "ERROR"
        lines = [f"HTTP {self.method} {show(self.url)} -> {status}"]
        if self.error:
            lines.append(f"  Error: {self.error}")

        if level <= LogLevel.DEBUG:
            if self.duration_ms is not None:
                lines.append(f"  Duration: {self.duration_ms:.1f}ms")
            lines.append("  Request Headers:")
            for name, value in self.request_headers.items():
                lines.append(f"    {name}: {show(value)}")
            if self.response_headers:
                lines.append("  Response Headers:")
                for name, value in self.response_headers.items():
                    lines.append(f"    {name}: {show(value)}")
            for redirect in self.redirects:
                lines.append(f"  Redirect: {redirect.get('status', '???')} {show(redirect['url'])}")

        if level <= LogLevel.TRACE:
            if self.request_body:
                body = show(self.request_body)
                lines.append("  Request Body:")
                lines.append(f"    {body[:2000]}{'...' if len(body) > 2000 else ''}")
            if self.response_body:
                body = show(self.response_body)
                lines.append("  Response Body:")
                lines.append(f"    {body[:2000]}{'...' if len(body) > 2000 else ''}")

        return "\n".join(lines)


class ProtocolLogger:
    """Configurable logger for provider HTTP traffic."""

    def __init__(
        self,
        level: LogLevel = LogLevel.INFO,
        trace_enabled: bool = False,
    ) -> None:
        """Initialize the protocol logger.

        Args:
            level: Minimum log level.
            trace_enabled: Whether TRACE level is enabled (for sensitive data).
        """
        self._level = level
        self._trace_enabled = trace_enabled

    @property
    def level(self) -> LogLevel:
        return self._level

    @level.setter
    def level(self, value: LogLevel) -> None:
        self._level = value

    @property
    def trace_enabled(self) -> bool:
        return self._trace_enabled

    @property
    def effective_level(self) -> LogLevel:
        """Get effective log level (TRACE only if explicitly enabled)."""
        if self._level == LogLevel.TRACE and not self._trace_enabled:
            return LogLevel.DEBUG
        return self._level

    def log_exchange(self, exchange: HTTPExchange) -> None:
        """Log an HTTP exchange at the configured level."""
        effective = self.effective_level
        include_sensitive = self._trace_enabled and effective <= LogLevel.TRACE

        if exchange.error:
            logger.error(exchange.format_log(LogLevel.INFO, include_sensitive))
        elif effective <= LogLevel.DEBUG:
            logger.debug(exchange.format_log(effective, include_sensitive))
        elif effective <= LogLevel.INFO:
            logger.info(exchange.format_log(effective, include_sensitive))


class LoggingClient(httpx.Client):
    """HTTPX client that reports every exchange to a ProtocolLogger."""

    max_redirects = 10

    def __init__(
        self,
        protocol_logger: ProtocolLogger | None = None,
        **kwargs: Any,
    ) -> None:
        """Initialize the logging client.

        Args:
            protocol_logger: ProtocolLogger to use. Uses the global one if not provided.
            **kwargs: Additional arguments passed to httpx.Client.
        """
        self._protocol_logger = protocol_logger or get_protocol_logger()
        self._exchange_ids = count(1)

        # Redirects are followed manually so the chain can be logged
        kwargs["follow_redirects"] = False
        super().__init__(**kwargs)

    @property
    def protocol_logger(self) -> ProtocolLogger:
        return self._protocol_logger

    def _build_exchange(
        self,
        request: httpx.Request,
        start_time: float,
        redirects: list[dict[str, Any]],
    ) -> HTTPExchange:
        request_body = None
        if request.content:
            try:
                request_body = request.content.decode("utf-8")
            except UnicodeDecodeError:
                request_body = "<binary content>"

        return HTTPExchange(
            id=f"http_{next(self._exchange_ids):04d}",
            timestamp=datetime.now(UTC),
            method=request.method,
            url=str(request.url),
            request_headers=dict(request.headers),
            request_body=request_body,
            duration_ms=(time.perf_counter() - start_time) * 1000,
            redirects=redirects,
        )

    def request(self, method: str, url: str | httpx.URL, **kwargs: Any) -> httpx.Response:
        """Make an HTTP request, following and logging redirects."""
        start_time = time.perf_counter()
        redirects: list[dict[str, Any]] = []

        # Client.get/post pass these, build_request accepts neither
        auth = kwargs.pop("auth", httpx.USE_CLIENT_DEFAULT)
        follow = kwargs.pop("follow_redirects", httpx.USE_CLIENT_DEFAULT) is not False

        request = self.build_request(method, url, **kwargs)
        try:
            response = self.send(request, auth=auth, follow_redirects=False)
            while follow and response.is_redirect and len(redirects) < self.max_redirects:
                location = response.headers.get("location", "")
                redirects.append({"url": location, "status": response.status_code})
                if not location:
                    break
                request = self.build_request("GET", request.url.join(location))
                response = self.send(request, auth=auth, follow_redirects=False)
        except httpx.HTTPError as e:
            exchange = self._build_exchange(request, start_time, redirects)
            exchange.error = str(e)
            self._protocol_logger.log_exchange(exchange)
            raise

        exchange = self._build_exchange(request, start_time, redirects)
        exchange.response_status = response.status_code
        exchange.response_headers = dict(response.headers)
        exchange.response_body = response.text
        self._protocol_logger.log_exchange(exchange)
        return response


# Global protocol logger instance
_global_logger: ProtocolLogger | None = None


def get_protocol_logger() -> ProtocolLogger:
    """Get the global protocol logger instance."""
    global _global_logger
    if _global_logger is None:
        _global_logger = ProtocolLogger()
    return _global_logger


def set_protocol_logger(logger_instance: ProtocolLogger) -> None:
    """Set the global protocol logger instance."""
    global _global_logger
    _global_logger = logger_instance


def configure_logging(
    level: LogLevel | str = LogLevel.INFO,
    trace_enabled: bool = False,
    log_file: str | None = None,
) -> ProtocolLogger:
    """Configure logging for the package.

    Args:
        level: Log level (ERROR, INFO, DEBUG, TRACE) or string name.
        trace_enabled: Whether to enable TRACE level (includes sensitive data).
        log_file: Optional file path to write logs to.

    Returns:
        Configured ProtocolLogger.
    """
    if isinstance(level, str):
        level = LogLevel.__members__.get(level.upper(), LogLevel.INFO)

    package_logger = logging.getLogger("oidc_gate")
    package_logger.setLevel(level)
    package_logger.handlers.clear()

    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    package_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        package_logger.addHandler(file_handler)

    protocol_logger = ProtocolLogger(level=level, trace_enabled=trace_enabled)
    set_protocol_logger(protocol_logger)

    if trace_enabled:
        package_logger.warning("TRACE logging enabled - tokens and secrets will be logged!")

    return protocol_logger
