"""
Exception hierarchy for gen-http-proxy.

All custom exceptions inherit from GatewayError so the CLI and the request
handler can treat them uniformly.
"""

from typing import Any, Dict, Optional


class GatewayError(Exception):
    """
    Base exception for all gateway errors.

    Attributes:
        message: Human-readable error message
        context: Additional context for debugging
    """

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        self.message = message
        self.context = context or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} ({context_str})"
        return self.message


# =============================================================================
# STARTUP ERRORS
# =============================================================================

class ConfigurationError(GatewayError):
    """Configuration cannot be resolved into a usable server."""
    pass


class TLSConfigurationError(ConfigurationError):
    """Key or certificate could not be loaded."""

    def __init__(self, keyfile: str, certfile: str, reason: str):
        super().__init__(
            f"Cannot load TLS material: {reason}",
            context={"key": keyfile, "cert": certfile}
        )
        self.keyfile = keyfile
        self.certfile = certfile


# =============================================================================
# PER-REQUEST ERRORS
# =============================================================================

class UpstreamConnectionError(GatewayError):
    """The upstream could not be reached.

    ``code`` identifies the failure the way the OS reports it
    (e.g. ``ECONNREFUSED``) and is what the client receives as body.
    """

    def __init__(self, code: str, target: str, original_error: Optional[BaseException] = None):
        super().__init__(
            f"Upstream {target} unavailable: {code}",
            context={"target": target}
        )
        self.code = code
        self.target = target
        self.original_error = original_error


class StaticFileError(GatewayError):
    """A static file exists but could not be read."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"Error getting the file: {reason}.", context={"path": path})
        self.path = path
        self.reason = reason
