"""gen-http-proxy - Generic HTTP(S)/WebSocket reverse proxy with token authentication."""

__version__ = "1.0.0"

from .auth import AuthDecision, SessionGate, resolve_token
from .config import (
    Address,
    Disabled,
    FallbackPolicy,
    Integer,
    ProxyConfig,
    Raw,
    normalize_number,
    resolve_config,
)
from .server import create_app, run_server

__all__ = [
    "Address",
    "AuthDecision",
    "Disabled",
    "FallbackPolicy",
    "Integer",
    "ProxyConfig",
    "Raw",
    "SessionGate",
    "create_app",
    "normalize_number",
    "resolve_config",
    "resolve_token",
    "run_server",
]
