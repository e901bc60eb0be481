"""Configuration management for gen-http-proxy."""

import enum
import os
import re
import secrets
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence, Union

from jinja2 import Environment, PackageLoader, select_autoescape

from .exceptions import ConfigurationError

USAGE = "usage: gen-http-proxy [ <target> | <listen> <target> ]"

DEFAULT_LISTEN_HOST = "0.0.0.0"
DEFAULT_LISTEN_PORT = "10000"
DEFAULT_TARGET_HOST = "localhost"
DEFAULT_TARGET_PORT = "3000"

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


def get_jinja_env():
    """Get Jinja2 environment for templates."""
    return Environment(
        loader=PackageLoader("gen_http_proxy", "templates"),
        autoescape=select_autoescape(["html", "xml"]),
        trim_blocks=True,
        lstrip_blocks=True,
    )


# =============================================================================
# NUMERIC NORMALIZATION
# =============================================================================

@dataclass(frozen=True)
class Integer:
    """A value that parsed as a non-negative integer."""
    value: int

    def __str__(self) -> str:
        return str(self.value)


@dataclass(frozen=True)
class Raw:
    """A value that did not parse; kept verbatim."""
    value: str

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Disabled:
    """A value that parsed as a negative integer."""

    def __str__(self) -> str:
        return "false"


NumberValue = Union[Integer, Raw, Disabled]


def normalize_number(value: str) -> NumberValue:
    """Normalize a numeric setting.

    The leading integer of ``value`` is parsed in base 10. Non-negative results
    become ``Integer``, negative ones ``Disabled``, and anything that does not
    start with an integer is passed through as ``Raw``.
    """
    match = _LEADING_INT.match(value)
    if not match:
        return Raw(value)
    number = int(match.group(1))
    if number >= 0:
        return Integer(number)
    return Disabled()


def positive_seconds(value: NumberValue) -> Optional[int]:
    """Return the number of seconds if ``value`` is a positive integer."""
    if isinstance(value, Integer) and value.value > 0:
        return value.value
    return None


# =============================================================================
# ADDRESSES
# =============================================================================

@dataclass(frozen=True)
class Address:
    """A ``host:port`` pair as given in the environment or on the command line."""
    host: str
    port: NumberValue

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"

    def port_number(self, role: str) -> int:
        """Return the port as an int, or raise if it cannot be bound/connected."""
        if isinstance(self.port, Integer):
            return self.port.value
        if isinstance(self.port, Disabled):
            raise ConfigurationError(
                f"Negative {role} port is not usable",
                context={role: str(self)}
            )
        raise ConfigurationError(
            f"Invalid {role} port '{self.port}'",
            context={role: str(self)}
        )


def parse_address(value: str, default_host: str, default_port: str) -> Address:
    """Parse ``host:port``; either side may be empty and falls back to its default."""
    parts = value.split(":")
    host = parts[0] or default_host
    port = parts[1] if len(parts) > 1 and parts[1] else default_port
    return Address(host=host, port=normalize_number(port))


# =============================================================================
# CONFIGURATION
# =============================================================================

class FallbackPolicy(enum.Enum):
    """What to do with a request the gate denied."""
    STATIC = "static"
    LOGIN_FORM = "login"
    REJECT = "reject"


@dataclass(frozen=True)
class ProxyConfig:
    """Resolved proxy configuration. Built once at startup."""
    listen: Address
    target: Address
    token: str
    secure: bool = False
    keyfile: str = "./server.key"
    certfile: str = "./server.crt"
    use_cookies: bool = True
    session_timeout: NumberValue = Integer(60)
    fallback: FallbackPolicy = FallbackPolicy.STATIC
    static_folder: str = "./static"
    log_level: str = "INFO"

    @property
    def auth_enabled(self) -> bool:
        return self.token != ""

    @property
    def cookie_max_age(self) -> Optional[int]:
        return positive_seconds(self.session_timeout)

    @property
    def scheme(self) -> str:
        return "https" if self.secure else "http"


TOKEN_BYTES = 16


def resolve_token(configured: Optional[str]) -> str:
    """
    Resolve the effective shared secret.

    ``None`` means no token was configured and a random one is generated for
    the lifetime of the process. Any string is used verbatim; the empty
    string disables authentication.
    """
    if configured is None:
        return secrets.token_hex(TOKEN_BYTES)
    return configured


def env_flag(environ: Mapping[str, str], name: str, default: str) -> bool:
    """Read a boolean env var; only ``true`` and ``1`` enable it."""
    value = environ.get(name) or default
    return value in ("true", "1")


def _resolve_fallback(environ: Mapping[str, str]) -> FallbackPolicy:
    explicit = environ.get("fallback")
    if explicit:
        try:
            return FallbackPolicy(explicit.lower())
        except ValueError:
            choices = ", ".join(p.value for p in FallbackPolicy)
            raise ConfigurationError(
                f"Unknown fallback policy '{explicit}' (expected one of: {choices})"
            )
    if env_flag(environ, "staticserver", "true"):
        return FallbackPolicy.STATIC
    return FallbackPolicy.REJECT


def _listen_setting(environ: Mapping[str, str]) -> str:
    server = environ.get("server")
    if server:
        return server
    address = environ.get("address")
    port = environ.get("port")
    if address or port:
        return f"{address or ''}:{port or ''}"
    return f"{DEFAULT_LISTEN_HOST}:{DEFAULT_LISTEN_PORT}"


def resolve_config(
    environ: Optional[Mapping[str, str]] = None,
    args: Sequence[str] = (),
) -> ProxyConfig:
    """Build the configuration from defaults, environment and positional args.

    Args:
        environ: Environment mapping (defaults to ``os.environ``)
        args: Positional CLI arguments; one overrides the target, two override
            listen address and target

    Raises:
        ConfigurationError: for any other number of positional arguments
    """
    if environ is None:
        environ = os.environ

    listen = _listen_setting(environ)
    target = environ.get("target") or f"{DEFAULT_TARGET_HOST}:{DEFAULT_TARGET_PORT}"

    if len(args) == 1:
        target = args[0]
    elif len(args) == 2:
        listen, target = args
    elif len(args) != 0:
        raise ConfigurationError(USAGE, context={"arguments": len(args)})

    return ProxyConfig(
        listen=parse_address(listen, DEFAULT_LISTEN_HOST, DEFAULT_LISTEN_PORT),
        target=parse_address(target, DEFAULT_TARGET_HOST, DEFAULT_TARGET_PORT),
        token=resolve_token(environ.get("token")),
        secure=env_flag(environ, "secure", "false"),
        keyfile=environ.get("key") or "./server.key",
        certfile=environ.get("cert") or "./server.crt",
        use_cookies=env_flag(environ, "usecookies", "true"),
        session_timeout=normalize_number(environ.get("sessiontimeout") or "60"),
        fallback=_resolve_fallback(environ),
        static_folder=environ.get("staticfolder") or "./static",
        log_level=(environ.get("loglevel") or "INFO").upper(),
    )
