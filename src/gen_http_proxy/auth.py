"""
gen-http-proxy - Token Authentication

A single shared secret gates access to the upstream. Clients present it either
as a ``?token=`` query parameter or, once it has been accepted, through the
``token`` cookie the gate issues. There is no server-side session table: every
request is evaluated from what the client sends.
"""

import enum
import logging
from typing import Optional

from aiohttp import web

from .config import ProxyConfig, resolve_token  # noqa: F401

# Module-level logger for auth operations
logger = logging.getLogger('gen_http_proxy.auth')

COOKIE_NAME = 'token'
QUERY_PARAM = 'token'


# =============================================================================
# SESSION GATE
# =============================================================================

class AuthDecision(enum.Enum):
    ALLOW = 'allow'
    DENY = 'deny'


class SessionGate:
    """Decide whether a request may reach the upstream."""

    def __init__(self, config: ProxyConfig):
        self.token = config.token
        self.use_cookies = config.use_cookies
        self.max_age = config.cookie_max_age

    def evaluate(self, request: web.BaseRequest,
                 response: Optional[web.StreamResponse] = None) -> AuthDecision:
        """
        Evaluate ``request`` and, on success, set the session cookie.

        Args:
            request: The inbound request
            response: Response the cookie is written to. Upgrade requests have
                none; the decision still applies to them.
        """
        if self.token == '':
            return AuthDecision.ALLOW

        stored_token = None
        if self.use_cookies:
            stored_token = request.cookies.get(COOKIE_NAME)

        if stored_token != self.token:
            query_token = request.query.get(QUERY_PARAM)
            if query_token is None or query_token != self.token:
                logger.debug(f"Denied {request.method} {request.path} from {request.remote}")
                return AuthDecision.DENY
            logger.debug(f"Accepted URL token from {request.remote}")

        if self.use_cookies and response is not None:
            self.set_cookie(response)

        return AuthDecision.ALLOW

    def set_cookie(self, response: web.StreamResponse):
        """Issue (or refresh) the session cookie on ``response``."""
        response.set_cookie(
            COOKIE_NAME,
            self.token,
            max_age=self.max_age,
            path='/',
            httponly=True,
        )
