"""
Security hardening module.

Provides CSRF protection, rate limiting, input sanitization
and owner identification for the API.

Authentication happens upstream: the gateway in front of this service
passes the signed-in user's id in the X-User-Id header.
"""

import re
from functools import wraps
from datetime import timedelta
from typing import Any, Iterable, Optional

from flask import request, g, jsonify, current_app
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_wtf.csrf import CSRFProtect


# Initialize extensions at module level
csrf = CSRFProtect()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["1000 per day", "200 per hour"]
)


# Security configuration defaults
DEFAULT_CONFIG = {
    'SESSION_COOKIE_SECURE': True,
    'SESSION_COOKIE_HTTPONLY': True,
    'SESSION_COOKIE_SAMESITE': 'Lax',
    'PERMANENT_SESSION_LIFETIME': timedelta(hours=1),
    'WTF_CSRF_TIME_LIMIT': 3600,  # 1 hour
    'WTF_CSRF_SSL_STRICT': True,
}

OWNER_HEADER = 'X-User-Id'
OWNER_NAME_HEADER = 'X-User-Name'
MAX_OWNER_ID_LENGTH = 128
OWNER_ID_PATTERN = re.compile(r'^[A-Za-z0-9_\-.:@|]+$')


def add_security_headers(response):
    """
    Add security headers to response.
    This is a standalone function that can be used as an after_request handler.
    """
    # API responses are JSON only
    response.headers['Content-Security-Policy'] = "default-src 'none'; frame-ancestors 'none'"

    # Prevent MIME type sniffing
    response.headers['X-Content-Type-Options'] = 'nosniff'

    # Prevent clickjacking
    response.headers['X-Frame-Options'] = 'DENY'

    # Referrer policy
    response.headers['Referrer-Policy'] = 'strict-origin-when-cross-origin'

    # Will and allocation data must not be cached by intermediaries
    response.headers['Cache-Control'] = 'no-store'

    return response


def init_security(app):
    """Initialize security extensions with the app."""
    # Apply default security config
    for key, value in DEFAULT_CONFIG.items():
        if key not in app.config:
            app.config[key] = value

    # Initialize CSRF protection
    csrf.init_app(app)

    # Initialize rate limiter
    limiter.init_app(app)


# Rate limit configurations
RATE_LIMITS = {
    'read': "300 per minute",
    'write': "60 per minute",
    'validate': "120 per minute",
    'finalize': "10 per hour",
}


def rate_limit_read():
    """Decorator for read endpoint rate limiting."""
    return limiter.limit(RATE_LIMITS['read'])


def rate_limit_write():
    """Decorator for write endpoint rate limiting."""
    return limiter.limit(RATE_LIMITS['write'])


def rate_limit_validate():
    """Decorator for validation endpoint rate limiting."""
    return limiter.limit(RATE_LIMITS['validate'])


def rate_limit_finalize():
    """Decorator for finalize rate limiting. Each call sends emails."""
    return limiter.limit(RATE_LIMITS['finalize'])


# Input sanitization
HTML_TAG_PATTERN = re.compile(r'<[^>]+>')
SCRIPT_PATTERN = re.compile(r'<script[^>]*>.*?</script>', re.DOTALL | re.IGNORECASE)
EVENT_HANDLER_PATTERN = re.compile(r'on\w+\s*=', re.IGNORECASE)


def sanitize_string(value: str, max_length: int = 50000) -> str:
    """
    Sanitize a string value for safe storage and display.

    Args:
        value: Input string
        max_length: Maximum allowed length

    Returns:
        Sanitized string
    """
    if value is None:
        return ''

    if not isinstance(value, str):
        value = str(value)

    # Remove script tags
    value = SCRIPT_PATTERN.sub('', value)

    # Remove event handlers
    value = EVENT_HANDLER_PATTERN.sub('', value)

    # Remove all HTML tags
    value = HTML_TAG_PATTERN.sub('', value)

    # Limit length
    value = value[:max_length]

    # Strip whitespace
    value = value.strip()

    return value


def sanitize_payload(payload: Any, preserve: Iterable[str] = ()) -> Any:
    """
    Recursively sanitize all string values in a payload.

    Args:
        payload: Dictionary, list or scalar to sanitize
        preserve: Top-level keys whose values are kept verbatim

    Returns:
        Sanitized copy; non-string scalars are returned unchanged
    """
    if isinstance(payload, dict):
        return {k: v if k in preserve else sanitize_payload(v) for k, v in payload.items()}
    elif isinstance(payload, list):
        return [sanitize_payload(item) for item in payload]
    elif isinstance(payload, str):
        return sanitize_string(payload)
    else:
        return payload


def get_client_ip() -> str:
    """Get the client IP address, handling proxies."""
    # Check for forwarded header (if behind proxy)
    forwarded_for = request.headers.get('X-Forwarded-For')
    if forwarded_for:
        # Get first IP in chain
        return forwarded_for.split(',')[0].strip()

    # Check for real IP header
    real_ip = request.headers.get('X-Real-Ip')
    if real_ip:
        return real_ip

    # Fall back to remote address
    return request.remote_addr or 'unknown'


def parse_owner_id(value: Optional[str]) -> Optional[str]:
    """Return a usable owner id from a header value, or None."""
    if not value:
        return None
    value = value.strip()
    if not value or len(value) > MAX_OWNER_ID_LENGTH:
        return None
    if not OWNER_ID_PATTERN.match(value):
        return None
    return value


def current_owner_id() -> Optional[str]:
    """Owner id of the current request, once owner_required has run."""
    return g.get('owner_id')


def current_owner_name() -> Optional[str]:
    """Display name forwarded by the gateway, if any."""
    name = sanitize_string(request.headers.get(OWNER_NAME_HEADER), max_length=100)
    return name or None


def owner_required(f):
    """Decorator to require an upstream-authenticated owner."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        owner_id = parse_owner_id(request.headers.get(OWNER_HEADER))
        if not owner_id:
            current_app.logger.warning(
                f'Rejected {request.method} {request.path} from {get_client_ip()}: missing owner identity'
            )
            return jsonify({
                'ok': False,
                'errors': [{'field': OWNER_HEADER, 'message': 'Authentication required',
                            'code': 'unauthenticated'}]
            }), 401

        # Store for use in view
        g.owner_id = owner_id
        return f(*args, **kwargs)
    return decorated_function
