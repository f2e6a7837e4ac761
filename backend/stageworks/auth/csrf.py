"""
CSRF protection.

Uses the double-submit pattern: a random token is set in a cookie the SPA can
read and must be echoed back in a header on state-changing requests.
"""

import secrets
from urllib.parse import urlparse


def generate_csrf_token() -> str:
    """URL-safe random token (32 bytes)."""
    return secrets.token_urlsafe(32)


def tokens_match(header_token: str | None, cookie_token: str | None) -> bool:
    """Constant-time comparison of the header and cookie tokens."""
    if not header_token or not cookie_token:
        return False
    return secrets.compare_digest(header_token, cookie_token)


def validate_origin(
    origin: str | None,
    referer: str | None,
    allowed_origins: list[str],
) -> bool:
    """
    Check Origin (or Referer) against the allowlist.

    Requests carrying neither header are allowed; some proxies strip them.
    """
    check_url = origin
    if not check_url:
        if not referer:
            return True
        parsed = urlparse(referer)
        if not parsed.scheme or not parsed.netloc:
            return True
        check_url = f"{parsed.scheme}://{parsed.netloc}"

    if check_url.startswith(("http://localhost:", "http://127.0.0.1:")):
        return True

    return check_url in allowed_origins
