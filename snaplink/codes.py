import re
import secrets
import string
from urllib.parse import urlparse

from snaplink.errors import InvalidFormat, InvalidUrl

ALPHABET = string.ascii_letters + string.digits + "-_"
CODE_LENGTH = 7
MAX_ATTEMPTS = 3
MAX_URL_LENGTH = 2048

CODE_RE = re.compile(r"[A-Za-z0-9_-]{3,20}")

# Paths served by the app itself; a short code with one of these names could never redirect
RESERVED = {"api", "docs", "redoc", "openapi.json", "health", "static", "favicon.ico"}


def generate(length: int = CODE_LENGTH) -> str:
    return "".join(secrets.choice(ALPHABET) for _ in range(length))


def is_well_formed(code: str) -> bool:
    return bool(CODE_RE.fullmatch(code or "")) and code not in RESERVED


def validate_custom(code: str) -> str:
    if not is_well_formed(code):
        raise InvalidFormat()
    return code


def validate_url(url: str) -> str:
    url = (url or "").strip()
    if not url or len(url) > MAX_URL_LENGTH:
        raise InvalidUrl()
    try:
        parsed = urlparse(url)
    except ValueError:
        raise InvalidUrl()
    if not parsed.scheme or not parsed.netloc:
        raise InvalidUrl()
    return url
