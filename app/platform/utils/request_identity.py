import secrets

from fastapi import Request

from app.platform.config import settings
from app.platform.logger import get_logger

logger = get_logger(__name__)

ADMIN_HEADER = "x-scan-admin"


def get_client_ip(request: Request) -> str:
    """
    Requesting identity for fair-use accounting.

    x-forwarded-for may carry a proxy chain; the first entry is the client.
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    real_ip = request.headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()

    return request.client.host if request.client else "127.0.0.1"


def is_admin_request(request: Request) -> bool:
    # No configured secret means nobody is trusted
    if not settings.ADMIN_SECRET:
        return False

    header_value = request.headers.get(ADMIN_HEADER)
    if not header_value:
        return False

    is_admin = secrets.compare_digest(header_value.encode(), settings.ADMIN_SECRET.encode())
    if not is_admin:
        logger.warning(f"[identity] Invalid {ADMIN_HEADER} header from {get_client_ip(request)}")
    return is_admin


def has_bearer_secret(request: Request, secret: str) -> bool:
    if not secret:
        return False
    auth_header = request.headers.get("authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return False
    return secrets.compare_digest(token.strip().encode(), secret.encode())
