from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request
import structlog

from arcadia.api.services import ArcadiaServices

logger = structlog.get_logger()


def get_client_key(request: Request) -> str:
    """Get client identifier for rate limiting - uses IP address"""
    return get_remote_address(request)


limiter = Limiter(key_func=get_client_key)


def get_services(request: Request) -> ArcadiaServices:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise RuntimeError("Arcadia services are not configured")
    return services
