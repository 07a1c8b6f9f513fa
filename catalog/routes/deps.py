from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from catalog.config import get_settings
from catalog.context import CatalogContext

limiter = Limiter(key_func=get_remote_address)


def write_rate_limit() -> str:
    return get_settings().write_rate_limit


def get_context(request: Request) -> CatalogContext:
    return request.app.state.context
