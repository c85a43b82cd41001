from starlette.middleware.base import BaseHTTPMiddleware

from skillify.core.context import current_request


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Keep the current Request in a context var for services."""

    async def dispatch(self, request, call_next):
        token = current_request.set(request)
        try:
            response = await call_next(request)
        finally:
            current_request.reset(token)
        return response
