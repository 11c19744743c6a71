import logging
from functools import wraps

from fastapi import HTTPException, Request

from .errors import LifecycleError
from .friendly_msg import get_friendly_message

logger = logging.getLogger(__name__)


def _request_context(request: Request | None):
    if not request:
        return "none", "unknown", "unknown"
    client_ip = request.client.host if request.client else "unknown"
    trace_id = request.headers.get("X-Request-ID", "none")
    return trace_id, request.url.path, client_ip


def safe_handler(func):
    @wraps(func)
    async def wrapper(*args, **kwargs):
        request: Request | None = None
        for arg in list(args) + list(kwargs.values()):
            if isinstance(arg, Request):
                request = arg
                break

        try:
            return await func(*args, **kwargs)
        except HTTPException as e:
            trace_id, path, client_ip = _request_context(request)
            logger.warning(
                "[HTTPException] TraceID=%s | %s - %s from %s: %s",
                trace_id,
                e.status_code,
                path,
                client_ip,
                e.detail,
            )
            raise
        except LifecycleError as e:
            trace_id, path, client_ip = _request_context(request)
            logger.warning(
                "[%s] TraceID=%s | %s - %s from %s: %s",
                type(e).__name__,
                trace_id,
                e.status_code,
                path,
                client_ip,
                e.detail,
            )
            raise
        except Exception as e:
            trace_id, path, client_ip = _request_context(request)
            logger.error(
                "[Unhandled Error] TraceID=%s | in %s | Path: %s | Client: %s | Error: %s",
                trace_id,
                func.__name__,
                path,
                client_ip,
                e,
                exc_info=True,
            )
            raise HTTPException(status_code=500, detail=get_friendly_message(e))

    return wrapper
