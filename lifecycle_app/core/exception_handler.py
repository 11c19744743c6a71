import logging

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .errors import LifecycleError, MoneyIntegrityError

logger = logging.getLogger(__name__)


class ValidationErrorHandler:
    async def __call__(self, request: Request, exc: RequestValidationError):

        errors = []

        for err in exc.errors():
            errors.append({
                "loc": err.get("loc"),
                "msg": str(err.get("msg")),
                "type": err.get("type"),
            })

        return JSONResponse(
            status_code=422,
            content={
                "success": False,
                "error": "Validation failed",
                "details": errors,
            },
        )


class LifecycleErrorHandler:
    async def __call__(self, request: Request, exc: LifecycleError):
        if isinstance(exc, MoneyIntegrityError):
            logger.critical(
                "Money integrity violation on %s: %s %s",
                request.url.path,
                exc.detail,
                exc.context,
            )

        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
