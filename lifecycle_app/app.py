import logging

import uvicorn
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from core.catch_error_middleware import ErrorHandlerMiddleware
from core.errors import LifecycleError
from core.exception_handler import LifecycleErrorHandler, ValidationErrorHandler
from core.lifespan import lifespan
from core.settings import settings
from routes.booking_routes import router as booking_router
from routes.escrow_routes import router as escrow_router
from routes.payment_method_routes import router as payment_method_router
from routes.payment_routes import router as payment_router
from routes.verification_routes import router as verification_router
from routes.webhooks_routes import router as webhooks_router

logging.basicConfig(level=logging.INFO)
app = FastAPI(
    lifespan=lifespan,
    title=settings.PROJECT_NAME,
    version="2.0.0",
)

app.include_router(booking_router, prefix="/v2/bookings")
app.include_router(payment_router, prefix="/v2/payments")
app.include_router(payment_method_router, prefix="/v2/payment-methods")
app.include_router(escrow_router, prefix="/v2/maintenance-tickets")
app.include_router(verification_router, prefix="/v2/verifications")
app.include_router(webhooks_router, prefix="/v2")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_HOSTS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", tags=["System"])
async def health_check():
    return {"status": "ok"}


app.add_exception_handler(
    RequestValidationError,
    ValidationErrorHandler(),
)
app.add_exception_handler(LifecycleError, LifecycleErrorHandler())

app.add_middleware(ErrorHandlerMiddleware)


if __name__ == "__main__":
    uvicorn.run("app:app", host="0.0.0.0", port=8000, reload=True)
