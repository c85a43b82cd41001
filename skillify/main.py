from contextlib import asynccontextmanager

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger
from starlette.exceptions import HTTPException as StarletteHTTPException

# ===== IMPORT ROUTERS =====
from skillify.api.v1.admin.admin import router as admin_router
from skillify.api.v1.auth import router as auth_router
from skillify.api.v1.instructor.courses import router as instructor_course_router
from skillify.api.v1.shares.ticket import router as ticket_router
from skillify.api.v1.user.courses import router as course_router
from skillify.api.v1.user.enrollment import router as enrollment_router
from skillify.api.v1.user.payment import router as payment_router
from skillify.core.cache import KeyValueCache
from skillify.core.scheduler import start_scheduler, stop_scheduler
from skillify.core.settings import settings
from skillify.libs.response import error

# --- MIDDLEWARE ---
from skillify.middleware.request_context import RequestContextMiddleware
from skillify.services.shares.cloudinary_service import CloudinaryService
from skillify.services.shares.mailer import MailerService
from skillify.services.shares.razorpay_service import RazorpayService


@asynccontextmanager
async def lifespan(app: FastAPI):

    # ================================
    # 1) SHARED CLIENTS
    # ================================
    app.state.http = httpx.AsyncClient(timeout=30)
    app.state.cache = KeyValueCache.from_url()
    app.state.payment_gateway = RazorpayService(app.state.http)
    app.state.media_host = CloudinaryService(app.state.http)
    app.state.mailer = MailerService()
    logger.info("HTTP client, cache and service clients ready")

    # ================================
    # 2) START APSCHEDULER
    # ================================
    start_scheduler()

    try:
        yield
    finally:
        await app.state.http.aclose()
        await app.state.cache.aclose()
        logger.info("HTTP client and cache closed")

        try:
            stop_scheduler()
            logger.info("Scheduler stopped")
        except Exception as e:
            logger.warning(f"Scheduler shutdown error: {e}")


# ===== APP CONFIG =====
app = FastAPI(
    title="Skillify API",
    description="Courses, enrollments, payments and role tickets",
    version="0.1.0",
    lifespan=lifespan,
)

# --- CORS ---
origins = [
    settings.FRONTEND_URL,
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestContextMiddleware)


# ===== ERROR ENVELOPE =====
@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return error(str(exc.detail), exc.status_code)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ())[1:])
        message = f"{field}: {first.get('msg')}" if field else str(first.get("msg"))
    else:
        message = "Invalid input"
    return error(message, 400)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return error("Server Error", 500)


prefix = "/api/v1"

# ===== REGISTER ROUTERS =====
app.include_router(auth_router, prefix=prefix)
# instructor routes first: /course/instructor must win over /course/{course_id}
app.include_router(instructor_course_router, prefix=prefix)
app.include_router(course_router, prefix=prefix)
app.include_router(enrollment_router, prefix=prefix)
app.include_router(payment_router, prefix=prefix)
app.include_router(ticket_router, prefix=prefix)
app.include_router(admin_router, prefix=prefix)


# ===== ROOT =====
@app.get("/")
async def hello_world():
    return {"message": "Skillify API"}


if __name__ == "__main__":
    uvicorn.run("skillify.main:app", host="0.0.0.0", port=8000, reload=True, log_level="info")
