import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

# Import all models to ensure they're registered with SQLAlchemy Base
# This is needed for relationships between models in different files
from . import (
    models,  # noqa: F401
    models_invoice,  # noqa: F401
)
from .auth import router as auth_router
from .database import Base, engine
from .domain.fee.router import router as fee_router
from .domain.horses.router import router as horses_router
from .domain.invoices.router import router as invoices_router
from .domain.legal.router import router as legal_router
from .domain.notifications.router import router as notifications_router
from .domain.payments.router import router as payments_router
from .domain.requests.router import router as requests_router
from .domain.shows.router import router as shows_router
from .domain.users.router import router as users_router
from .shared.errors import ApiError, EntityNotFound, ModelValidationError, respond_with_error

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Reduce verbosity of third-party libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting up...")
    try:
        Base.metadata.create_all(bind=engine, checkfirst=True)
        logger.info("Database tables created successfully")
    except Exception as e:
        # Ignore "already exists" errors from race conditions between workers
        error_msg = str(e)
        if "already exists" in error_msg or "duplicate key" in error_msg:
            logger.info("Database tables already exist (created by another worker)")
        else:
            logger.error(f"Failed to create database tables: {e}")

    yield
    logger.info("Application shutting down...")


app = FastAPI(title="HorseLinc API", version="1.0.0", lifespan=lifespan)


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    logger.info(f"⚠️ {request.method} {request.url.path} rejected: {exc.message}")
    return respond_with_error(exc.message, exc.status_code)


@app.exception_handler(EntityNotFound)
async def entity_not_found_handler(request: Request, exc: EntityNotFound):
    return Response(status_code=404)


@app.exception_handler(ModelValidationError)
async def model_validation_handler(request: Request, exc: ModelValidationError):
    logger.warning(f"Validation error for {request.url.path}: {exc.errors}")
    return JSONResponse(status_code=422, content={"errors": exc.errors})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Convert 422 validation errors from HTTPBearer to 401 authentication errors
    when the issue is with the Authorization header
    """
    for error in exc.errors():
        if error.get("loc") and "authorization" in str(error.get("loc")).lower():
            logger.warning(
                f"Authentication failed for {request.url.path}: Missing or invalid Authorization header"
            )
            return JSONResponse(status_code=401, content={"message": "Not authenticated."})

    logger.warning(f"Validation error for {request.url.path}: {exc.errors()}")
    return JSONResponse(status_code=422, content={"errors": jsonable_errors(exc)})


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [{"loc": list(error.get("loc", [])), "msg": error.get("msg"), "type": error.get("type")} for error in exc.errors()]


@app.middleware("http")
async def log_requests(request: Request, call_next):
    try:
        response = await call_next(request)
        return response
    except Exception as e:
        logger.error(f"{request.method} {request.url.path} - Error: {str(e)}")
        raise


# CORS Configuration
ALLOWED_ORIGINS = os.getenv(
    "ALLOWED_ORIGINS",
    "https://horselinc.com,https://admin.horselinc.com,http://localhost:4200",
).split(",")

logger.info(f"CORS allowed origins: {ALLOWED_ORIGINS}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["*"],
)

# Routes
app.include_router(auth_router)
app.include_router(users_router)
app.include_router(horses_router)
app.include_router(requests_router)
app.include_router(invoices_router)
app.include_router(payments_router)
app.include_router(shows_router)
app.include_router(notifications_router)
app.include_router(legal_router)
app.include_router(fee_router)


@app.get("/")
def root():
    return {"message": "HorseLinc API is running"}


@app.get("/health")
def health():
    return {"status": "healthy"}
