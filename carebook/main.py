from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from carebook.config.settings import settings
from carebook.core.errors import CareBookError, ErrorCode
from carebook.core.middleware import verify_token_middleware
from carebook.core.observability import default_observer
from carebook.db.base import get_engine
from carebook.db.base import get_session_factory

# -------------------------------------------------------------------------------------
# Logging
# -------------------------------------------------------------------------------------
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application start-up & shutdown hooks."""
    logger.info("Application startup …")

    engine = None
    # tests install their own engine and session factory before startup
    if getattr(app.state, "session_factory", None) is None:
        logger.info("Initializing Database Engine...")
        engine = await get_engine(
            str(settings.database_url),
            isolation_level=settings.db_isolation_level,
            echo=settings.db_echo,
        )
        app.state.engine = engine
        app.state.session_factory = await get_session_factory(engine)
        logger.info(f"DB engine ready (isolation level {settings.db_isolation_level}).")

    if getattr(app.state, "transaction_observer", None) is None:
        app.state.transaction_observer = default_observer

    yield

    logger.info("Application shutdown …")
    if engine:
        try:
            await engine.dispose()
            logger.info("DB engine disposed")
        except Exception:
            logger.exception("Error disposing DB engine")

    logger.info("Shutdown complete")


# -------------------------------------------------------------------------------------
# FastAPI application instance
# -------------------------------------------------------------------------------------
app = FastAPI(title="CareBook Scheduling API", lifespan=lifespan)

# CORS -------------------------------------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=[str(o) for o in settings.cors_origins],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.middleware("http")(verify_token_middleware)


# ----------------------------------------------------------------- error handlers ---
@app.exception_handler(CareBookError)
async def carebook_error_handler(request: Request, exc: CareBookError):
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        f"{request.method} {request.url.path} -> {exc.code}: {exc.message} "
        f"(request_id={getattr(request.state, 'request_id', None)})"
    )
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content=jsonable_encoder(
            {
                "error": "Invalid request data",
                "code": ErrorCode.VALIDATION_ERROR,
                "details": {"errors": exc.errors()},
            }
        ),
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception(
        f"Unhandled error on {request.method} {request.url.path} "
        f"(request_id={getattr(request.state, 'request_id', None)})"
    )
    return JSONResponse(
        status_code=500,
        content={"error": "An unexpected error occurred", "code": ErrorCode.INTERNAL_ERROR},
    )


# ----------------------------------------------------------------- health‑check -----
@app.get("/health")
async def health_check(request: Request):
    return {
        "status": "ok",
        "database": "configured" if getattr(request.app.state, "session_factory", None) else "not configured",
    }


# ------------------------------------------------------------------- routes ---------
from carebook.routes.appointment.router import router as appointment_router  # noqa: E402
from carebook.routes.prescription.router import router as prescription_router  # noqa: E402
from carebook.routes.schedule.router import router as schedule_router  # noqa: E402

app.include_router(appointment_router)
app.include_router(schedule_router)
app.include_router(prescription_router)
