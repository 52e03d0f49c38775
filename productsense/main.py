"""Product Sense Trainer - FastAPI app entry point."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from productsense.core.config import settings
from productsense.core.errors import ErrorKind, PracticeError
from productsense.db.base import Base
from productsense.db.sessions import SessionLocal, engine
from productsense.routes import achievements, progression, sessions, users
from productsense.services.seeding import seed_catalog

# Import all models to ensure they're registered with Base
import productsense.models  # noqa: F401

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.INVALID_STATE: status.HTTP_409_CONFLICT,
    ErrorKind.OUT_OF_ORDER: status.HTTP_409_CONFLICT,
    ErrorKind.VALIDATION_FAILED: 422,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.INVALID_ARGUMENT: status.HTTP_400_BAD_REQUEST,
    ErrorKind.UPSTREAM_FAILURE: status.HTTP_502_BAD_GATEWAY,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    if settings.SEED_CATALOG_ON_STARTUP:
        db = SessionLocal()
        try:
            seed_catalog(db)
        finally:
            db.close()
    logger.info("%s v%s started", settings.APP_NAME, settings.APP_VERSION)
    yield


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Guided eight-step product sense practice with scoring, XP, streaks and achievements",
    lifespan=lifespan,
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PracticeError)
async def practice_error_handler(request: Request, exc: PracticeError):
    return JSONResponse(status_code=ERROR_STATUS[exc.kind], content={"error": exc.to_dict()})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    fields = {".".join(str(p) for p in err["loc"]): err["msg"] for err in exc.errors()}
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": {"code": ErrorKind.INVALID_ARGUMENT.value, "message": "Malformed request", "details": {"fields": fields}}},
    )


# Register routers
app.include_router(sessions.router)
app.include_router(progression.router)
app.include_router(achievements.router)
app.include_router(users.router)


@app.get("/health")
def health():
    return {"status": "ok"}
