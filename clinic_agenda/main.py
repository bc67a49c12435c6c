import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import ALLOWED_ORIGINS, CLINIC_API_URL, LOG_LEVEL
from .domain.scheduling import router as scheduling_router
from .domain.scheduling.errors import (
    CollaboratorError,
    ConflictPending,
    InvalidIntervalError,
    InvalidTransitionError,
    ItemNotFoundError,
    NotRecurringError,
)
from .domain.scheduling.repository import ApiScheduleRepository, ScheduleRepository
from .domain.scheduling.schemas import ConflictReportResponse

# Configure logging
logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Reduce verbosity of third-party libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting up...")
    logger.info(f"Clinic API: {CLINIC_API_URL}")
    yield
    logger.info("Application shutting down...")


def register_exception_handlers(app: FastAPI) -> None:
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
                return JSONResponse(status_code=401, content={"message": "Authentication error."})

        logger.warning(f"Validation error for {request.url.path}: {exc.errors()}")
        return JSONResponse(
            status_code=422,
            content={"message": "Validation error.", "detail": exc.errors()},
        )

    @app.exception_handler(ConflictPending)
    async def conflict_pending_handler(request: Request, exc: ConflictPending):
        return JSONResponse(
            status_code=409,
            content={
                "message": exc.message,
                "conflicts": ConflictReportResponse.from_report(exc.report).model_dump(),
                "strategies": ["keep_existing", "cancel_existing", "abort"],
            },
        )

    @app.exception_handler(InvalidIntervalError)
    @app.exception_handler(NotRecurringError)
    @app.exception_handler(InvalidTransitionError)
    async def bad_request_handler(request: Request, exc):
        logger.warning(f"Rejected {request.method} {request.url.path}: {exc.message}")
        return JSONResponse(status_code=400, content={"message": exc.message})

    @app.exception_handler(ItemNotFoundError)
    async def not_found_handler(request: Request, exc: ItemNotFoundError):
        return JSONResponse(status_code=404, content={"message": "Item not found."})

    @app.exception_handler(CollaboratorError)
    async def collaborator_error_handler(request: Request, exc: CollaboratorError):
        content = {"message": exc.message, "success": False}
        if exc.batch_incomplete:
            content["message"] = f"{exc.message} Some items could not be rolled back."
            content["incompleteIds"] = exc.incomplete_ids
        return JSONResponse(status_code=502, content=content)


def create_app(repository: Optional[ScheduleRepository] = None) -> FastAPI:
    app = FastAPI(title="Clinic Agenda API", version="1.0.0", lifespan=lifespan)
    app.state.schedule_repository = repository or ApiScheduleRepository()

    register_exception_handlers(app)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
        allow_headers=["*"],
    )

    app.include_router(scheduling_router)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


app = create_app()
