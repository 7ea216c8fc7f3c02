import logging
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from obscura.config import Settings, load_settings
from obscura.errors import ObscuraError
from obscura.investigation import Investigation
from obscura.llm import HttpGenerator
from obscura.operations import JobRunner, OperationRegistry
from obscura.pipeline import CaseOrchestrator
from obscura.routes import router
from obscura.storage import Storage
from obscura.uploads import CloudinaryUploader, LocalUploader, Uploader

logger = logging.getLogger(__name__)


def build_uploader(settings: Settings, storage: Storage) -> Uploader:
    if settings.uploader == "cloudinary":
        return CloudinaryUploader(
            settings.cloudinary_cloud_name,
            settings.cloudinary_api_key,
            settings.cloudinary_api_secret,
        )
    return LocalUploader(storage.media_dir)


def create_app(
    settings: Settings | None = None,
    generator=None,
    uploader: Uploader | None = None,
    clock=None,
) -> FastAPI:
    """Build the app. `generator`, `uploader` and `clock` are injectable for tests."""
    settings = settings or load_settings()
    clock_kw = {"clock": clock} if clock is not None else {}

    storage = Storage(settings.data_dir, **clock_kw)
    generator = generator or HttpGenerator(
        provider_url=settings.generator_url,
        api_key=settings.generator_api_key,
        provider_format=settings.generator_format,
        model=settings.generator_model,
        image_model=settings.image_model,
        timeout=settings.generator_timeout,
    )
    uploader = uploader or build_uploader(settings, storage)
    registry = OperationRegistry(**clock_kw)
    runner = JobRunner(registry, max_age=timedelta(seconds=settings.operation_max_age))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await runner.drain()

    app = FastAPI(title="Obscura", lifespan=lifespan)
    app.state.settings = settings
    app.state.storage = storage
    app.state.runner = runner
    app.state.orchestrator = CaseOrchestrator(generator, uploader, storage, runner)
    app.state.investigation = Investigation(storage, generator, runner=runner, **clock_kw)

    @app.exception_handler(ObscuraError)
    async def obscura_error(request: Request, exc: ObscuraError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    @app.exception_handler(RequestValidationError)
    async def invalid_request(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})

    app.include_router(router, prefix="/api")

    if settings.uploader == "local":
        storage.media_dir.mkdir(parents=True, exist_ok=True)
        app.mount("/media", StaticFiles(directory=storage.media_dir), name="media")

    return app
