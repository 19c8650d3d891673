from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from portal_auth.config import Settings, settings as default_settings
from portal_auth.context import AppContext, build_context
from portal_auth.routers import auth, users

LOGGER = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None, context: AppContext | None = None
) -> FastAPI:
    settings = context.settings if context is not None else (settings or default_settings)
    logging.basicConfig(level=settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app_context = context or build_context(settings)
        app_context.database.create_all()
        app.state.context = app_context
        LOGGER.info("Auth service started environment=%s", settings.environment)
        try:
            yield
        finally:
            app_context.close()

    app = FastAPI(title="Portal Auth", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "message": "Validation failed",
                "errors": jsonable_encoder(exc.errors(), exclude={"ctx", "input"}),
            },
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        LOGGER.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"message": "Internal server error"},
        )

    app.include_router(auth.router, prefix="/api")
    app.include_router(users.router, prefix="/api")
    app.include_router(auth.router)  # Compatibility for clients calling /auth/* without /api.

    @app.get("/")
    def root():
        return {"status": "Backend running"}

    return app


app = create_app()
