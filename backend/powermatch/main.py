import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import sessionmaker

from .api import functions as functions_api
from .api import invitations as invitations_api
from .api import power_matches as power_matches_api
from .api import subscribers as subscribers_api
from .config import Settings
from .database import create_db_engine, create_session_factory, init_db
from .services.match_trigger import MatchTriggerClient, build_match_trigger_client
from .utils.error_handlers import create_error_response, get_error_message, register_exception_handlers

logger = logging.getLogger(__name__)

_default_origins = ["http://localhost:5173", "http://127.0.0.1:5173"]


def create_app(
    settings: Settings | None = None,
    *,
    session_factory: sessionmaker | None = None,
    match_trigger_client: MatchTriggerClient | None = None,
) -> FastAPI:
    """
    Build the API. Everything the routes need hangs off `app.state`; tests pass
    their own session factory and a fake scoring client.
    """
    settings = settings or Settings.from_env()
    if session_factory is None:
        engine = create_db_engine(settings.database_url)
        session_factory = create_session_factory(engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        init_db(app.state.session_factory.kw["bind"])
        logger.info(
            "Power match service started (workers=%s, auto_apply_policy=%s, atomic=%s)",
            settings.batch_max_workers,
            settings.auto_apply_policy,
            settings.auto_apply_atomic,
        )
        yield
        app.state.match_trigger_client.close()

    app = FastAPI(title="Power Match Service", lifespan=lifespan)
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.match_trigger_client = match_trigger_client or build_match_trigger_client(settings)

    app.include_router(functions_api.router)
    app.include_router(invitations_api.router)
    app.include_router(power_matches_api.router)
    app.include_router(subscribers_api.router)

    register_exception_handlers(app)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Handle unexpected errors globally."""
        logger.exception("Unhandled exception: %s", exc)
        return create_error_response(500, get_error_message("server_error"))

    @app.get("/health")
    def health_check():
        """Health check endpoint."""
        return {
            "status": "Backend running",
            "service": "Power Match Service",
        }

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[*_default_origins, *settings.frontend_origins],
        allow_origin_regex=r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$",
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    # Registered after CORS so it runs first.
    app.middleware("http")(functions_api.function_preflight_middleware)
    return app


app = create_app()
