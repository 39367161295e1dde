from contextlib import asynccontextmanager

from fastapi import FastAPI

from livetr.src.session import LiveSession

from .config import WebSettings


@asynccontextmanager
async def lifespan(app: FastAPI):
    # --- Startup ---
    # Tests may install their own settings and session before startup
    if getattr(app.state, "settings", None) is None:
        app.state.settings = WebSettings()
    if getattr(app.state, "session", None) is None:
        app.state.session = LiveSession(app.state.settings.to_session_settings())

    yield

    # --- Shutdown ---
    await app.state.session.stop()


def create_app(settings: WebSettings = None, session: LiveSession = None) -> FastAPI:
    app = FastAPI(title="Live Transcriber", lifespan=lifespan)
    app.state.settings = settings
    app.state.session = session

    # Register routes
    from .routes.live_routes import router as live_router

    app.include_router(live_router, prefix="/live")

    return app


app = create_app()
