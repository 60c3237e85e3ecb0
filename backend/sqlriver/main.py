"""Host FastAPI application embedding the river."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from sqlriver import __version__
from sqlriver.api.v1.api import api_router
from sqlriver.config import Settings, settings
from sqlriver.connectors.elasticsearch_connector import ElasticsearchConnector
from sqlriver.exceptions import ConfigurationError
from sqlriver.river import SqlRiver
from sqlriver.utils.log import configure_logging

# Configure root logger early
configure_logging(settings.log_level)

log = logging.getLogger(__name__)


def build_river(app_settings: Settings) -> Optional[SqlRiver]:
    """Create the river from host settings. Returns None when the river config is invalid."""
    sink = ElasticsearchConnector({
        "base_url": app_settings.elasticsearch_url,
        "username": app_settings.elasticsearch_username,
        "password": app_settings.elasticsearch_password,
        "timeout": app_settings.elasticsearch_timeout,
        "verify": app_settings.elasticsearch_verify_certs,
    })
    try:
        return SqlRiver(
            app_settings.river_name,
            app_settings.river_settings,
            sink,
            history_size=app_settings.river_history_size,
            log=logging.getLogger(f"sqlriver.river.{app_settings.river_name}")
        )
    except ConfigurationError as e:
        log.error(f"{e}. Aborting! River {app_settings.river_name} will not start.")
        sink.close()
        return None


@asynccontextmanager
async def lifespan(app: FastAPI):
    if getattr(app.state, "river", None) is None:
        app.state.river = build_river(settings)
    river = app.state.river
    if river is not None and settings.river_autostart:
        river.start()
    yield
    if river is not None:
        river.close()


app = FastAPI(
    title="SQL River",
    description="Mirrors the rows of an SQL query into an Elasticsearch index",
    version=__version__,
    lifespan=lifespan
)
app.state.river = None


@app.get("/api/health")
async def health_check(request: Request):
    """Health check endpoint."""
    river = request.app.state.river
    if river is None:
        return {"status": "unconfigured", "version": __version__, "river": None}

    latest = river.recent_results()
    return {
        "status": "healthy" if not latest or not latest[0].aborted else "degraded",
        "version": __version__,
        "river": river.status().model_dump()
    }

@app.get("/")
async def root():
    """Root endpoint - redirect to docs."""
    return {
        "message": "SQL River API",
        "version": __version__,
        "docs": "/docs"
    }

app.include_router(api_router, prefix=settings.api_v1_str)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    log.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn_level = "debug" if settings.log_level.upper() == "VERBOSE" else settings.log_level.lower()
    uvicorn.run(app, host="0.0.0.0", port=8000, log_level=uvicorn_level)
