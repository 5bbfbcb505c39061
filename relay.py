"""
Record relay - FastAPI application
==================================
Serves ``GET /api/stocks``: forwards one GET to the upstream origin with
the pre-shared key header and returns the upstream JSON body verbatim.
The origin URL and key are read from environment variables whose names
come from config.yaml (``relay`` section), so neither value ever reaches
the browser, the response body or the logs.

Run with:
    uvicorn relay:app --port 8000
"""

import logging
import os
from typing import Optional

import requests
from fastapi import APIRouter, FastAPI
from fastapi.responses import JSONResponse

from schemas import RunConfig

log = logging.getLogger("matrix.relay")

INTERNAL_ERROR = {"message": "Internal Server Error"}


class RelayError(Exception):
    """Upstream call failed; the message never contains the origin or key."""


def fetch_upstream(relay_cfg: RunConfig.RelayConfig):
    """GET the upstream origin and return its decoded JSON body.

    Raises RelayError on missing configuration, transport failure,
    non-2xx status or an undecodable body.
    """
    origin = os.environ.get(relay_cfg.origin_url_env)
    api_key = os.environ.get(relay_cfg.api_key_env, "")
    if not origin:
        raise RelayError(f"{relay_cfg.origin_url_env} is not set")

    try:
        resp = requests.get(origin, headers={relay_cfg.api_key_header: api_key},
                            timeout=relay_cfg.timeout_seconds)
    except requests.RequestException as e:
        raise RelayError(f"transport error ({type(e).__name__})") from None

    # Response.ok is True for 3xx
    if not 200 <= resp.status_code < 300:
        raise RelayError(f"upstream status {resp.status_code}")
    try:
        return resp.json()
    except ValueError:
        raise RelayError("upstream body is not JSON") from None


def build_router(cfg: RunConfig) -> APIRouter:
    router = APIRouter()

    @router.get("/stocks")
    def relay_stocks():
        """Relay the record list. 200 + upstream body, or 500 + generic message."""
        try:
            data = fetch_upstream(cfg.relay)
        except RelayError as e:
            log.error(f"Relay failed: {e}")
            return JSONResponse(status_code=500, content=INTERNAL_ERROR)
        return JSONResponse(status_code=200, content=data)

    return router


def create_app(cfg: Optional[RunConfig] = None) -> FastAPI:
    if cfg is None:
        from matrix_engine import CONFIG_PATH, load_config
        if CONFIG_PATH.exists():
            cfg = load_config(CONFIG_PATH)
        else:
            log.warning("config.yaml not found; relay using default settings")
            cfg = RunConfig()
    app = FastAPI(
        title="Value Matrix Relay",
        description="Forwards the record list from the upstream API",
        version="1.0.0",
    )
    app.include_router(build_router(cfg), prefix="/api")

    @app.get("/health")
    def health():
        return {"status": "healthy"}

    return app


app = create_app()
