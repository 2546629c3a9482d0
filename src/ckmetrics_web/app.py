"""FastAPI interface for the CK metrics analyzer.

Access is controlled by a token in the URL path:
    http://host:8080/<CKM_WEB_TOKEN>/analyze

Set the CKM_WEB_TOKEN environment variable to the token string that callers
must include in their URL. If the variable is unset every request is allowed
and the routes are served from the root (useful for local development).

Routes (prefixed with /{token} when a token is configured):
    GET  /health        Liveness probe
    GET  /thresholds    Default thresholds (CKM_THRESHOLDS file if set)
    POST /analyze       Raw entities -> report JSON
"""
from __future__ import annotations

import os
from pathlib import Path

from fastapi import Body, FastAPI, HTTPException

from ckmetrics.config import Thresholds, load_thresholds
from ckmetrics.errors import ConfigError, ModelError
from ckmetrics.report import analyze

# ── Configuration ───────────────────────────────────────────────────────────────

_VALID_TOKEN: str = os.environ.get("CKM_WEB_TOKEN", "")
_THRESHOLDS_FILE: str = os.environ.get("CKM_THRESHOLDS", "")


def _default_thresholds() -> Thresholds:
    if _THRESHOLDS_FILE:
        return load_thresholds(Path(_THRESHOLDS_FILE))
    return Thresholds()


# Fails at import time on a broken file, before any request is served.
DEFAULT_THRESHOLDS = _default_thresholds()

# ── App ─────────────────────────────────────────────────────────────────────────

app = FastAPI(title="CK Metrics", docs_url=None, redoc_url=None)


# ── Helpers ─────────────────────────────────────────────────────────────────────

def _check_token(token: str) -> None:
    if _VALID_TOKEN and token != _VALID_TOKEN:
        raise HTTPException(status_code=403, detail="Invalid access token")


def _analyze(payload: dict) -> dict:
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="request body must be a JSON object")
    entities = payload.get("entities")
    if entities is None:
        raise HTTPException(status_code=400, detail="missing 'entities'")
    overrides = payload.get("thresholds") or {}
    try:
        thresholds = DEFAULT_THRESHOLDS.with_overrides(overrides)
        report = analyze(entities, thresholds, payload.get("options"))
    except (ConfigError, ModelError) as e:
        raise HTTPException(status_code=400, detail=e.as_dict())
    return report.to_dict()


# ── Routes ──────────────────────────────────────────────────────────────────────

if not _VALID_TOKEN:

    @app.get("/health")
    async def health_root():
        return {"status": "ok"}

    @app.get("/thresholds")
    async def thresholds_root():
        return DEFAULT_THRESHOLDS.to_dict()

    @app.post("/analyze")
    def analyze_root(payload: dict = Body(...)):
        return _analyze(payload)


@app.get("/{token}/health")
async def health(token: str):
    _check_token(token)
    return {"status": "ok"}


@app.get("/{token}/thresholds")
async def thresholds(token: str):
    _check_token(token)
    return DEFAULT_THRESHOLDS.to_dict()


@app.post("/{token}/analyze")
def analyze_with_token(token: str, payload: dict = Body(...)):
    _check_token(token)
    return _analyze(payload)
