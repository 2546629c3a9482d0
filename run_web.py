#!/usr/bin/env python3
"""Serve the CK metrics analyzer over HTTP.

Usage:
    python run_web.py [--host HOST] [--port PORT] [--thresholds FILE] [--reload]

Environment variables:
    CKM_WEB_TOKEN   URL path prefix callers must use; unset means open routes.
    CKM_THRESHOLDS  Default thresholds file (JSON or markdown table). The
                    --thresholds flag overrides it.

Example:
    CKM_WEB_TOKEN=dGVzdHRva2Vu python run_web.py --thresholds docs/thresholds.md
    curl -X POST http://localhost:8080/dGVzdHRva2Vu/analyze \\
         -H 'content-type: application/json' -d '{"entities": {"classes": []}}'
"""
from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent / "src"))

import uvicorn  # noqa: E402

from ckmetrics.config import load_thresholds  # noqa: E402
from ckmetrics.errors import ConfigError  # noqa: E402


def main() -> int:
    parser = argparse.ArgumentParser(description="CK metrics HTTP interface")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8080)
    parser.add_argument("--thresholds", help="Default thresholds file served by the app")
    parser.add_argument("--reload", action="store_true", help="Auto-reload on code changes (development)")
    args = parser.parse_args()

    if args.thresholds:
        os.environ["CKM_THRESHOLDS"] = str(Path(args.thresholds).resolve())

    # The app loads the same file at import; check it here for a readable exit.
    thresholds_file = os.environ.get("CKM_THRESHOLDS", "")
    if thresholds_file:
        try:
            defaults = load_thresholds(Path(thresholds_file))
        except ConfigError as e:
            print(f"error: {e.message}", file=sys.stderr)
            return 2
        print(f"thresholds: {thresholds_file} {defaults.to_dict()}")

    token = os.environ.get("CKM_WEB_TOKEN", "")
    base = f"http://{args.host}:{args.port}/" + (f"{token}/" if token else "")
    if not token:
        print("WARNING: CKM_WEB_TOKEN is not set, every caller is accepted. Do not expose publicly.")
    for method, route in (("GET ", "health"), ("GET ", "thresholds"), ("POST", "analyze")):
        print(f"  {method} {base}{route}")

    uvicorn.run(
        "ckmetrics_web.app:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level="info",
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
