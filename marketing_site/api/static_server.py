"""
Static file serving for the built marketing frontend.
Files are looked up in each configured directory in order; any other
non-API path falls back to index.html so client-side routes work.
"""

import html
from pathlib import Path
from typing import List, Optional, Sequence

from fastapi import FastAPI, Request
from fastapi.responses import FileResponse, HTMLResponse

from ..infrastructure.logging.service import get_logger
from .responses import error_response


logger = get_logger("api")

PLACEHOLDER_PAGE = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{company_name}</title>
  <style>
    body {{ font-family: Arial, sans-serif; max-width: 720px; margin: 40px auto; padding: 0 20px; color: #333; }}
    .card {{ border: 1px solid #e9ecef; border-radius: 5px; padding: 20px; margin: 20px 0; }}
    .btn {{ display: inline-block; padding: 10px 20px; background: #FFC107; color: #000; text-decoration: none; border-radius: 5px; }}
  </style>
</head>
<body>
  <h1>{company_name}</h1>
  <div class="card">
    <h2>Our Brochure</h2>
    <a href="/api/brochure/download" class="btn">Download Brochure</a>
  </div>
  <p>The website frontend has not been built yet. API endpoints are listed at <a href="/api">/api</a>.</p>
</body>
</html>
"""


def existing_static_dirs(static_dirs: Sequence[Path]) -> List[Path]:
    """Configured static directories that exist, resolved, in priority order."""
    return [Path(d).resolve() for d in static_dirs if Path(d).is_dir()]


def _find_file(roots: Sequence[Path], relative_path: str) -> Optional[Path]:
    for root in roots:
        candidate = (root / relative_path).resolve()
        # Refuse anything that escapes the static root
        if not candidate.is_relative_to(root):
            continue
        if candidate.is_file():
            return candidate
    return None


def setup_static_files(app: FastAPI, static_dirs: Sequence[Path], company_name: str = "Our Company"):
    """Register the catch-all GET route. Must be called after every API route."""

    roots = existing_static_dirs(static_dirs)
    for root in roots:
        logger.info(f"Serving static files from {root}", extra={"static_dir": str(root)})

    @app.get("/{full_path:path}", include_in_schema=False)
    async def serve_frontend(full_path: str, request: Request):
        if full_path == "api" or full_path.startswith("api/"):
            # Unknown API paths get a JSON 404, not the SPA shell
            return error_response(request, 404, "API endpoint not found", "NOT_FOUND")

        if full_path:
            static_file = _find_file(roots, full_path)
            if static_file:
                return FileResponse(static_file)

        index_file = _find_file(roots, "index.html")
        if index_file:
            return FileResponse(index_file, headers={"Cache-Control": "no-cache"})

        return HTMLResponse(PLACEHOLDER_PAGE.format(company_name=html.escape(company_name)))
