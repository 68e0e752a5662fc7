from __future__ import annotations

import asyncio
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from fastapi import FastAPI, File, Form, HTTPException, UploadFile
from fastapi.responses import FileResponse, HTMLResponse, JSONResponse
from starlette.background import BackgroundTask
from starlette.concurrency import run_in_threadpool

from .converter import convert_epub, output_path_for
from .errors import ValidationError
from .options import (
    DEFAULT_OPTIONS,
    BionicOptions,
    default_max_upload_bytes,
    default_temp_root,
    default_workers,
)

EPUB_MEDIA_TYPE = "application/epub+zip"
_CHUNK_SIZE = 1024 * 1024
_INVALID_NAME_CHARS = set('<>:"/\\|?*')


@dataclass(slots=True)
class WebConfig:
    temp_root: Path | None = None
    max_upload_bytes: int = field(default_factory=default_max_upload_bytes)
    workers: int = field(default_factory=default_workers)


INDEX_HTML = f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>Bionic EPUB Converter</title>
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <style>
    body {{ font-family: -apple-system, BlinkMacSystemFont, "Helvetica Neue", sans-serif;
           max-width: 32rem; margin: 3rem auto; padding: 0 1rem; }}
    label {{ display: block; margin: 0.8rem 0 0.2rem; }}
    button {{ margin-top: 1.2rem; }}
  </style>
</head>
<body>
  <h1>Bionic EPUB Converter</h1>
  <form action="/convert" method="post" enctype="multipart/form-data">
    <label for="epub">EPUB file</label>
    <input id="epub" name="epub" type="file" accept=".epub" required>
    <label for="ratio">Maximum ratio of letters to bold (0-1)</label>
    <input id="ratio" name="max_prefix_ratio" type="number" min="0" max="1" step="0.05"
           value="{DEFAULT_OPTIONS.max_prefix_ratio}">
    <label for="min">Minimum word length</label>
    <input id="min" name="min_word_length" type="number" min="1"
           value="{DEFAULT_OPTIONS.min_word_length}">
    <label for="max">Maximum prefix length</label>
    <input id="max" name="max_prefix_length" type="number" min="1"
           value="{DEFAULT_OPTIONS.max_prefix_length}">
    <label><input name="process_uppercase" type="checkbox" value="true"> Process uppercase words</label>
    <button type="submit">Convert</button>
  </form>
</body>
</html>
"""


def _normalize_upload_filename(filename: str | None) -> str:
    candidate = Path(filename).name.strip() if isinstance(filename, str) else ""
    cleaned = "".join("_" if ch in _INVALID_NAME_CHARS else ch for ch in candidate if ord(ch) >= 32)
    cleaned = cleaned.strip(" .")
    if not cleaned or cleaned.lower() == ".epub":
        cleaned = "upload.epub"
    if not cleaned.lower().endswith(".epub"):
        cleaned = f"{cleaned}.epub"
    return cleaned[-120:]


def _make_staging_dir(root: Path | None) -> Path:
    base = root if root is not None else default_temp_root()
    base.mkdir(parents=True, exist_ok=True)
    return Path(tempfile.mkdtemp(prefix="upload-", dir=base))


async def _save_upload(upload: UploadFile, destination: Path, limit: int) -> int:
    written = 0
    with destination.open("wb") as handle:
        while True:
            chunk = await upload.read(_CHUNK_SIZE)
            if not chunk:
                break
            written += len(chunk)
            if written > limit:
                raise HTTPException(
                    status_code=413,
                    detail=f"Upload exceeds the {limit // (1024 * 1024)} MB limit.",
                )
            handle.write(chunk)
    return written


def create_app(config: WebConfig | None = None) -> FastAPI:
    config = config or WebConfig()
    app = FastAPI(title="bionic-epub")

    @app.get("/", response_class=HTMLResponse)
    def index() -> str:
        return INDEX_HTML

    @app.get("/health")
    def health() -> JSONResponse:
        return JSONResponse({"status": "ok"})

    @app.post("/convert")
    async def api_convert(
        epub: UploadFile = File(...),
        max_prefix_ratio: str | None = Form(None),
        min_word_length: str | None = Form(None),
        max_prefix_length: str | None = Form(None),
        skip_uppercase: str | None = Form(None),
        process_uppercase: str | None = Form(None),
    ) -> FileResponse:
        filename = epub.filename or ""
        if Path(filename).suffix.lower() != ".epub":
            await epub.close()
            raise HTTPException(status_code=400, detail="Only .epub files are supported.")
        try:
            options = BionicOptions.from_payload(
                {
                    "max_prefix_ratio": max_prefix_ratio,
                    "min_word_length": min_word_length,
                    "max_prefix_length": max_prefix_length,
                    "skip_uppercase": skip_uppercase,
                    "process_uppercase": process_uppercase,
                }
            )
        except ValidationError as exc:
            await epub.close()
            raise HTTPException(status_code=400, detail=str(exc)) from exc

        staging = _make_staging_dir(config.temp_root)
        source = staging / _normalize_upload_filename(filename)
        try:
            await _save_upload(epub, source, config.max_upload_bytes)
        except HTTPException:
            shutil.rmtree(staging, ignore_errors=True)
            raise
        except Exception as exc:
            shutil.rmtree(staging, ignore_errors=True)
            raise HTTPException(status_code=500, detail=f"Failed to save upload: {exc}") from exc
        finally:
            await epub.close()

        task = asyncio.ensure_future(
            run_in_threadpool(
                convert_epub,
                source,
                options,
                temp_root=config.temp_root,
                workers=config.workers,
            )
        )
        try:
            result = await asyncio.shield(task)
        except asyncio.CancelledError:
            # The conversion thread keeps running; remove the upload once it is done.
            task.add_done_callback(lambda _task: shutil.rmtree(staging, ignore_errors=True))
            raise

        if not result.success or result.output_path is None:
            shutil.rmtree(staging, ignore_errors=True)
            raise HTTPException(status_code=500, detail=f"Conversion failed: {result.message}")
        return FileResponse(
            result.output_path,
            media_type=EPUB_MEDIA_TYPE,
            filename=output_path_for(source).name,
            background=BackgroundTask(shutil.rmtree, staging, ignore_errors=True),
        )

    return app


__all__ = ["WebConfig", "create_app"]
