from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from renderhub import background
from renderhub.browser import BrowserManager
from renderhub.config import SERVICE_NAME, SERVICE_VERSION, configure_logging, settings
from renderhub.errors import SubmissionError
from renderhub.extraction import extract_page
from renderhub.models import (
    ContentRequest,
    EvaluateRequest,
    ExtractRequest,
    PdfRequest,
    ScreenshotRequest,
    SubmissionResponse,
    TaskRecord,
    TranscriptionRequest,
)
from renderhub.pipeline import process_task, validate_submission
from renderhub.registry import TaskRegistry
from renderhub.transcription import TranscriptionClient

configure_logging()
logger = logging.getLogger(__name__)

registry = TaskRegistry()
browser = BrowserManager()
transcriber: TranscriptionClient | None = None


@asynccontextmanager
async def lifespan(_: FastAPI):
    global transcriber
    transcriber = TranscriptionClient()
    background.spawn(registry.run_sweeper(settings.SWEEP_INTERVAL_SECONDS), name="task-sweeper")
    try:
        yield
    finally:
        await background.cancel_all()
        await transcriber.aclose()
        transcriber = None
        await browser.close()


app = FastAPI(title="Renderhub", version=SERVICE_VERSION, lifespan=lifespan)


def _failure(exc: Exception | str, status_code: int = 500, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": str(exc), **extra})


def _missing_url() -> JSONResponse:
    return _failure("URL is required", status_code=400)


@app.get("/health")
def health():
    return {
        "status": "ok",
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "engine": "playwright/chromium",
        "time": datetime.now(timezone.utc).isoformat(),
        "tasks": len(registry),
    }


@app.post("/api/transcriptions", response_model=SubmissionResponse)
async def create_transcription(req: TranscriptionRequest):
    try:
        source = validate_submission(req)
    except SubmissionError as exc:
        raise HTTPException(status_code=400, detail=exc.message)
    if transcriber is None:
        raise HTTPException(status_code=503, detail="Service is not ready")

    task_id = registry.create(source)
    background.spawn(process_task(task_id, registry, transcriber), name=f"transcribe-{task_id}")
    return SubmissionResponse(task_id=task_id, status_url=f"/api/transcriptions/{task_id}")


@app.get("/api/transcriptions/{task_id}", response_model=TaskRecord, response_model_exclude_none=True)
def get_transcription(task_id: str):
    record = registry.get(task_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Task not found")
    return record


@app.get("/api/transcriptions/{task_id}/transcript.txt", response_class=PlainTextResponse)
def download_transcript(task_id: str):
    record = registry.get(task_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Task not found")
    if record.result is None:
        raise HTTPException(status_code=404, detail="Transcript not ready")
    return record.result.transcript


@app.post("/extract")
async def extract(req: ExtractRequest):
    url = req.url
    if not url:
        return _missing_url()
    logger.info("Extract starting: %s", url)
    steps = {"navigate": 0, "scroll": 0, "extract": 0, "convert": 0}
    start = datetime.now(timezone.utc)
    try:
        async with browser.open_page(url, req.browser, req.cookies) as (page, load_stats):
            steps.update(load_stats)
            html = await page.content()
        extracted = extract_page(html, req.extraction, req.metadata, req.markdown)
    except Exception as exc:
        logger.exception("Extract failed for %s", url)
        duration = round((datetime.now(timezone.utc) - start).total_seconds() * 1000)
        return _failure(exc, stats={"duration": duration, "steps": steps})
    steps.update(extracted["steps"])
    duration = round((datetime.now(timezone.utc) - start).total_seconds() * 1000)
    logger.info("Extract done in %dms: %s", duration, url)
    return {
        "success": True,
        "markdown": extracted["markdown"],
        "metadata": extracted["metadata"],
        "stats": {
            "htmlLength": extracted["html_length"],
            "markdownLength": extracted["markdown_length"],
            "duration": duration,
            "steps": steps,
        },
    }


@app.post("/content")
async def content(req: ContentRequest):
    url = req.url
    if not url:
        return _missing_url()
    options = req.browser
    if req.user_agent and not options.user_agent:
        options = options.model_copy(update={"user_agent": req.user_agent})
    try:
        async with browser.open_page(url, options, req.cookies) as (page, _):
            html = await page.content()
    except Exception as exc:
        logger.exception("Content fetch failed for %s", url)
        return _failure(exc)
    return Response(content=html, media_type="text/html; charset=utf-8")


@app.post("/screenshot")
async def screenshot(req: ScreenshotRequest):
    url = req.url
    if not url:
        return _missing_url()
    try:
        async with browser.open_page(url, req.browser, req.cookies) as (page, _):
            image = await page.screenshot(full_page=req.full_page, type="png")
    except Exception as exc:
        logger.exception("Screenshot failed for %s", url)
        return _failure(exc)
    return Response(content=image, media_type="image/png")


@app.post("/pdf")
async def pdf(req: PdfRequest):
    url = req.url
    if not url:
        return _missing_url()
    try:
        async with browser.open_page(url, req.browser, req.cookies) as (page, _):
            document = await page.pdf(format=req.format, print_background=req.print_background)
    except Exception as exc:
        logger.exception("PDF render failed for %s", url)
        return _failure(exc)
    return Response(content=document, media_type="application/pdf")


@app.post("/evaluate")
async def evaluate(req: EvaluateRequest):
    url = req.url
    if not url:
        return _missing_url()
    if not req.script:
        return _failure("script is required", status_code=400)
    try:
        async with browser.open_page(url, req.browser, req.cookies) as (page, _):
            value = await page.evaluate(req.script)
    except Exception as exc:
        logger.exception("Script evaluation failed for %s", url)
        return _failure(exc)
    return {"success": True, "result": value}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("renderhub.main:app", host="0.0.0.0", port=int(os.getenv("PORT", "3000")))
