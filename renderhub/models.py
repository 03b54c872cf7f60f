from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

TaskStatus = Literal["pending", "downloading", "splitting", "transcribing", "completed", "failed"]
TERMINAL_STATUSES = frozenset({"completed", "failed"})


class RequestModel(BaseModel):
    # Request bodies accept both snake_case and the camelCase the clients send.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TranscriptionRequest(RequestModel):
    audio_url: str | None = None
    language: str | None = None
    chunk_duration_seconds: int | None = None
    max_parallel: int | None = None
    expected_duration_seconds: float | None = None


class TaskSource(BaseModel):
    model_config = ConfigDict(frozen=True)

    audio_url: str
    language: str
    chunk_duration_seconds: int | None = None
    max_parallel: int


class StageTimings(BaseModel):
    download_seconds: float = 0.0
    probe_seconds: float = 0.0
    split_seconds: float = 0.0
    transcribe_seconds: float = 0.0
    total_seconds: float = 0.0


class TaskResult(BaseModel):
    transcript: str
    character_count: int
    success_count: int
    chunk_count: int
    transcribed_chunks: int
    failed_chunks: int
    duration_seconds: float
    chunk_duration_seconds: int
    downloaded_bytes: int
    timings: StageTimings


class TaskRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    status: TaskStatus = "pending"
    progress: int = 0
    message: str = "Task queued"
    source: TaskSource
    result: TaskResult | None = None
    error: str | None = None
    created_at: datetime
    updated_at: datetime


class SubmissionResponse(BaseModel):
    success: bool = True
    task_id: str
    status_url: str


class Cookie(RequestModel):
    name: str
    value: str
    domain: str | None = None
    url: str | None = None
    path: str = "/"
    expires: float = -1
    http_only: bool = False
    secure: bool = False
    same_site: Literal["Strict", "Lax", "None"] = "Lax"


class Viewport(RequestModel):
    width: int = 375
    height: int = 812


class BrowserOptions(RequestModel):
    user_agent: str | None = None
    viewport: Viewport | None = None
    is_mobile: bool = False
    wait_for_selector: str | None = None
    scroll_to_load: bool = True
    wait_time: int | None = Field(default=None, ge=0, le=60000)


class ExtractionRules(RequestModel):
    content_selectors: list[str] = Field(
        default_factory=lambda: ["article", "main", ".content", ".post", "body"]
    )
    remove_selectors: list[str] = Field(
        default_factory=lambda: [
            "script", "style", "iframe", "nav", "footer", ".ads", ".ad-container", "noscript",
        ]
    )


class MetadataRule(RequestModel):
    type: Literal["meta", "selector"]
    property: str | None = None
    name: str | None = None
    selector: str | None = None
    attribute: str | None = None
    priority: int = 99
    transform: Literal["date"] | None = None


class MetadataRules(RequestModel):
    title: list[MetadataRule] | None = None
    author: list[MetadataRule] | None = None
    publisher: list[MetadataRule] | None = None
    publish_date: list[MetadataRule] | None = None
    thumbnail: list[MetadataRule] | None = None
    description: list[MetadataRule] | None = None


class MarkdownOptions(RequestModel):
    image_attribute: str = "src"


class PageRequest(RequestModel):
    url: str | None = None
    cookies: list[Cookie] = Field(default_factory=list)
    browser: BrowserOptions = Field(default_factory=BrowserOptions)


class ExtractRequest(PageRequest):
    browser: BrowserOptions = Field(
        default_factory=lambda: BrowserOptions(is_mobile=True, viewport=Viewport())
    )
    extraction: ExtractionRules | None = None
    markdown: MarkdownOptions = Field(default_factory=MarkdownOptions)
    metadata: MetadataRules | None = None


class ContentRequest(PageRequest):
    user_agent: str | None = None


class ScreenshotRequest(PageRequest):
    full_page: bool = True


class PdfRequest(PageRequest):
    format: str = "A4"
    print_background: bool = True


class EvaluateRequest(PageRequest):
    script: str | None = None
