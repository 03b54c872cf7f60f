import logging

from pydantic_settings import BaseSettings, SettingsConfigDict

SERVICE_NAME = "renderhub"
SERVICE_VERSION = "3.0.0"

MIN_DURATION_SECONDS = 5 * 60
LONG_AUDIO_THRESHOLD_SECONDS = 100 * 60
LONG_AUDIO_CHUNK_SECONDS = 10 * 60
TARGET_CHUNK_COUNT = 10
MIN_CHUNK_SECONDS = 2 * 60
MAX_CHUNK_SECONDS = 15 * 60

MAX_PARALLEL = 10
# Raw chunk bytes; base64 inflates by 4/3 so the encoded payload stays under 14 MiB.
MAX_UPLOAD_BYTES = 10 * 1024 * 1024
MAX_BASE64_CHARS = 14 * 1024 * 1024

CHUNK_FORMAT = "mp3"
CHUNK_SAMPLE_RATE = 16000
CHUNK_BITRATE = "64k"

DEFAULT_LANGUAGE = "auto"
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
MOBILE_USER_AGENT = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Mobile/15E148"
)


class Settings(BaseSettings):
    # ---------- Transcription API ----------
    TRANSCRIBE_API_URL: str = "http://localhost:9000/v1/transcribe"
    TRANSCRIBE_API_KEY: str | None = None
    TRANSCRIBE_MODEL: str = "default"
    TRANSCRIBE_TIMEOUT_SECONDS: float = 180.0

    # ---------- Audio download ----------
    FETCH_TIMEOUT_SECONDS: float = 300.0
    FETCH_MAX_ATTEMPTS: int = 3
    FETCH_RETRY_DELAY_SECONDS: float = 2.0
    FETCH_MAX_BYTES: int = 1024 * 1024 * 1024

    # ---------- Task registry ----------
    TASK_RETENTION_SECONDS: float = 60 * 60
    SWEEP_INTERVAL_SECONDS: float = 10 * 60

    # ---------- Tooling ----------
    FFMPEG_BIN: str = "ffmpeg"
    FFPROBE_BIN: str = "ffprobe"
    FFMPEG_TIMEOUT_SECONDS: float = 300.0

    # ---------- Browser ----------
    BROWSER_HEADLESS: bool = True
    NAVIGATION_TIMEOUT_MS: int = 30000

    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
