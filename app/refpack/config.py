"""Configuration constants for the reference archiver."""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

DATA_DIR: Path = Path(os.getenv("REFPACK_DATA_DIR", "/app/data"))
LOG_DIR: Path = DATA_DIR / "logs"
LOG_FILE: Path = LOG_DIR / "latest.log"
OUTPUT_DIR: Path = DATA_DIR / "archives"

DOCUMENT_EXTENSION: str = ".pdf"
ZIP_NAME: str = "references.zip"


def _parse_timeout_seconds(env_var: str, default: int, *, minimum: int = 1) -> int:
    """Parse a timeout value in seconds from the environment with bounds."""

    try:
        value = int(os.getenv(env_var, str(default)))
    except ValueError:
        return default
    return max(minimum, value)


def _env_flag(env_var: str, default: str) -> bool:
    return os.getenv(env_var, default).strip().lower() not in {"0", "false", "no"}


# Direct document fetch
FETCH_TIMEOUT_SECONDS: int = _parse_timeout_seconds("REFPACK_FETCH_TIMEOUT_SECONDS", 90)

# Render timeouts (seconds). Navigation is tiered: domcontentloaded first,
# then the full load event, then proceed with whatever has rendered.
RENDER_DOM_TIMEOUT_SECONDS: int = _parse_timeout_seconds("REFPACK_DOM_TIMEOUT_SECONDS", 30)
RENDER_LOAD_TIMEOUT_SECONDS: int = _parse_timeout_seconds("REFPACK_LOAD_TIMEOUT_SECONDS", 45)
RENDER_READY_STATE_TIMEOUT_SECONDS: int = _parse_timeout_seconds(
    "REFPACK_READY_STATE_TIMEOUT_SECONDS", 5
)
RENDER_CAPTURE_TIMEOUT_SECONDS: int = _parse_timeout_seconds(
    "REFPACK_CAPTURE_TIMEOUT_SECONDS", 60
)
RENDER_DOM_SETTLE_SECONDS: float = float(os.getenv("REFPACK_DOM_SETTLE_SECONDS", "3.0"))
RENDER_LOAD_SETTLE_SECONDS: float = float(os.getenv("REFPACK_LOAD_SETTLE_SECONDS", "2.0"))

# Render retries: attempts = 1 + RENDER_MAX_RETRIES, linear backoff.
RENDER_MAX_RETRIES: int = int(os.getenv("REFPACK_RENDER_MAX_RETRIES", "2"))
RENDER_BACKOFF_SECONDS: float = float(os.getenv("REFPACK_RENDER_BACKOFF_SECONDS", "1.0"))

# Chromium inside containers usually cannot use its own sandbox.
RENDER_DISABLE_SANDBOX: bool = _env_flag("REFPACK_RENDER_DISABLE_SANDBOX", "1")
RENDER_VIEWPORT_WIDTH: int = int(os.getenv("REFPACK_VIEWPORT_WIDTH", "1200"))
RENDER_VIEWPORT_HEIGHT: int = int(os.getenv("REFPACK_VIEWPORT_HEIGHT", "800"))
RENDER_PAGE_FORMAT: str = os.getenv("REFPACK_PAGE_FORMAT", "A4")

# Concurrency controls
MAX_CONCURRENCY: int = int(os.getenv("REFPACK_MAX_CONCURRENCY", "20"))
INTERACTIVE_MAX_CONCURRENCY: int = int(os.getenv("REFPACK_INTERACTIVE_MAX_CONCURRENCY", "4"))
DEFAULT_CONCURRENCY: int = int(os.getenv("REFPACK_DEFAULT_CONCURRENCY", "10"))
# Must stay below the host's maximum request duration.
BATCH_TIMEOUT_SECONDS: int = _parse_timeout_seconds("REFPACK_BATCH_TIMEOUT_SECONDS", 280)
REPLAY_TRANSIENT_FAILURES: bool = _env_flag("REFPACK_REPLAY_TRANSIENT", "1")
REPLAY_DELAY_SECONDS: float = float(os.getenv("REFPACK_REPLAY_DELAY_SECONDS", "1.0"))

# Archive ceilings
MAX_BATCH_SIZE: int = int(os.getenv("REFPACK_MAX_BATCH_SIZE", "250"))
MAX_ARCHIVE_MB: int = int(os.getenv("REFPACK_MAX_ARCHIVE_MB", "500"))
ARCHIVE_TIMEOUT_SECONDS: int = _parse_timeout_seconds("REFPACK_ARCHIVE_TIMEOUT_SECONDS", 240)
ARCHIVE_COMPRESSION_LEVEL: int = int(os.getenv("REFPACK_ARCHIVE_COMPRESSION_LEVEL", "6"))

USER_AGENT: str = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

COMMON_HEADERS: dict[str, str] = {
    "User-Agent": USER_AGENT,
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Connection": "keep-alive",
    "Upgrade-Insecure-Requests": "1",
}

RENDER_LAUNCH_ARGS: tuple[str, ...] = (
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--no-first-run",
    "--disable-gpu",
    "--disable-http2",
    "--disable-blink-features=AutomationControlled",
    "--disable-features=IsolateOrigins,site-per-process,TranslateUI",
    "--disable-extensions",
    "--disable-default-apps",
    "--disable-sync",
    "--mute-audio",
)
SANDBOX_LAUNCH_ARGS: tuple[str, ...] = ("--no-sandbox", "--disable-setuid-sandbox")


@dataclass(frozen=True)
class PipelineSettings:
    """Snapshot of the tunables one batch runs with.

    Built from the module constants so environment overrides (and test
    monkeypatching of this module) apply, then passed explicitly through the
    executor, renderer, fetcher and archive assembler.
    """

    fetch_timeout_seconds: int
    dom_timeout_seconds: int
    load_timeout_seconds: int
    ready_state_timeout_seconds: int
    capture_timeout_seconds: int
    dom_settle_seconds: float
    load_settle_seconds: float
    render_max_retries: int
    render_backoff_seconds: float
    disable_sandbox: bool
    viewport_width: int
    viewport_height: int
    page_format: str
    max_concurrency: int
    interactive_max_concurrency: int
    default_concurrency: int
    batch_timeout_seconds: int
    replay_transient_failures: bool
    replay_delay_seconds: float
    max_batch_size: int
    max_archive_bytes: int
    archive_timeout_seconds: int
    archive_compression_level: int
    user_agent: str = USER_AGENT

    @classmethod
    def from_config(cls) -> "PipelineSettings":
        return cls(
            fetch_timeout_seconds=FETCH_TIMEOUT_SECONDS,
            dom_timeout_seconds=RENDER_DOM_TIMEOUT_SECONDS,
            load_timeout_seconds=RENDER_LOAD_TIMEOUT_SECONDS,
            ready_state_timeout_seconds=RENDER_READY_STATE_TIMEOUT_SECONDS,
            capture_timeout_seconds=RENDER_CAPTURE_TIMEOUT_SECONDS,
            dom_settle_seconds=RENDER_DOM_SETTLE_SECONDS,
            load_settle_seconds=RENDER_LOAD_SETTLE_SECONDS,
            render_max_retries=RENDER_MAX_RETRIES,
            render_backoff_seconds=RENDER_BACKOFF_SECONDS,
            disable_sandbox=RENDER_DISABLE_SANDBOX,
            viewport_width=RENDER_VIEWPORT_WIDTH,
            viewport_height=RENDER_VIEWPORT_HEIGHT,
            page_format=RENDER_PAGE_FORMAT,
            max_concurrency=MAX_CONCURRENCY,
            interactive_max_concurrency=INTERACTIVE_MAX_CONCURRENCY,
            default_concurrency=DEFAULT_CONCURRENCY,
            batch_timeout_seconds=BATCH_TIMEOUT_SECONDS,
            replay_transient_failures=REPLAY_TRANSIENT_FAILURES,
            replay_delay_seconds=REPLAY_DELAY_SECONDS,
            max_batch_size=MAX_BATCH_SIZE,
            max_archive_bytes=MAX_ARCHIVE_MB * 1024 * 1024,
            archive_timeout_seconds=ARCHIVE_TIMEOUT_SECONDS,
            archive_compression_level=ARCHIVE_COMPRESSION_LEVEL,
            user_agent=USER_AGENT,
        )

    @property
    def render_max_attempts(self) -> int:
        return 1 + max(0, self.render_max_retries)

    def concurrency_ceiling(self, entrypoint: str) -> int:
        """Return the concurrency ceiling for a caller.

        Server-side batches may use the wide ceiling; interactive callers (the
        CLI) get the narrow one.
        """

        if entrypoint == "cli":
            return max(1, self.interactive_max_concurrency)
        return max(1, self.max_concurrency)

    def launch_args(self) -> list[str]:
        args = list(RENDER_LAUNCH_ARGS)
        if self.disable_sandbox:
            args = list(SANDBOX_LAUNCH_ARGS) + args
        return args


def load_settings() -> PipelineSettings:
    """Return settings built from the current configuration values."""

    return PipelineSettings.from_config()
