from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import pytest

from app.refpack import config, utils
from app.refpack.config import PipelineSettings


@pytest.fixture(autouse=True)
def temp_data_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    data_dir = tmp_path / "data"
    monkeypatch.setattr(config, "DATA_DIR", data_dir)
    monkeypatch.setattr(config, "LOG_DIR", data_dir / "logs")
    monkeypatch.setattr(config, "LOG_FILE", data_dir / "logs" / "latest.log")
    monkeypatch.setattr(config, "OUTPUT_DIR", data_dir / "archives")
    monkeypatch.setattr(utils, "_LOGGER_INITIALISED", False)
    return data_dir


@pytest.fixture
def settings() -> PipelineSettings:
    """Settings with no waiting, suitable for fakes."""

    return replace(
        PipelineSettings.from_config(),
        dom_settle_seconds=0.0,
        load_settle_seconds=0.0,
        render_max_retries=2,
        render_backoff_seconds=0.0,
        replay_delay_seconds=0.0,
        max_concurrency=20,
        interactive_max_concurrency=4,
        default_concurrency=10,
        batch_timeout_seconds=280,
        max_batch_size=250,
        max_archive_bytes=500 * 1024 * 1024,
        archive_timeout_seconds=240,
        archive_compression_level=6,
    )

