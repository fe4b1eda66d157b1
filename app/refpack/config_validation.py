from __future__ import annotations

from typing import Literal

from . import config
from .logging_utils import _pipeline_event
from .utils import log_line

Entrypoint = Literal["ui", "cli", "tests"]


def _raise_config_error(message: str, *, entrypoint: Entrypoint, error: str) -> None:
    _pipeline_event(
        "error",
        phase="config",
        context="runtime_validation",
        error=error,
        entrypoint=entrypoint,
    )
    log_line(f"[CONFIG] {message} (entrypoint={entrypoint})")
    raise ValueError(message)


def _clamp(field_name: str, minimum: int, *, entrypoint: Entrypoint) -> None:
    value = getattr(config, field_name)
    if value >= minimum:
        return
    _pipeline_event(
        "state",
        phase="config",
        context="runtime_validation",
        kind="config_adjustment",
        field=field_name,
        value=value,
        adjusted=minimum,
        entrypoint=entrypoint,
    )
    log_line(f"[CONFIG] {field_name} < {minimum}; clamping to {minimum} for safety.")
    setattr(config, field_name, minimum)


def validate_runtime_config(entrypoint: Entrypoint) -> None:
    """Validate runtime configuration for the given entrypoint.

    Raises ``ValueError`` when a blocking misconfiguration is detected.
    Concurrency knobs below 1 are clamped and logged instead.
    """

    for field_name in (
        "MAX_CONCURRENCY",
        "INTERACTIVE_MAX_CONCURRENCY",
        "DEFAULT_CONCURRENCY",
        "MAX_BATCH_SIZE",
    ):
        _clamp(field_name, 1, entrypoint=entrypoint)

    if config.INTERACTIVE_MAX_CONCURRENCY > config.MAX_CONCURRENCY:
        _pipeline_event(
            "state",
            phase="config",
            context="runtime_validation",
            kind="config_adjustment",
            field="INTERACTIVE_MAX_CONCURRENCY",
            value=config.INTERACTIVE_MAX_CONCURRENCY,
            adjusted=config.MAX_CONCURRENCY,
            entrypoint=entrypoint,
        )
        config.INTERACTIVE_MAX_CONCURRENCY = config.MAX_CONCURRENCY

    if config.RENDER_MAX_RETRIES < 0:
        _raise_config_error(
            "RENDER_MAX_RETRIES must be non-negative.",
            entrypoint=entrypoint,
            error="render_max_retries_invalid",
        )

    timeout_fields = [
        ("FETCH_TIMEOUT_SECONDS", config.FETCH_TIMEOUT_SECONDS),
        ("RENDER_DOM_TIMEOUT_SECONDS", config.RENDER_DOM_TIMEOUT_SECONDS),
        ("RENDER_LOAD_TIMEOUT_SECONDS", config.RENDER_LOAD_TIMEOUT_SECONDS),
        ("RENDER_CAPTURE_TIMEOUT_SECONDS", config.RENDER_CAPTURE_TIMEOUT_SECONDS),
        ("BATCH_TIMEOUT_SECONDS", config.BATCH_TIMEOUT_SECONDS),
        ("ARCHIVE_TIMEOUT_SECONDS", config.ARCHIVE_TIMEOUT_SECONDS),
        ("MAX_ARCHIVE_MB", config.MAX_ARCHIVE_MB),
    ]

    for field_name, value in timeout_fields:
        if value <= 0:
            _raise_config_error(
                f"{field_name} must be greater than zero.",
                entrypoint=entrypoint,
                error="invalid_timeout",
            )

    if not 0 <= config.ARCHIVE_COMPRESSION_LEVEL <= 9:
        _raise_config_error(
            "ARCHIVE_COMPRESSION_LEVEL must be between 0 and 9.",
            entrypoint=entrypoint,
            error="compression_level_invalid",
        )


__all__ = ["validate_runtime_config", "Entrypoint"]
