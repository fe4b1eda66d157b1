from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from playwright.sync_api import Error as PWError
from playwright.sync_api import sync_playwright

from . import config
from .config_validation import validate_runtime_config
from .logging_utils import _pipeline_event
from .utils import ensure_dirs, log_line


@dataclass
class HealthResult:
    ok: bool
    checks: dict[str, dict[str, Any]]


def _check_render_engine() -> dict[str, Any]:
    with sync_playwright() as pw:
        executable = pw.chromium.executable_path
    present = bool(executable) and Path(executable).is_file()
    return {"ok": present, "executable": executable}


def run_health_checks(entrypoint: str = "cli") -> HealthResult:
    checks: dict[str, dict[str, Any]] = {}

    try:
        validate_runtime_config(entrypoint or "cli")  # type: ignore[arg-type]
        checks["config"] = {"ok": True}
    except ValueError as exc:
        checks["config"] = {"ok": False, "error": str(exc)}

    try:
        ensure_dirs()
        writable = os.access(config.DATA_DIR, os.W_OK) and os.access(config.LOG_DIR, os.W_OK)
        checks["filesystem"] = {"ok": writable, "data_dir": str(config.DATA_DIR)}
    except OSError as exc:
        checks["filesystem"] = {"ok": False, "data_dir": str(config.DATA_DIR), "error": str(exc)}

    try:
        checks["render_engine"] = _check_render_engine()
    except PWError as exc:
        checks["render_engine"] = {"ok": False, "error": str(exc)}

    overall_ok = all(check.get("ok", False) for check in checks.values())

    _pipeline_event(
        "state" if overall_ok else "error",
        phase="health",
        context="healthcheck",
        ok=overall_ok,
        checks=checks,
    )

    return HealthResult(ok=overall_ok, checks=checks)


if __name__ == "__main__":  # pragma: no cover
    result = run_health_checks(entrypoint="cli")
    for name, info in result.checks.items():
        status = "OK" if info.get("ok") else "FAIL"
        log_line(f"[HEALTH] {name}: {status} {info}")
    raise SystemExit(0 if result.ok else 1)
