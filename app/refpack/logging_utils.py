from __future__ import annotations

from typing import Any

from .utils import log_line


def _pipeline_event(label: str = "", *, phase: str | None = None, **fields: Any) -> None:
    """Log one ``[PIPELINE][LABEL] key=value, ...`` line.

    ``label`` names the component (``job``, ``fetch``, ``render``, ``state``,
    ``error``) and ``phase`` the step within it, such as ``batch``, ``replay``
    or ``render_retry``. A phase-only call uses the phase as the label;
    otherwise the phase is logged as a field. Fields are sorted by key so
    lines from concurrent workers stay greppable. Failures to log are ignored.
    """

    try:
        phase_label = label or (phase or "")
        if phase and label:
            fields.setdefault("phase", phase)
        payload = ", ".join(f"{k}={repr(v)}" for k, v in sorted(fields.items()))
        log_line(f"[PIPELINE][{phase_label.upper()}] {payload}")
    except Exception:
        # Never let logging break a batch.
        return


__all__ = ["_pipeline_event"]
