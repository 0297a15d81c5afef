"""Observability helpers (tracing)."""

from __future__ import annotations

from assembly_scanner.obs.tracing import ScopeName, stage_span

__all__ = ["ScopeName", "stage_span"]
