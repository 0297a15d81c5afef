"""Tracing helpers for assembly-scanner instrumentation."""

from __future__ import annotations

import logging
import time
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from enum import StrEnum
from importlib import metadata
from pathlib import Path

from opentelemetry import trace
from opentelemetry.trace import Span, Status, StatusCode
from opentelemetry.util.types import AttributeValue

logger = logging.getLogger(__name__)

_SLOW_THRESHOLD_S = 5.0


class ScopeName(StrEnum):
    """Canonical instrumentation scopes."""

    RESOLUTION = "assembly_scanner.resolution"
    BUILD = "assembly_scanner.build"
    METADATA = "assembly_scanner.metadata"


def _instrumentation_version() -> str:
    try:
        return metadata.version("assembly-scanner")
    except metadata.PackageNotFoundError:
        return "unknown"


def get_tracer(scope_name: str) -> trace.Tracer:
    """Return a tracer for the given instrumentation scope.

    Parameters
    ----------
    scope_name
        Instrumentation scope name.

    Returns
    -------
    opentelemetry.trace.Tracer
        Tracer bound to the requested scope.
    """
    return trace.get_tracer(scope_name, instrumenting_library_version=_instrumentation_version())


def normalize_attributes(attrs: Mapping[str, object] | None) -> dict[str, AttributeValue]:
    """Coerce raw attribute values into OpenTelemetry-compatible values.

    Parameters
    ----------
    attrs
        Raw attributes.

    Returns
    -------
    dict[str, AttributeValue]
        Attributes with ``None`` dropped and paths/sequences stringified.
    """
    normalized: dict[str, AttributeValue] = {}
    if not attrs:
        return normalized
    for key, value in attrs.items():
        if value is None:
            continue
        if isinstance(value, (str, bool, int, float)):
            normalized[key] = value
        elif isinstance(value, Path):
            normalized[key] = str(value)
        elif isinstance(value, Sequence):
            normalized[key] = [str(item) for item in value if item is not None]
        else:
            normalized[key] = str(value)
    return normalized


def record_exception(span: Span, exc: BaseException) -> None:
    """Record an exception on a span and mark it as error.

    Parameters
    ----------
    span
        Span to annotate.
    exc
        Exception to record.
    """
    span.record_exception(exc)
    span.set_status(Status(StatusCode.ERROR))


@contextmanager
def stage_span(
    name: str,
    *,
    stage: str,
    scope_name: str,
    attributes: Mapping[str, object] | None = None,
) -> Iterator[Span]:
    """Start a stage span that records duration and outcome.

    Parameters
    ----------
    name
        Span name.
    stage
        Stage name recorded as an attribute.
    scope_name
        Instrumentation scope name.
    attributes
        Optional span attributes.

    Yields
    ------
    Span
        The started span.
    """
    base_attrs: dict[str, object] = {"assembly_scanner.stage": stage}
    if attributes:
        base_attrs.update(attributes)
    tracer = get_tracer(scope_name)
    start = time.monotonic()
    status = "ok"
    with tracer.start_as_current_span(name, attributes=normalize_attributes(base_attrs)) as span:
        try:
            yield span
        except BaseException as exc:
            status = "error"
            record_exception(span, exc)
            raise
        finally:
            duration_s = time.monotonic() - start
            span.set_attributes(
                normalize_attributes(
                    {
                        "duration_s": duration_s,
                        "status": status,
                        "assembly_scanner.slow": duration_s >= _SLOW_THRESHOLD_S,
                    }
                )
            )
            logger.debug("stage %s finished status=%s duration_s=%.3f", stage, status, duration_s)


__all__ = ["ScopeName", "get_tracer", "normalize_attributes", "record_exception", "stage_span"]
