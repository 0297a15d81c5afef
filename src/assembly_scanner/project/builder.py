"""Build toolchain invocation (``dotnet build``)."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from pathlib import Path
from typing import Protocol

from assembly_scanner.errors import ResolutionError
from assembly_scanner.obs.tracing import ScopeName, stage_span
from assembly_scanner.serde_msgspec import StructBaseStrict
from assembly_scanner.utils.env_utils import env_value

logger = logging.getLogger(__name__)

DEFAULT_DOTNET = "dotnet"


class BuildResult(StructBaseStrict, frozen=True):
    """Outcome of one build invocation."""

    success: bool
    output: str = ""
    errors: str = ""


class BuildInvoker(Protocol):
    """Callable that builds a project and reports its captured output."""

    async def __call__(
        self,
        descriptor_path: Path,
        configuration: str,
        cancel_event: asyncio.Event | None = None,
    ) -> BuildResult:
        """Build ``descriptor_path`` with ``configuration``."""
        ...


def build_command(executable: str, descriptor_path: Path, configuration: str) -> list[str]:
    """Return the argv used to build a project.

    Returns
    -------
    list[str]
        Command line for the build toolchain.
    """
    return [
        executable,
        "build",
        str(descriptor_path),
        "--configuration",
        configuration,
        "--verbosity",
        "quiet",
        "--nologo",
    ]


async def _terminate(process: asyncio.subprocess.Process) -> None:
    if process.returncode is not None:
        return
    with contextlib.suppress(ProcessLookupError):
        process.kill()
    await process.wait()


async def _communicate(
    process: asyncio.subprocess.Process,
    cancel_event: asyncio.Event | None,
) -> tuple[bytes, bytes]:
    if cancel_event is None:
        return await process.communicate()
    communicate = asyncio.ensure_future(process.communicate())
    cancelled = asyncio.ensure_future(cancel_event.wait())
    try:
        done, _pending = await asyncio.wait(
            {communicate, cancelled},
            return_when=asyncio.FIRST_COMPLETED,
        )
    except asyncio.CancelledError:
        communicate.cancel()
        raise
    finally:
        cancelled.cancel()
    if communicate in done:
        return communicate.result()
    communicate.cancel()
    raise asyncio.CancelledError


class DotnetBuilder:
    """Build invoker backed by the ``dotnet`` CLI.

    Cancelling the awaiting task, or setting ``cancel_event``, kills the build
    process and re-raises :class:`asyncio.CancelledError`.
    """

    def __init__(self, executable: str | None = None) -> None:
        self.executable = executable or env_value("ASSEMBLY_SCANNER_DOTNET") or DEFAULT_DOTNET

    async def __call__(
        self,
        descriptor_path: Path,
        configuration: str,
        cancel_event: asyncio.Event | None = None,
    ) -> BuildResult:
        """Run the build and capture its output streams.

        Returns
        -------
        BuildResult
            Exit status and captured stdout/stderr.

        Raises
        ------
        ResolutionError
            Raised when the build command cannot be started.
        """
        argv = build_command(self.executable, descriptor_path, configuration)
        with stage_span(
            "dotnet.build",
            stage="build",
            scope_name=ScopeName.BUILD,
            attributes={"project": descriptor_path, "configuration": configuration},
        ):
            try:
                process = await asyncio.create_subprocess_exec(
                    *argv,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
            except OSError as exc:
                msg = f"Failed to execute build command for {descriptor_path}"
                raise ResolutionError(msg) from exc
            try:
                stdout, stderr = await _communicate(process, cancel_event)
            except asyncio.CancelledError:
                logger.info("Build of %s cancelled", descriptor_path)
                await _terminate(process)
                raise
        result = BuildResult(
            success=process.returncode == 0,
            output=stdout.decode("utf-8", errors="replace"),
            errors=stderr.decode("utf-8", errors="replace"),
        )
        logger.info("Build of %s finished rc=%s", descriptor_path, process.returncode)
        return result


__all__ = ["BuildInvoker", "BuildResult", "DotnetBuilder", "build_command"]
