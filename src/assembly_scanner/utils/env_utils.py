"""Environment variable resolution for toolchain and scanner overrides."""

from __future__ import annotations

import logging
import os
from enum import Enum
from pathlib import Path
from typing import overload

_LOGGER = logging.getLogger(__name__)


def env_value(name: str) -> str | None:
    """Return stripped env var value, or None if empty/not set.

    Parameters
    ----------
    name
        Environment variable name.

    Returns
    -------
    str | None
        Stripped value or None.
    """
    raw = os.environ.get(name)
    if raw is None:
        return None
    stripped = raw.strip()
    return stripped if stripped else None


def env_path(name: str, *, must_exist: bool = False) -> Path | None:
    """Return a user-expanded path from an env var.

    Parameters
    ----------
    name
        Environment variable name.
    must_exist
        Return None unless the path names an existing directory.

    Returns
    -------
    Path | None
        Expanded path, or None when unset (or missing with ``must_exist``).
    """
    raw = env_value(name)
    if raw is None:
        return None
    path = Path(raw).expanduser()
    if must_exist and not path.is_dir():
        _LOGGER.debug("Ignoring %s=%r: not a directory", name, raw)
        return None
    return path


@overload
def env_enum[TEnum: Enum](name: str, enum_type: type[TEnum]) -> TEnum | None: ...


@overload
def env_enum[TEnum: Enum](name: str, enum_type: type[TEnum], *, default: TEnum) -> TEnum: ...


def env_enum[TEnum: Enum](
    name: str,
    enum_type: type[TEnum],
    *,
    default: TEnum | None = None,
) -> TEnum | None:
    """Parse an env var as an enum member, matching values or names case-insensitively.

    Invalid values are logged and replaced by ``default``.

    Returns
    -------
    TEnum | None
        Parsed enum member or default.
    """
    raw = env_value(name)
    if raw is None:
        return default
    wanted = raw.lower()
    for member in enum_type:
        if member.name.lower() == wanted:
            return member
        if isinstance(member.value, str) and member.value.lower() == wanted:
            return member
    _LOGGER.warning("Invalid %s for %s: %r", enum_type.__name__, name, raw)
    return default


__all__ = ["env_enum", "env_path", "env_value"]
