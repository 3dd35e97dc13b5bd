"""Run settings.

Precedence, lowest first:
1) built-in defaults
2) [tool.catsales] in the working directory's pyproject.toml
3) CATSALES_* environment variables
4) explicit overrides (CLI options)
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Mapping

from .aggregate import check_numeric, check_on_invalid

ENGINE_CHOICES = ("python", "duckdb")

ENV_PREFIX = "CATSALES_"


@dataclass(frozen=True)
class Settings:
    engine: str = "python"
    on_invalid: str = "fail"
    numeric: str = "native"
    table: str = "sales"

    def validate(self) -> Settings:
        if self.engine not in ENGINE_CHOICES:
            raise ValueError(
                f"engine must be one of {', '.join(ENGINE_CHOICES)}; "
                f"got {self.engine!r}"
            )
        check_on_invalid(self.on_invalid)
        check_numeric(self.numeric)
        if not self.table:
            raise ValueError("table must be a non-empty name")
        return self


_FIELD_NAMES = tuple(f.name for f in fields(Settings))


def read_pyproject_settings(directory: Path) -> dict[str, Any]:
    """Return the [tool.catsales] table of *directory*/pyproject.toml, if any."""
    pyproject_path = directory / "pyproject.toml"
    if not pyproject_path.exists():
        return {}
    try:
        data = tomllib.loads(pyproject_path.read_text())
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"Invalid TOML in {pyproject_path}: {e}") from e
    section = data.get("tool", {}).get("catsales", {})
    if not isinstance(section, dict):
        raise ValueError(f"[tool.catsales] in {pyproject_path} must be a table")
    unknown = sorted(set(section) - set(_FIELD_NAMES))
    if unknown:
        raise ValueError(
            f"Unknown [tool.catsales] key(s) in {pyproject_path}: {', '.join(unknown)}"
        )
    return {k: str(v) for k, v in section.items()}


def read_env_settings(environ: Mapping[str, str] | None = None) -> dict[str, str]:
    """Return settings from CATSALES_<FIELD> environment variables."""
    environ = os.environ if environ is None else environ
    out: dict[str, str] = {}
    for name in _FIELD_NAMES:
        value = environ.get(ENV_PREFIX + name.upper())
        if value:
            out[name] = value
    return out


def load_settings(
    directory: Path | None = None,
    environ: Mapping[str, str] | None = None,
    **overrides: str | None,
) -> Settings:
    """Resolve settings from pyproject, environment and *overrides*.

    ``None`` overrides are ignored so CLI options can be passed straight
    through.
    """
    directory = Path.cwd() if directory is None else directory
    settings = Settings()
    settings = replace(settings, **read_pyproject_settings(directory))
    settings = replace(settings, **read_env_settings(environ))
    explicit = {k: v for k, v in overrides.items() if v is not None}
    unknown = sorted(set(explicit) - set(_FIELD_NAMES))
    if unknown:
        raise TypeError(f"Unknown setting(s): {', '.join(unknown)}")
    settings = replace(settings, **explicit)
    return settings.validate()
