# settings.py
from __future__ import annotations

import os
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, Mapping, Optional

from .errors import ConfigurationError


class ColorMode(str, Enum):
    ALWAYS = "always"
    NEVER = "never"
    AUTO = "auto"


@dataclass(frozen=True)
class OutputSettings:
    """
    Process-wide diagnostic output configuration.

    Applied uniformly to every job; it never changes pass/fail.
    """
    color: ColorMode = ColorMode.AUTO
    verbose: bool = False

    def step_env(self) -> Dict[str, str]:
        """Environment variables that carry the colour choice into step processes."""
        if self.color is ColorMode.ALWAYS:
            return {"FORCE_COLOR": "1", "CLICOLOR_FORCE": "1"}
        if self.color is ColorMode.NEVER:
            return {"NO_COLOR": "1"}
        return {}

    def use_color(self, isatty: bool) -> bool:
        if self.color is ColorMode.AUTO:
            return isatty
        return self.color is ColorMode.ALWAYS


@dataclass(frozen=True)
class Settings:
    output: OutputSettings = OutputSettings()
    max_workers: Optional[int] = None
    step_timeout: Optional[float] = None
    job_timeout: Optional[float] = None
    workspace_root: Optional[str] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> Settings:
        env = os.environ if environ is None else environ
        return cls(
            output=OutputSettings(
                color=_color(env.get("RUNCI_TERM_COLOR", "auto")),
                verbose=env.get("RUNCI_VERBOSE", "0").lower() in ("1", "true", "yes"),
            ),
            max_workers=_positive(env, "RUNCI_MAX_WORKERS", int),
            step_timeout=_positive(env, "RUNCI_STEP_TIMEOUT", float),
            job_timeout=_positive(env, "RUNCI_JOB_TIMEOUT", float),
            workspace_root=env.get("RUNCI_WORKSPACE_ROOT") or None,
        )

    def with_overrides(self, **kwargs) -> Settings:
        """Return a copy with every non-None keyword applied (CLI flags win over env)."""
        output = self.output
        color = kwargs.pop("color", None)
        verbose = kwargs.pop("verbose", None)
        if color is not None:
            output = replace(output, color=_color(color))
        if verbose:
            output = replace(output, verbose=True)
        changes = {k: v for k, v in kwargs.items() if v is not None}
        return replace(self, output=output, **changes)


def _color(value) -> ColorMode:
    try:
        return ColorMode(str(value).lower())
    except ValueError:
        raise ConfigurationError(
            message=f"invalid colour mode {value!r}",
            details={"allowed": "always, never, auto"},
        ) from None


def _positive(env: Mapping[str, str], key: str, conv):
    raw = env.get(key)
    if raw in (None, ""):
        return None
    try:
        value = conv(raw)
    except ValueError:
        raise ConfigurationError(message=f"{key} must be a number, got {raw!r}") from None
    if value <= 0:
        raise ConfigurationError(message=f"{key} must be positive, got {raw!r}")
    return value
