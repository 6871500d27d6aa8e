# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass(eq=False)
class RunciError(Exception):
    """
    Structured CI error with enough context for:
      - clean CLI output
      - API responses
      - debugging without full tracebacks
    """
    message: str
    job: Optional[str] = None
    step: Optional[str] = None
    details: dict = field(default_factory=dict)

    kind = "error"

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        if self.job:
            lines.append(f"job={self.job}")
        if self.step:
            lines.append(f"step={self.step}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


class ConfigurationError(RunciError):
    """The workflow declaration is malformed. Raised at load time."""
    kind = "configuration_error"


class EnvironmentSetupError(RunciError):
    """The job's isolated environment (workspace, checkout) could not be provisioned."""
    kind = "environment_setup_error"
