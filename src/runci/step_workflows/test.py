from __future__ import annotations

from ..errors import ConfigurationError
from ..model import Step

FRAMEWORKS = {
    "cargo": "cargo test",
    "pytest": "pytest",
    "npm": "npm test",
}


def test_step(
    name: str = "test",
    framework: str = "cargo",
    args: str = "",
    *,
    cwd: str | None = None,
    timeout: float | None = None,
) -> Step:
    """Turn a typed test step into a runnable shell step."""
    try:
        base = FRAMEWORKS[framework]
    except KeyError:
        raise ConfigurationError(
            message=f"unknown test framework {framework!r}",
            step=name,
            details={"known": ", ".join(sorted(FRAMEWORKS))},
        ) from None
    return Step(name=name, run=f"{base} {args}".strip(), cwd=cwd, timeout=timeout)


# not a pytest test function
test_step.__test__ = False
