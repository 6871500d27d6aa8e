# actions.py
from __future__ import annotations

import shutil
import subprocess
from pathlib import Path
from typing import Callable, Dict

from .errors import ConfigurationError, EnvironmentSetupError
from .git_facts import git
from .model import Environment, Step

# An action materializes something into the job's environment and returns
# a log of what it did. Failures raise EnvironmentSetupError.
ActionHandler = Callable[[Step, Environment], str]

ACTIONS: Dict[str, ActionHandler] = {}


def register_action(name: str, handler: ActionHandler) -> None:
    ACTIONS[name] = handler


def resolve_action(step: Step) -> ActionHandler:
    """
    Resolve a step's "owner/name@version" reference to a registered handler.

    The version is accepted but not interpreted: built-in actions have a
    single implementation.
    """
    try:
        return ACTIONS[step.action_name]
    except KeyError:
        raise ConfigurationError(
            message=f"unknown action {step.uses!r}",
            step=step.name,
            details={"known": ", ".join(sorted(ACTIONS)) or "(none)"},
        ) from None


# ---------------------------------------------------------------------
# actions/checkout
# ---------------------------------------------------------------------

def _target(step: Step, env: Environment) -> Path:
    sub = step.with_args.get("path")
    base = env.workdir.resolve()
    dest = (base / sub).resolve() if sub else base
    if base not in (dest, *dest.parents):
        raise EnvironmentSetupError(
            message=f"checkout path escapes the workspace: {sub}",
            job=env.job,
            step=step.name,
        )
    return dest


def checkout(step: Step, env: Environment) -> str:
    """
    Materialize the event's source snapshot into the workspace.

    - repo_url: git clone, then check out the event sha (or `with: ref`)
    - source:   a git repo is cloned the same way; a plain directory is copied

    The source snapshot itself is only ever read.
    """
    event = env.event
    ref = step.with_args.get("ref") or event.sha
    dest = _target(step, env)
    dest.mkdir(parents=True, exist_ok=True)

    try:
        if event.repo_url:
            git.clone(event.repo_url, dest)
            if ref:
                git.checkout(ref, dest)
            return f"cloned {event.repo_url} at {ref or 'default branch'} into {dest}"

        if event.source:
            src = Path(event.source).expanduser()
            if not src.is_dir():
                raise EnvironmentSetupError(
                    message=f"source snapshot not found: {src}",
                    job=env.job,
                    step=step.name,
                )
            if ref and git.is_repo(src):
                git.clone(str(src.resolve()), dest)
                git.checkout(ref, dest)
                return f"cloned {src} at {ref} into {dest}"
            shutil.copytree(src, dest, symlinks=True, dirs_exist_ok=True)
            return f"copied {src} into {dest}"

    except subprocess.CalledProcessError as e:
        raise EnvironmentSetupError(
            message=f"git {e.cmd[1] if len(e.cmd) > 1 else ''} failed (exit={e.returncode})",
            job=env.job,
            step=step.name,
            details={"stderr": (e.stderr or "").strip()[-2000:]},
        ) from e
    except FileNotFoundError as e:
        raise EnvironmentSetupError(
            message="git command not found. Please install Git.",
            job=env.job,
            step=step.name,
        ) from e
    except OSError as e:
        raise EnvironmentSetupError(
            message=f"could not copy source: {e}",
            job=env.job,
            step=step.name,
        ) from e

    raise EnvironmentSetupError(
        message="event carries no source to check out (need repo_url or source)",
        job=env.job,
        step=step.name,
    )


register_action("actions/checkout", checkout)
