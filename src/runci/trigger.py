# trigger.py
from __future__ import annotations

import re
from functools import lru_cache

from .model import Condition, Event

_WILDCARDS = re.compile(r"(\*\*|\*|\?)")
_TRANSLATE = {"**": ".*", "*": "[^/]*", "?": "[^/]"}


@lru_cache(maxsize=256)
def _branch_regex(pattern: str) -> re.Pattern:
    """
    Branch filter syntax: `*` and `?` stay within one path segment,
    `**` also crosses `/`. So `feature/*` matches `feature/a` but not
    `feature/a/b`; `feature/**` matches both.
    """
    parts = _WILDCARDS.split(pattern)
    return re.compile("".join(_TRANSLATE.get(p, re.escape(p)) for p in parts))


def _matches_any(branch: str, patterns) -> bool:
    return any(branch == p or _branch_regex(p).fullmatch(branch) for p in patterns)


def admit(event: Event, condition: Condition) -> bool:
    """
    True iff the event's kind is accepted AND its target branch matches one
    of the declared patterns. Unmatched or malformed events are ignored
    (False), never reported as errors.
    """
    if not isinstance(event, Event) or not isinstance(condition, Condition):
        return False
    if not isinstance(event.kind, str) or event.kind not in condition.events:
        return False
    branch = event.target_branch
    if not isinstance(branch, str) or not branch:
        return False
    # no branch filter -> every branch
    if not condition.branches:
        return True
    return _matches_any(branch, condition.branches)
