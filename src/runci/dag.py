# dag.py
from __future__ import annotations

from collections import deque
from typing import Dict, Iterable, List, Set, Tuple

from .errors import ConfigurationError
from .model import Job


def build_dag(jobs: Iterable[Job]) -> Tuple[Dict[str, Set[str]], Dict[str, int]]:
    """
    Build a DAG from Job objects.

    Returns (adj, indeg) where adj maps a job to the jobs that need it and
    indeg counts each job's unmet `needs`.
    """
    jobs = list(jobs)
    names = [j.name for j in jobs]
    if len(set(names)) != len(names):
        dupes = sorted({n for n in names if names.count(n) > 1})
        raise ConfigurationError(message=f"duplicate job names: {dupes}")

    name_set = set(names)
    adj: Dict[str, Set[str]] = {n: set() for n in names}
    indeg: Dict[str, int] = {n: 0 for n in names}

    for job in jobs:
        for need in job.needs:
            if need not in name_set:
                raise ConfigurationError(
                    message=f"job needs missing job '{need}'",
                    job=job.name,
                    details={"known": ", ".join(sorted(name_set))},
                )
            if need == job.name:
                raise ConfigurationError(message="job needs itself", job=job.name)
            # edge need -> job (need must finish before job)
            if job.name not in adj[need]:
                adj[need].add(job.name)
                indeg[job.name] += 1

    return adj, indeg


def topo_levels(adj: Dict[str, Set[str]], indeg: Dict[str, int]) -> List[List[str]]:
    """
    Convert the DAG into topological "levels" (stages).
    Each stage can run in parallel.
    """
    indeg = dict(indeg)  # copy (we mutate it)
    q = deque(sorted(n for n, d in indeg.items() if d == 0))

    levels: List[List[str]] = []
    processed = 0

    while q:
        level: List[str] = []
        for _ in range(len(q)):
            node = q.popleft()
            level.append(node)
            processed += 1
            for child in sorted(adj.get(node, set())):
                indeg[child] -= 1
                if indeg[child] == 0:
                    q.append(child)
        levels.append(level)

    if processed != len(indeg):
        remaining = sorted(n for n, d in indeg.items() if d > 0)
        raise ConfigurationError(message=f"job dependencies form a cycle: {remaining}")

    return levels
