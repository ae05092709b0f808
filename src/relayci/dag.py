# dag.py
from __future__ import annotations

from collections import deque
from typing import Dict, Iterable, List, Set, Tuple

from .errors import DependencyCycleError, SchemaError
from .model import Job


def build_dag(jobs: Iterable[Job]) -> Tuple[Dict[str, Set[str]], Dict[str, int]]:
    """
    Build a DAG from Job objects.

    Requires:
      - job.name: str (unique)
      - job.needs: iterable[str] (names of jobs that must run BEFORE this job)

    Returns (adj, indeg) where adj maps a job to the jobs waiting on it.
    All violations are collected before raising SchemaError.
    """
    jobs = list(jobs)
    names = [j.name for j in jobs]
    violations: List[str] = []

    if len(set(names)) != len(names):
        dupes = sorted({n for n in names if names.count(n) > 1})
        violations.append(f"duplicate job names: {dupes}")

    name_set = set(names)
    adj: Dict[str, Set[str]] = {n: set() for n in names}
    indeg: Dict[str, int] = {n: 0 for n in names}

    for job in jobs:
        for need in job.needs:
            if need not in name_set:
                violations.append(
                    f"job '{job.name}' depends on unknown job '{need}' "
                    f"(known jobs: {sorted(name_set)})"
                )
                continue
            # Edge need -> job.name (need must run before job)
            if job.name not in adj[need]:
                adj[need].add(job.name)
                indeg[job.name] += 1

    if violations:
        raise SchemaError("Invalid job graph", violations)

    return adj, indeg


def topo_levels(adj: Dict[str, Set[str]], indeg: Dict[str, int]) -> List[List[str]]:
    """
    Convert DAG into topological "levels" (stages).
    Each stage only depends on earlier stages, so its jobs can run in parallel.
    """
    indeg = dict(indeg)  # copy (we mutate it)
    q = deque(n for n, d in indeg.items() if d == 0)

    levels: List[List[str]] = []
    processed = 0

    while q:
        level_size = len(q)
        level: List[str] = []

        for _ in range(level_size):
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
        raise DependencyCycleError(
            "Job dependencies contain a cycle",
            [f"jobs stuck in a cycle: {remaining}"],
            nodes=remaining,
        )

    return levels


def validate_graph(jobs: Iterable[Job]) -> List[List[str]]:
    """Full graph check: unknown deps, duplicates and cycles. Returns the stages."""
    adj, indeg = build_dag(jobs)
    return topo_levels(adj, indeg)
