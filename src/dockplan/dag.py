# dag.py
from __future__ import annotations

import heapq
from collections import deque
from typing import Dict, List, Sequence, Set, Tuple, TypeVar

from .errors import (
    CyclicServiceError,
    CyclicStageError,
    DuplicateNameError,
    UnknownServiceReferenceError,
    UnknownStageReferenceError,
)
from .model import Service, Stage

Node = TypeVar("Node", Stage, Service)

WHITE, GRAY, BLACK = 0, 1, 2


def _errors_for(kind: str):
    if kind == "stage":
        return CyclicStageError, UnknownStageReferenceError
    return CyclicServiceError, UnknownServiceReferenceError


def build_dag(items: Sequence[Node], *, kind: str = "stage") -> Tuple[Dict[str, Set[str]], Dict[str, int]]:
    """
    Build a DAG from stage or service declarations.

    Requires:
      - item.name: str (unique)
      - item.depends_on(known): names that must come BEFORE this item

    Returns (adj, indeg) where adj maps dependency -> dependents.
    """
    names = [i.name for i in items]
    if len(set(names)) != len(names):
        dupes = sorted({n for n in names if names.count(n) > 1})
        raise DuplicateNameError(kind=kind, names=dupes)

    _cyclic, unknown = _errors_for(kind)
    name_set = set(names)
    adj: Dict[str, Set[str]] = {n: set() for n in names}
    indeg: Dict[str, int] = {n: 0 for n in names}

    for item in items:
        for dep in item.depends_on(name_set):
            if dep not in name_set:
                raise unknown(item.name, dep, names)
            # Edge dep -> item (dep must come before item)
            if item.name not in adj[dep]:
                adj[dep].add(item.name)
                indeg[item.name] += 1

    return adj, indeg


def topo_sort(items: Sequence[Node], *, kind: str = "stage") -> List[Node]:
    """
    Topologically sort declarations, dependencies first.

    A depth-first walk with white/gray/black marks finds cycles (meeting a
    gray node closes one). The order itself comes from a Kahn pass that
    always takes the earliest-declared ready item, so independent items
    keep their declaration order.
    """
    adj, indeg = build_dag(items, kind=kind)  # duplicate + unknown reference checks
    cyclic, _unknown = _errors_for(kind)

    by_name = {i.name: i for i in items}
    known = set(by_name)
    color: Dict[str, int] = {n: WHITE for n in by_name}

    for root in items:
        if color[root.name] != WHITE:
            continue
        # stack of (name, iterator over its deps); path mirrors the gray nodes
        color[root.name] = GRAY
        path: List[str] = [root.name]
        stack = [(root.name, iter(root.depends_on(known)))]
        while stack:
            name, deps = stack[-1]
            advanced = False
            for dep in deps:
                if color[dep] == GRAY:
                    cycle = path[path.index(dep):] + [dep]
                    raise cyclic(cycle)
                if color[dep] == WHITE:
                    color[dep] = GRAY
                    path.append(dep)
                    stack.append((dep, iter(by_name[dep].depends_on(known))))
                    advanced = True
                    break
            if not advanced:
                stack.pop()
                path.pop()
                color[name] = BLACK

    rank = {n: i for i, n in enumerate(by_name)}
    indeg = dict(indeg)
    heap = [(rank[n], n) for n, d in indeg.items() if d == 0]
    heapq.heapify(heap)
    order: List[Node] = []
    while heap:
        _, name = heapq.heappop(heap)
        order.append(by_name[name])
        for child in adj[name]:
            indeg[child] -= 1
            if indeg[child] == 0:
                heapq.heappush(heap, (rank[child], child))
    return order


def topo_levels(adj: Dict[str, Set[str]], indeg: Dict[str, int]) -> List[List[str]]:
    """
    Convert DAG into topological "levels".
    Members of a level have no dependency between them and can run in parallel.
    Within a level, names keep declaration order (the key order of indeg).
    """
    rank = {n: i for i, n in enumerate(indeg)}
    indeg = dict(indeg)  # copy (we mutate it)
    q = deque([n for n, d in indeg.items() if d == 0])

    levels: List[List[str]] = []
    processed = 0

    while q:
        level_size = len(q)
        level: List[str] = []
        nxt: List[str] = []

        for _ in range(level_size):
            node = q.popleft()
            level.append(node)
            processed += 1

            for child in adj.get(node, set()):
                indeg[child] -= 1
                if indeg[child] == 0:
                    nxt.append(child)

        q.extend(sorted(nxt, key=rank.__getitem__))
        levels.append(level)

    if processed != len(indeg):
        remaining = [n for n, d in indeg.items() if d > 0]
        raise ValueError(f"DAG has a cycle. Stuck nodes: {remaining}")

    return levels


def transitive_dependents(adj: Dict[str, Set[str]], roots: Sequence[str]) -> Set[str]:
    """Every node reachable from `roots` along dependency -> dependent edges."""
    seen: Set[str] = set()
    q = deque(roots)
    while q:
        node = q.popleft()
        for child in adj.get(node, set()):
            if child not in seen:
                seen.add(child)
                q.append(child)
    return seen
