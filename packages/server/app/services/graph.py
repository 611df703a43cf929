"""
Pure graph algorithms over dependency edge lists.

Edges are (task_id, depends_on_task_id) pairs keyed by opaque ids; adjacency
maps are rebuilt for each query rather than kept between requests. Following
an edge means walking from a task to one of its prerequisites.
"""

from __future__ import annotations

from collections import defaultdict, deque
from typing import Hashable, Iterable, Optional, Protocol, TypeVar, Union

N = TypeVar("N", bound=Hashable)


class EdgeLike(Protocol):
    task_id: Hashable
    depends_on_task_id: Hashable


Pair = tuple[Hashable, Hashable]


def _pair(edge: Union[EdgeLike, Pair]) -> Pair:
    if isinstance(edge, tuple):
        return edge
    return edge.task_id, edge.depends_on_task_id


def build_adjacency(
    edges: Iterable[Union[EdgeLike, Pair]],
    exclude: Optional[Pair] = None,
) -> dict[Hashable, list[Hashable]]:
    """task_id -> [depends_on_task_id], optionally leaving out one edge."""
    adj: dict[Hashable, list[Hashable]] = defaultdict(list)
    for edge in edges:
        pair = _pair(edge)
        if exclude is not None and pair == exclude:
            continue
        adj[pair[0]].append(pair[1])
    return adj


def find_path(adj: dict[N, list[N]], from_id: N, to_id: N) -> list[N]:
    """BFS from from_id following prerequisite edges. Returns the path or []."""
    if from_id == to_id:
        return [from_id]

    parents: dict[N, N] = {}
    visited: set[N] = {from_id}
    queue: deque[N] = deque([from_id])
    while queue:
        current = queue.popleft()
        for nxt in adj.get(current, []):
            if nxt in visited:
                continue
            visited.add(nxt)
            parents[nxt] = current
            if nxt == to_id:
                path = [nxt]
                while path[-1] != from_id:
                    path.append(parents[path[-1]])
                path.reverse()
                return path
            queue.append(nxt)
    return []


def would_create_cycle(
    edges: Iterable[Union[EdgeLike, Pair]],
    task_id: Hashable,
    depends_on_task_id: Hashable,
) -> list[Hashable]:
    """
    Check a candidate edge task_id -> depends_on_task_id.

    Circular iff depends_on_task_id already (transitively) depends on task_id,
    i.e. there is a path depends_on_task_id -> ... -> task_id. Returns that
    path, or [] when the edge is safe. The candidate itself is ignored if
    present, so the same check verifies an edge after it was written.
    """
    adj = build_adjacency(edges, exclude=(task_id, depends_on_task_id))
    return find_path(adj, depends_on_task_id, task_id)


def dependency_depth(adj: dict[N, list[N]], task_id: N) -> int:
    """Length of the longest prerequisite chain below task_id (0 for a leaf)."""
    depths: dict[N, int] = {}
    on_stack: set[N] = set()
    # iterative post-order so long chains do not hit the recursion limit
    stack: list[tuple[N, bool]] = [(task_id, False)]
    while stack:
        node, expanded = stack.pop()
        if expanded:
            on_stack.discard(node)
            children = [depths[c] for c in adj.get(node, []) if c in depths]
            depths[node] = 1 + max(children) if children else 0
            continue
        if node in depths or node in on_stack:
            continue
        on_stack.add(node)
        stack.append((node, True))
        for child in adj.get(node, []):
            if child not in depths and child not in on_stack:
                stack.append((child, False))
    return depths.get(task_id, 0)


def find_all_cycles(edges: Iterable[Union[EdgeLike, Pair]]) -> list[list[Hashable]]:
    """
    DFS over every component. Each cycle is reported once as
    [a, b, ..., a], starting from the node where the back edge was found.
    """
    adj = build_adjacency(edges)
    visited: set[Hashable] = set()
    cycles: list[list[Hashable]] = []

    for root in list(adj):
        if root in visited:
            continue
        path: list[Hashable] = []
        on_path: set[Hashable] = set()
        stack: list[tuple[Hashable, int]] = [(root, 0)]
        while stack:
            node, idx = stack.pop()
            if idx == 0:
                visited.add(node)
                path.append(node)
                on_path.add(node)
            children = adj.get(node, [])
            if idx < len(children):
                stack.append((node, idx + 1))
                child = children[idx]
                if child in on_path:
                    start = path.index(child)
                    cycles.append(path[start:] + [child])
                elif child not in visited:
                    stack.append((child, 0))
            else:
                path.pop()
                on_path.discard(node)
    return cycles
