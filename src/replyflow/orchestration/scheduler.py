"""Graph Scheduler - dependency-respecting execution order.

Every node runs after all of its upstream nodes (the sources of edges
pointing at it).  The order is a depth-first post-order: nodes are
visited in declaration order, and each node's dependencies are visited
(in edge declaration order) before the node itself is emitted.  The same
definition always yields the same order.

Cycles are rejected rather than silently broken.  The walk uses an
explicit stack so arbitrarily deep chains do not hit the interpreter's
recursion limit.

Example::

    >>> order = execution_order(definition)
    ['filter-1', 'send-1']
"""

from __future__ import annotations

from collections.abc import Iterator

from replyflow.core.errors import GraphCycleError
from replyflow.orchestration.definition import WorkflowDefinition

_IN_PROGRESS = 1
_DONE = 2


def upstream_map(definition: WorkflowDefinition) -> dict[str, list[str]]:
    """Map each node id to the sources of its incoming edges."""
    upstream: dict[str, list[str]] = {node.id: [] for node in definition.nodes}
    for edge in definition.edges:
        upstream[edge.target].append(edge.source)
    return upstream


def execution_order(definition: WorkflowDefinition) -> list[str]:
    """Return node ids in an order where every edge source precedes its target.

    Raises:
        GraphCycleError: If the graph has a cycle; ``cycle`` lists the
            node ids along the edges, first id repeated at the end.
    """
    upstream = upstream_map(definition)
    state: dict[str, int] = {}
    order: list[str] = []

    for root in upstream:
        if root in state:
            continue

        state[root] = _IN_PROGRESS
        path = [root]
        stack: list[tuple[str, Iterator[str]]] = [(root, iter(upstream[root]))]

        while stack:
            node_id, pending = stack[-1]
            for dep in pending:
                seen = state.get(dep)
                if seen == _IN_PROGRESS:
                    # path runs downstream -> upstream; report it in edge direction
                    loop = path[path.index(dep):] + [dep]
                    raise GraphCycleError(list(reversed(loop)))
                if seen is None:
                    state[dep] = _IN_PROGRESS
                    path.append(dep)
                    stack.append((dep, iter(upstream[dep])))
                    break
            else:
                stack.pop()
                path.pop()
                state[node_id] = _DONE
                order.append(node_id)

    return order


__all__ = ["execution_order", "upstream_map"]
