"""Pure helpers over flat nested-set rows.

Rows are any objects exposing ``id``, ``parent_id``, ``left``, ``right`` and
(where needed) ``level`` or ``product_count``. Nothing here touches the
database; the category service feeds these helpers with loaded rows.
"""
from collections import Counter
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence


@dataclass(frozen=True)
class NodePosition:
    left: int
    right: int
    level: int
    parent_id: Optional[str]


def build_forest(nodes: Sequence) -> list:
    """Link flat nodes into a forest in two passes.

    ``nodes`` must expose ``id``, ``parent_id`` and a ``children`` list and be
    ordered by ``left`` so children keep document order. Nodes whose parent
    is not part of ``nodes`` are dropped along with their subtree.
    """
    by_id = {node.id: node for node in nodes}

    roots = []
    for node in nodes:
        if node.parent_id is None:
            roots.append(node)
            continue
        parent = by_id.get(node.parent_id)
        if parent is not None:
            parent.children.append(node)
    return roots


def interval_violations(rows: Iterable) -> List[str]:
    """Return human readable violations of the nested-set invariant."""
    ordered = sorted(rows, key=lambda row: (row.left, row.right))
    problems: List[str] = []

    endpoints = Counter()
    for row in ordered:
        endpoints[row.left] += 1
        endpoints[row.right] += 1
    for value, count in sorted(endpoints.items()):
        if count > 1:
            problems.append(f"endpoint {value} used {count} times")

    stack = []
    for row in ordered:
        if row.left >= row.right:
            problems.append(f"{row.id}: left {row.left} is not below right {row.right}")
            continue
        while stack and stack[-1].right < row.left:
            stack.pop()
        if stack and row.right >= stack[-1].right:
            problems.append(f"{row.id}: interval [{row.left}, {row.right}] overlaps {stack[-1].id}")
            continue

        expected_parent = stack[-1].id if stack else None
        if row.parent_id != expected_parent:
            problems.append(f"{row.id}: parent_id {row.parent_id} but enclosed by {expected_parent}")
        if row.level != len(stack):
            problems.append(f"{row.id}: level {row.level} but depth {len(stack)}")
        stack.append(row)
    return problems


def renumber(rows: Sequence) -> Dict[str, NodePosition]:
    """Compute a gap-free numbering from the parent_id adjacency.

    Siblings keep their current ``left`` order. Rows whose parent is missing,
    and rows caught in a parent cycle, become roots.
    """
    ordered = sorted(rows, key=lambda row: row.left)
    ids = {row.id for row in ordered}
    children: Dict[Optional[str], list] = {}
    for row in ordered:
        parent_id = row.parent_id if row.parent_id in ids else None
        children.setdefault(parent_id, []).append(row)

    positions: Dict[str, NodePosition] = {}
    lefts: Dict[str, int] = {}
    counter = 0

    def walk(root) -> None:
        nonlocal counter
        stack = [(root, 0, None, False)]
        while stack:
            node, level, parent_id, closing = stack.pop()
            if closing:
                counter += 1
                positions[node.id] = NodePosition(lefts[node.id], counter, level, parent_id)
                continue
            if node.id in lefts:
                continue
            counter += 1
            lefts[node.id] = counter
            stack.append((node, level, parent_id, True))
            for child in reversed(children.get(node.id, [])):
                if child.id not in lefts:
                    stack.append((child, level + 1, node.id, False))

    for root in children.get(None, []):
        walk(root)
    for row in ordered:
        if row.id not in lefts:
            walk(row)
    return positions


def accumulate_totals(rows: Sequence) -> Dict[str, int]:
    """Sum product_count over each node's subtree in one reverse pass."""
    totals = {row.id: row.product_count or 0 for row in rows}
    for row in sorted(rows, key=lambda row: row.left, reverse=True):
        if row.parent_id in totals:
            totals[row.parent_id] += totals[row.id]
    return totals
