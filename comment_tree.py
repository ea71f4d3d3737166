"""Nested reply trees from flat comment rows.

Rows are plain dicts carrying at least ``id`` and ``parent_comment_id``
(None for a root). Everything works off an id index plus a
parent -> children adjacency index, so malformed input (unknown parents,
self references, cycles) never raises.
"""

import logging
from collections import deque
from typing import Any, Dict, Hashable, Iterable, List, Optional

logger = logging.getLogger(__name__)

Row = Dict[str, Any]


def _created_key(row: Row):
    created = row.get("created_at")
    return (created is None, "" if created is None else created)


def index_children(rows: Iterable[Row]) -> Dict[Optional[Hashable], List[Hashable]]:
    children: Dict[Optional[Hashable], List[Hashable]] = {}
    for row in rows:
        children.setdefault(row.get("parent_comment_id"), []).append(row["id"])
    return children


def build_tree(rows: Iterable[Row]) -> List[Row]:
    """Nest rows under their parents, oldest first at every level.

    Flagged comments are kept; listing by user is where those get dropped.
    A row whose parent is missing from ``rows`` is promoted to a root.
    """
    nodes: Dict[Hashable, Row] = {}
    for row in rows:
        nodes[row["id"]] = {**row, "replies": []}

    ordered = sorted(nodes.values(), key=_created_key)
    roots: List[Row] = []
    for node in ordered:
        parent_id = node.get("parent_comment_id")
        if parent_id is None:
            roots.append(node)
        elif parent_id == node["id"] or parent_id not in nodes:
            logger.warning("Comment %s references missing parent %s; treating it as a root", node["id"], parent_id)
            roots.append(node)
        else:
            nodes[parent_id]["replies"].append(node)

    # Rows caught in a parent cycle are unreachable from any root
    reached = set()
    for root in roots:
        reached.update(_subtree_ids(root))
    for node in ordered:
        if node["id"] in reached:
            continue
        logger.warning("Comment %s is part of a reply cycle; treating it as a root", node["id"])
        parent = nodes[node["parent_comment_id"]]
        parent["replies"] = [r for r in parent["replies"] if r["id"] != node["id"]]
        roots.append(node)
        reached.update(_subtree_ids(node))

    roots.sort(key=_created_key)
    return roots


def _subtree_ids(node: Row) -> List[Hashable]:
    ids = []
    stack = [node]
    while stack:
        current = stack.pop()
        ids.append(current["id"])
        stack.extend(current["replies"])
    return ids


def collect_descendants(rows: Iterable[Row], root_id: Hashable) -> List[Hashable]:
    """Every comment id transitively replying to ``root_id``, breadth first.

    ``root_id`` itself is not included.
    """
    children = index_children(rows)
    found: List[Hashable] = []
    seen = {root_id}
    queue = deque(children.get(root_id, ()))
    while queue:
        comment_id = queue.popleft()
        if comment_id in seen:
            continue
        seen.add(comment_id)
        found.append(comment_id)
        queue.extend(children.get(comment_id, ()))
    return found


def flatten_tree(roots: Iterable[Row]) -> List[Row]:
    flat = []
    stack = list(reversed(list(roots)))
    while stack:
        node = stack.pop()
        flat.append({k: v for k, v in node.items() if k != "replies"})
        stack.extend(reversed(node["replies"]))
    return flat


def count_nodes(roots: Iterable[Row]) -> int:
    return sum(len(_subtree_ids(node)) for node in roots)
