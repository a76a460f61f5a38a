"""Turn a flat list of messages into an ordered reply forest.

Everything here is a pure function of its input: no I/O, no shared
state, safe to call from any number of callers at once.

Placement rules
---------------
- Messages are indexed by key (store id, or provisional id).  When the
  same key appears twice the first occurrence wins.
- Messages are placed in ``(created_at, id)`` order, provisional messages
  last.  Placing in that order keeps every children list and the root list
  sorted without a separate sorting pass. It also makes the outcome
  independent of the order the store returned them in.
- A message becomes a root when it has no parent, names itself as its
  parent, names a parent that is not in the list (an *orphan*), or would
  close a cycle through parents already placed.  Each of these except a
  plain top-level message is reported as a :class:`~models.BuildAnomaly`.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator

from log import log_extra
from models import AnomalyKind, BuildAnomaly, Message, ThreadBuild, ThreadNode

logger = logging.getLogger("threadweave.builder")

# Orphans are routine once parents get deleted; the rest point at bad data.
_QUIET_ANOMALIES = frozenset({AnomalyKind.ORPHAN})


def build(messages: Iterable[Message]) -> list[ThreadNode]:
    """Return the ordered root nodes for *messages*."""
    return list(build_thread(messages).roots)


def build_thread(messages: Iterable[Message]) -> ThreadBuild:
    """Build the reply forest for *messages*, recording every anomaly."""
    anomalies: list[BuildAnomaly] = []

    index: dict[str, Message] = {}
    for msg in messages:
        key = msg.key
        if key in index:
            anomalies.append(
                BuildAnomaly(
                    kind=AnomalyKind.DUPLICATE_ID,
                    message_key=key,
                    parent_id=msg.parent_id,
                )
            )
            continue
        index[key] = msg

    parent_of: dict[str, str] = {}
    children: dict[str, list[str]] = {key: [] for key in index}
    roots: list[str] = []

    for msg in sorted(index.values(), key=Message.sort_key):
        key, parent = msg.key, msg.parent_id
        kind: AnomalyKind | None = None
        if parent is None:
            pass
        elif parent == key:
            kind = AnomalyKind.SELF_PARENT
        elif parent not in index:
            kind = AnomalyKind.ORPHAN
        elif children[key] and _closes_cycle(key, parent, parent_of, limit=len(index)):
            # Only a message that already has replies placed can close a loop.
            kind = AnomalyKind.CYCLE
        else:
            parent_of[key] = parent
            children[parent].append(key)
            continue

        roots.append(key)
        if kind is not None:
            anomalies.append(
                BuildAnomaly(kind=kind, message_key=key, parent_id=parent)
            )

    _log_anomalies(anomalies)
    return ThreadBuild(
        roots=_materialise(roots, children, index),
        anomalies=tuple(anomalies),
    )


def _closes_cycle(
    key: str,
    parent: str,
    parent_of: dict[str, str],
    *,
    limit: int,
) -> bool:
    """Return *True* if hanging *key* under *parent* would form a loop.

    Walks up from *parent* through the edges placed so far.  Those edges
    form a forest, so the walk ends at a root; *limit* and the visited set
    bound it regardless.
    """
    visited: set[str] = set()
    current: str | None = parent
    steps = 0
    while current is not None and steps <= limit:
        if current == key:
            return True
        if current in visited:
            return True
        visited.add(current)
        current = parent_of.get(current)
        steps += 1
    return current is not None


def _materialise(
    roots: list[str],
    children: dict[str, list[str]],
    index: dict[str, Message],
) -> tuple[ThreadNode, ...]:
    """Build immutable nodes bottom-up without recursion."""
    depth: dict[str, int] = {}
    preorder: list[str] = []
    stack = [(key, 0) for key in reversed(roots)]
    while stack:
        key, level = stack.pop()
        depth[key] = level
        preorder.append(key)
        stack.extend((child, level + 1) for child in reversed(children[key]))

    built: dict[str, ThreadNode] = {}
    for key in reversed(preorder):
        built[key] = ThreadNode(
            message=index[key],
            children=tuple(built.pop(child) for child in children[key]),
            depth=depth[key],
        )
    return tuple(built[key] for key in roots)


def _log_anomalies(anomalies: list[BuildAnomaly]) -> None:
    for anomaly in anomalies:
        level = logging.DEBUG if anomaly.kind in _QUIET_ANOMALIES else logging.WARNING
        logger.log(
            level,
            "Message %s placed as root: %s (parent %s)",
            anomaly.message_key,
            anomaly.kind,
            anomaly.parent_id,
            extra=log_extra(anomaly=anomaly.kind),
        )


# --- Traversal helpers ---


def iter_nodes(roots: Iterable[ThreadNode]) -> Iterator[ThreadNode]:
    """Yield every node in pre-order (parent before its replies)."""
    stack = list(reversed(list(roots)))
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.children))


def flatten(roots: Iterable[ThreadNode]) -> list[Message]:
    """Return the messages of a forest in pre-order."""
    return [node.message for node in iter_nodes(roots)]


def find_node(roots: Iterable[ThreadNode], key: str) -> ThreadNode | None:
    """Return the node whose message key is *key*, or *None*."""
    for node in iter_nodes(roots):
        if node.key == key:
            return node
    return None


def display_rows(
    roots: Iterable[ThreadNode], max_indent_level: int
) -> list[tuple[ThreadNode, int]]:
    """Return ``(node, indent)`` pairs in reading order.

    Indentation follows depth but stops growing at *max_indent_level*, so
    very deep reply chains stay readable.
    """
    return [(node, min(node.depth, max_indent_level)) for node in iter_nodes(roots)]
