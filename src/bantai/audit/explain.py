"""Reconstruction of the causal event tree from a flat event list."""

from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List

from bantai.audit.models import AuditEvent


@dataclass
class AuditNode:
    """An event and the events it caused."""

    event: AuditEvent
    children: List["AuditNode"] = field(default_factory=list)

    def walk(self) -> Iterator["AuditNode"]:
        """Depth-first iteration, self included."""
        yield self
        for child in self.children:
            yield from child.walk()


def build_explain_tree(events: Iterable[AuditEvent]) -> List[AuditNode]:
    """
    Link events to their parents and return the roots.

    Events may arrive in any order and may belong to several evaluations,
    so the result is a forest. An event whose ``parent_id`` is not in the
    list becomes a root rather than being dropped.
    """
    events = list(events)
    nodes: Dict[str, AuditNode] = {}
    for event in events:
        nodes[event.id] = AuditNode(event)

    roots: List[AuditNode] = []
    for event in events:
        node = nodes[event.id]
        parent = nodes.get(event.parent_id) if event.parent_id else None
        if parent is not None and parent is not node:
            parent.children.append(node)
        else:
            roots.append(node)
    return roots
