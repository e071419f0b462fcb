# src/trellis/graph.py
"""Dependency graph model -- connection kinds, connections, and snapshot ingestion.

A :class:`DependencyGraph` is built once per workspace from caller-supplied
node and edge records and never mutated afterwards. Ingestion is lenient:
records that cannot be used are reported as :class:`InputIssue` entries and
the valid remainder is kept.

Only *ordering* connections (``dependency``, ``blocks``) constrain execution
order. Both read the same way: the source waits on the target, so an ordering
connection normalizes to the ``(before, after)`` pair ``(target, source)``.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Literal, assert_never

from trellis.models import to_snake
from trellis.types.graph import InputIssueDict
from trellis.validation import parse_flag, parse_optional_hours, parse_unit_interval, sanitize_identifier

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Connection kinds
# ---------------------------------------------------------------------------


class ConnectionType(StrEnum):
    DEPENDENCY = "dependency"
    BLOCKS = "blocks"
    ENABLES = "enables"
    COMPLEMENTS = "complements"
    CONFLICTS = "conflicts"
    RELATES_TO = "relates_to"
    DUPLICATES = "duplicates"
    SUPERSEDES = "supersedes"


class ConnectionStatus(StrEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    REJECTED = "rejected"
    PENDING_REVIEW = "pending_review"


EdgeKind = Literal["ordering", "advisory"]
DiscoveredBy = Literal["user", "ai", "system", "correlation_engine"]
DISCOVERED_BY: tuple[str, ...] = ("user", "ai", "system", "correlation_engine")

ORDERING: frozenset[ConnectionType] = frozenset({ConnectionType.DEPENDENCY, ConnectionType.BLOCKS})
# Never traversed in reverse, even when flagged bidirectional.
DIRECTIONAL_ONLY: frozenset[ConnectionType] = frozenset({ConnectionType.DUPLICATES, ConnectionType.SUPERSEDES})


def edge_kind(connection_type: ConnectionType) -> EdgeKind:
    """Classify a connection type as ordering or advisory."""
    match connection_type:
        case ConnectionType.DEPENDENCY | ConnectionType.BLOCKS:
            return "ordering"
        case (
            ConnectionType.ENABLES
            | ConnectionType.COMPLEMENTS
            | ConnectionType.CONFLICTS
            | ConnectionType.RELATES_TO
            | ConnectionType.DUPLICATES
            | ConnectionType.SUPERSEDES
        ):
            return "advisory"
        case _:
            assert_never(connection_type)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class SelfLoopError(ValueError):
    """Raised when a connection's source and target are the same work item."""

    def __init__(self, connection_id: str, node_id: str) -> None:
        self.connection_id = connection_id
        self.node_id = node_id
        super().__init__(f"Connection '{connection_id}' connects '{node_id}' to itself")


# ---------------------------------------------------------------------------
# Nodes, connections, issues
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GraphNode:
    """The slice of a work item the analyzer needs."""

    id: str
    name: str = ""
    estimated_hours: float | None = None
    priority: str | None = None
    phase: str | None = None
    type: str | None = None

    @property
    def display_name(self) -> str:
        return self.name or self.id


@dataclass(frozen=True)
class Connection:
    id: str
    source_id: str
    target_id: str
    connection_type: ConnectionType
    strength: float = 1.0
    confidence: float = 1.0
    is_bidirectional: bool = False
    status: ConnectionStatus = ConnectionStatus.ACTIVE
    discovered_by: DiscoveredBy = "user"
    reason: str = ""

    def __post_init__(self) -> None:
        if self.source_id == self.target_id:
            raise SelfLoopError(self.id, self.source_id)
        for name in ("strength", "confidence"):
            value = getattr(self, name)
            if not (0.0 <= value <= 1.0):
                msg = f"Connection '{self.id}': {name} must be between 0 and 1, got {value}"
                raise ValueError(msg)

    @property
    def kind(self) -> EdgeKind:
        return edge_kind(self.connection_type)

    @property
    def is_active(self) -> bool:
        return self.status is ConnectionStatus.ACTIVE

    @property
    def is_ordering(self) -> bool:
        return self.connection_type in ORDERING

    def ordering_pair(self) -> tuple[str, str]:
        """``(before, after)`` for an ordering connection; the target finishes first."""
        match self.connection_type:
            case ConnectionType.DEPENDENCY | ConnectionType.BLOCKS:
                return (self.target_id, self.source_id)
            case _:
                msg = f"Connection '{self.id}' ({self.connection_type.value}) does not order work"
                raise ValueError(msg)

    def other_end(self, node_id: str) -> str:
        return self.target_id if node_id == self.source_id else self.source_id


InputIssueKind = Literal[
    "malformed_node",
    "duplicate_node",
    "malformed_edge",
    "self_loop",
    "dangling_edge",
    "duplicate_edge",
]


@dataclass(frozen=True)
class InputIssue:
    kind: InputIssueKind
    message: str
    node_id: str | None = None
    connection_id: str | None = None

    def to_dict(self) -> InputIssueDict:
        d = InputIssueDict(kind=self.kind, message=self.message)
        if self.node_id is not None:
            d["nodeId"] = self.node_id
        if self.connection_id is not None:
            d["connectionId"] = self.connection_id
        return d


# ---------------------------------------------------------------------------
# Record parsing
# ---------------------------------------------------------------------------

_SOURCE_KEYS = ("source_work_item_id", "source_id", "source")
_TARGET_KEYS = ("target_work_item_id", "target_id", "target")
_TYPE_KEYS = ("connection_type", "type")


def _first(norm: Mapping[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        if key in norm:
            return norm[key]
    return None


def _parse_node(raw: Any, index: int) -> tuple[GraphNode | None, list[InputIssue]]:
    if not isinstance(raw, Mapping):
        return None, [InputIssue("malformed_node", f"Node #{index} must be an object")]
    norm = {to_snake(k): v for k, v in raw.items()}
    node_id, err = sanitize_identifier(norm.get("id"), "id")
    if err:
        return None, [InputIssue("malformed_node", f"Node #{index}: {err}")]

    issues: list[InputIssue] = []
    hours, err = parse_optional_hours(norm.get("estimated_hours"), "estimatedHours")
    if err:
        issues.append(InputIssue("malformed_node", f"Node '{node_id}': {err}", node_id=node_id))
    priority = norm.get("priority")
    phase = norm.get("phase")
    item_type = norm.get("type")
    node = GraphNode(
        id=node_id,
        name=str(norm.get("name") or ""),
        estimated_hours=hours,
        priority=priority if isinstance(priority, str) else None,
        phase=phase if isinstance(phase, str) else None,
        type=item_type if isinstance(item_type, str) else None,
    )
    return node, issues


def _parse_edge(raw: Any, index: int) -> tuple[Connection | None, InputIssue | None]:
    if not isinstance(raw, Mapping):
        return None, InputIssue("malformed_edge", f"Edge #{index} must be an object")
    norm = {to_snake(k): v for k, v in raw.items()}
    edge_id, err = sanitize_identifier(norm.get("id"), "id")
    if err:
        return None, InputIssue("malformed_edge", f"Edge #{index}: {err}")

    def bad(message: str) -> tuple[None, InputIssue]:
        return None, InputIssue("malformed_edge", f"Edge '{edge_id}': {message}", connection_id=edge_id)

    source, err = sanitize_identifier(_first(norm, _SOURCE_KEYS), "source id")
    if err:
        return bad(err)
    target, err = sanitize_identifier(_first(norm, _TARGET_KEYS), "target id")
    if err:
        return bad(err)

    raw_type = _first(norm, _TYPE_KEYS)
    try:
        connection_type = ConnectionType(raw_type)
    except ValueError:
        allowed = ", ".join(t.value for t in ConnectionType)
        return bad(f"unknown connection type {raw_type!r} (must be one of: {allowed})")

    raw_status = norm.get("status", ConnectionStatus.ACTIVE.value)
    try:
        status = ConnectionStatus(raw_status)
    except ValueError:
        return bad(f"unknown status {raw_status!r}")

    strength, err = parse_unit_interval(norm.get("strength"), "strength")
    if err:
        return bad(err)
    confidence, err = parse_unit_interval(norm.get("confidence"), "confidence")
    if err:
        return bad(err)
    bidirectional, err = parse_flag(norm.get("is_bidirectional"), "isBidirectional")
    if err:
        return bad(err)

    discovered_by = norm.get("discovered_by", "user")
    if discovered_by not in DISCOVERED_BY:
        return bad(f"unknown discoveredBy {discovered_by!r}")

    try:
        connection = Connection(
            id=edge_id,
            source_id=source,
            target_id=target,
            connection_type=connection_type,
            strength=strength,
            confidence=confidence,
            is_bidirectional=bidirectional,
            status=status,
            discovered_by=discovered_by,
            reason=str(norm.get("reason") or ""),
        )
    except SelfLoopError as exc:
        return None, InputIssue("self_loop", str(exc), node_id=exc.node_id, connection_id=edge_id)
    return connection, None


# ---------------------------------------------------------------------------
# Graph
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GraphBuildResult:
    graph: DependencyGraph
    issues: tuple[InputIssue, ...] = ()


@dataclass(frozen=True)
class DependencyGraph:
    """Immutable nodes + connections for one workspace."""

    nodes: Mapping[str, GraphNode]
    connections: tuple[Connection, ...] = ()
    _incident: Mapping[str, tuple[Connection, ...]] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        incident: dict[str, list[Connection]] = {nid: [] for nid in self.nodes}
        for conn in self.connections:
            for end in (conn.source_id, conn.target_id):
                if end not in incident:
                    msg = f"Connection '{conn.id}' references unknown node '{end}'"
                    raise ValueError(msg)
                incident[end].append(conn)
        object.__setattr__(self, "_incident", {nid: tuple(conns) for nid, conns in incident.items()})

    @classmethod
    def from_snapshot(cls, nodes: Iterable[Any], edges: Iterable[Any]) -> GraphBuildResult:
        """Build a graph from raw node and edge records, collecting input issues."""
        issues: list[InputIssue] = []
        node_map: dict[str, GraphNode] = {}
        for index, raw in enumerate(nodes):
            node, node_issues = _parse_node(raw, index)
            issues.extend(node_issues)
            if node is None:
                continue
            if node.id in node_map:
                issues.append(InputIssue("duplicate_node", f"Duplicate node id '{node.id}'", node_id=node.id))
                continue
            node_map[node.id] = node

        connections: list[Connection] = []
        seen_ids: set[str] = set()
        seen_keys: set[tuple[str, str, ConnectionType]] = set()
        for index, raw in enumerate(edges):
            conn, issue = _parse_edge(raw, index)
            if issue is not None:
                issues.append(issue)
            if conn is None:
                continue
            missing = [end for end in (conn.source_id, conn.target_id) if end not in node_map]
            if missing:
                issues.append(
                    InputIssue(
                        "dangling_edge",
                        f"Edge '{conn.id}' references unknown node(s): {', '.join(missing)}",
                        connection_id=conn.id,
                    )
                )
                continue
            key = (conn.source_id, conn.target_id, conn.connection_type)
            if conn.id in seen_ids or key in seen_keys:
                issues.append(
                    InputIssue(
                        "duplicate_edge",
                        f"Edge '{conn.id}' duplicates an earlier edge ({conn.source_id} "
                        f"{conn.connection_type.value} {conn.target_id})",
                        connection_id=conn.id,
                    )
                )
                continue
            seen_ids.add(conn.id)
            seen_keys.add(key)
            connections.append(conn)

        for issue in issues:
            logger.warning("Snapshot input issue (%s): %s", issue.kind, issue.message)
        graph = cls(nodes=node_map, connections=tuple(connections))
        logger.debug("Built graph: %d nodes, %d connections, %d issues", len(node_map), len(connections), len(issues))
        return GraphBuildResult(graph=graph, issues=tuple(issues))

    # -- Queries ------------------------------------------------------------

    def node(self, node_id: str) -> GraphNode:
        return self.nodes[node_id]

    def name_of(self, node_id: str) -> str:
        node = self.nodes.get(node_id)
        return node.display_name if node else node_id

    def incident(self, node_id: str) -> tuple[Connection, ...]:
        """Connections touching ``node_id`` in either direction, any status."""
        return self._incident.get(node_id, ())

    def active_connections(self) -> Iterator[Connection]:
        return (c for c in self.connections if c.is_active)

    def ordering_connections(self) -> list[Connection]:
        """Active ordering connections."""
        return [c for c in self.connections if c.is_active and c.is_ordering]

    def ordering_pairs(self) -> list[tuple[str, str]]:
        """Active ordering connections as ``(before, after)`` pairs."""
        return [c.ordering_pair() for c in self.ordering_connections()]

    def successors(self, node_id: str) -> list[str]:
        """Nodes that must wait for ``node_id`` (sorted, deduplicated)."""
        return sorted({after for before, after in self.ordering_pairs() if before == node_id})

    def predecessors(self, node_id: str) -> list[str]:
        """Nodes ``node_id`` must wait for (sorted, deduplicated)."""
        return sorted({before for before, after in self.ordering_pairs() if after == node_id})

    def ordering_adjacency(self) -> dict[str, list[str]]:
        """``before -> sorted afters`` for every node (empty lists included)."""
        forward: dict[str, set[str]] = {nid: set() for nid in self.nodes}
        for before, after in self.ordering_pairs():
            forward[before].add(after)
        return {nid: sorted(afters) for nid, afters in forward.items()}

    def reachable_from(self, node_id: str) -> set[str]:
        """Nodes reachable along active connections, excluding the start.

        Follows source -> target, plus target -> source for bidirectional
        connections whose type may be traversed in reverse.
        """
        neighbours: dict[str, list[str]] = {nid: [] for nid in self.nodes}
        for conn in self.active_connections():
            neighbours[conn.source_id].append(conn.target_id)
            if conn.is_bidirectional and conn.connection_type not in DIRECTIONAL_ONLY:
                neighbours[conn.target_id].append(conn.source_id)

        visited: set[str] = set()
        queue = deque(neighbours.get(node_id, []))
        while queue:
            current = queue.popleft()
            if current in visited or current == node_id:
                continue
            visited.add(current)
            queue.extend(neighbours[current])
        return visited

    def would_create_cycle(self, before: str, after: str) -> bool:
        """Check if adding an ordering pair ``before -> after`` would close a cycle.

        Uses BFS from ``after`` along existing active ordering pairs. If
        ``before`` is reachable, the new pair would close a cycle.
        """
        if before == after:
            return True
        forward = self.ordering_adjacency()
        visited: set[str] = set()
        queue = deque([after])
        while queue:
            current = queue.popleft()
            if current == before:
                return True
            if current in visited:
                continue
            visited.add(current)
            queue.extend(forward.get(current, []))
        return False

    def ordering_node_ids(self) -> list[str]:
        """Sorted ids of nodes touched by at least one active ordering connection."""
        ids: set[str] = set()
        for before, after in self.ordering_pairs():
            ids.update((before, after))
        return sorted(ids)
