# src/trellis/analysis.py
"""Graph analyzer -- cycles, critical path, bottlenecks, orphans, conflicts, health.

All functions are pure over an immutable :class:`DependencyGraph`. Only
active ordering connections (see :mod:`trellis.graph`) take part in cycle
detection and scheduling; advisory connections matter for orphans and
conflicts only. Every traversal visits ids in sorted order so results are
deterministic, and every tie is broken by the lowest id.
"""

from __future__ import annotations

import heapq
import logging
import math
from collections.abc import Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from time import perf_counter
from typing import Any, Literal

from trellis.config import AnalysisSettings
from trellis.graph import Connection, ConnectionStatus, ConnectionType, DependencyGraph, InputIssue
from trellis.logging import elapsed_ms
from trellis.types.graph import (
    BottleneckDict,
    CircularDependencyDict,
    ConflictDict,
    CriticalPathDict,
    HealthReportDict,
    SlackItemDict,
    SuggestedFixDict,
)

logger = logging.getLogger(__name__)

DEFAULT_ANALYSIS = AnalysisSettings()

CycleSeverity = Literal["high", "medium", "low"]

# Phases where work is under way; a cycle through them stalls real work.
ACTIVE_PHASES: frozenset[str] = frozenset({"build", "fixing", "investigating", "refine"})

CYCLE_SKIP_REASON = "Circular dependencies detected. Resolve cycles before calculating the critical path."
_EPSILON = 1e-9

# ---------------------------------------------------------------------------
# Result dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SuggestedFix:
    connection_id: str
    source_id: str
    target_id: str
    source_name: str
    target_name: str
    score: float
    reason: str

    def to_dict(self) -> SuggestedFixDict:
        return SuggestedFixDict(
            connectionId=self.connection_id,
            sourceId=self.source_id,
            targetId=self.target_id,
            sourceWorkItemName=self.source_name,
            targetWorkItemName=self.target_name,
            score=round(self.score, 4),
            reason=self.reason,
        )


@dataclass(frozen=True)
class CircularDependency:
    cycle: tuple[str, ...]
    cycle_names: tuple[str, ...]
    connection_ids: tuple[str, ...]
    severity: CycleSeverity
    suggested_fix: SuggestedFix

    def to_dict(self) -> CircularDependencyDict:
        return CircularDependencyDict(
            cycle=list(self.cycle),
            cycleNames=list(self.cycle_names),
            connectionIds=list(self.connection_ids),
            severity=self.severity,
            suggestedFix=self.suggested_fix.to_dict(),
        )


@dataclass(frozen=True)
class SlackItem:
    work_item_id: str
    work_item_name: str
    earliest_finish: float
    latest_finish: float

    @property
    def slack(self) -> float:
        return self.latest_finish - self.earliest_finish

    def to_dict(self) -> SlackItemDict:
        return SlackItemDict(
            workItemId=self.work_item_id,
            workItemName=self.work_item_name,
            earliestFinish=self.earliest_finish,
            latestFinish=self.latest_finish,
            slack=round(self.slack, 6),
        )


@dataclass(frozen=True)
class CriticalPathAnalysis:
    critical_path: tuple[str, ...]
    total_duration: float
    alternate_critical_nodes: tuple[str, ...] = ()
    alternate_paths: tuple[tuple[str, ...], ...] = ()
    slack_items: tuple[SlackItem, ...] = ()
    warnings: tuple[str, ...] = ()

    def to_dict(self) -> CriticalPathDict:
        return CriticalPathDict(
            criticalPath=list(self.critical_path),
            totalDuration=self.total_duration,
            alternateCriticalNodes=list(self.alternate_critical_nodes),
            alternatePaths=[list(p) for p in self.alternate_paths],
            slackItems=[s.to_dict() for s in self.slack_items],
            warnings=list(self.warnings),
        )


@dataclass(frozen=True)
class Bottleneck:
    work_item_id: str
    work_item_name: str
    dependency_count: int
    dependent_count: int
    weighted_score: float
    risk_score: float

    def to_dict(self) -> BottleneckDict:
        return BottleneckDict(
            workItemId=self.work_item_id,
            workItemName=self.work_item_name,
            dependencyCount=self.dependency_count,
            dependentCount=self.dependent_count,
            weightedScore=round(self.weighted_score, 4),
            riskScore=round(self.risk_score, 4),
        )


@dataclass(frozen=True)
class ConflictRecord:
    work_item_id: str
    work_item_name: str
    conflict_with: tuple[str, ...]
    reason: str

    def to_dict(self) -> ConflictDict:
        return ConflictDict(
            workItemId=self.work_item_id,
            workItemName=self.work_item_name,
            conflictWith=list(self.conflict_with),
            reason=self.reason,
        )


@dataclass(frozen=True)
class DependencyHealthReport:
    cycles: tuple[CircularDependency, ...]
    critical_path: CriticalPathAnalysis | None
    critical_path_skipped: bool
    critical_path_skip_reason: str | None
    bottlenecks: tuple[Bottleneck, ...]
    orphaned_work_items: tuple[str, ...]
    conflicts: tuple[ConflictRecord, ...]
    input_issues: tuple[InputIssue, ...]
    health_score: int

    def to_dict(self) -> HealthReportDict:
        return HealthReportDict(
            cycles=[c.to_dict() for c in self.cycles],
            criticalPath=self.critical_path.to_dict() if self.critical_path else None,
            criticalPathSkipped=self.critical_path_skipped,
            criticalPathSkipReason=self.critical_path_skip_reason,
            bottlenecks=[b.to_dict() for b in self.bottlenecks],
            orphanedWorkItems=list(self.orphaned_work_items),
            conflicts=[c.to_dict() for c in self.conflicts],
            inputIssues=[i.to_dict() for i in self.input_issues],
            healthScore=self.health_score,
        )


# ---------------------------------------------------------------------------
# Cycles
# ---------------------------------------------------------------------------

_WHITE, _GRAY, _BLACK = 0, 1, 2


def _pair_connections(graph: DependencyGraph) -> dict[tuple[str, str], list[Connection]]:
    """Active ordering connections grouped by their ``(before, after)`` pair."""
    by_pair: dict[tuple[str, str], list[Connection]] = {}
    for conn in graph.ordering_connections():
        by_pair.setdefault(conn.ordering_pair(), []).append(conn)
    for conns in by_pair.values():
        conns.sort(key=lambda c: c.id)
    return by_pair


def _cycle_severity(graph: DependencyGraph, cycle: tuple[str, ...]) -> CycleSeverity:
    nodes = [graph.node(nid) for nid in cycle]
    if any(n.priority == "critical" for n in nodes):
        return "high"
    if any(n.phase in ACTIVE_PHASES for n in nodes) or len(cycle) > 4:
        return "medium"
    return "low"


def _suggest_fix(graph: DependencyGraph, connections: Iterable[Connection]) -> SuggestedFix:
    """The cycle edge cheapest to remove: lowest strength * confidence, then id."""
    weakest = min(connections, key=lambda c: (c.strength * c.confidence, c.id))
    return SuggestedFix(
        connection_id=weakest.id,
        source_id=weakest.source_id,
        target_id=weakest.target_id,
        source_name=graph.name_of(weakest.source_id),
        target_name=graph.name_of(weakest.target_id),
        score=weakest.strength * weakest.confidence,
        reason=(
            f"Remove weakest {weakest.connection_type.value} connection "
            f"({round(weakest.strength * 100)}% strength, {round(weakest.confidence * 100)}% confidence)"
        ),
    )


def _build_cycle(
    graph: DependencyGraph, cycle: tuple[str, ...], by_pair: Mapping[tuple[str, str], list[Connection]]
) -> CircularDependency:
    conns: list[Connection] = []
    for i, before in enumerate(cycle):
        after = cycle[(i + 1) % len(cycle)]
        conns.extend(by_pair[(before, after)])
    return CircularDependency(
        cycle=cycle,
        cycle_names=tuple(graph.name_of(nid) for nid in cycle),
        connection_ids=tuple(c.id for c in conns),
        severity=_cycle_severity(graph, cycle),
        suggested_fix=_suggest_fix(graph, conns),
    )


def detect_cycles(graph: DependencyGraph) -> list[CircularDependency]:
    """Find ordering cycles with an iterative three-colour DFS.

    Nodes and neighbours are visited in sorted id order. On an edge back to a
    gray node the cycle is read off the current path. Cycles covering the same
    node set are reported once.
    """
    adjacency = graph.ordering_adjacency()
    by_pair = _pair_connections(graph)
    color = dict.fromkeys(adjacency, _WHITE)
    seen: set[frozenset[str]] = set()
    cycles: list[CircularDependency] = []

    for root in sorted(adjacency):
        if color[root] != _WHITE:
            continue
        color[root] = _GRAY
        path = [root]
        position = {root: 0}
        stack = [(root, iter(adjacency[root]))]
        while stack:
            node, neighbours = stack[-1]
            nxt = next(neighbours, None)
            if nxt is None:
                stack.pop()
                path.pop()
                del position[node]
                color[node] = _BLACK
                continue
            if color[nxt] == _WHITE:
                color[nxt] = _GRAY
                position[nxt] = len(path)
                path.append(nxt)
                stack.append((nxt, iter(adjacency[nxt])))
            elif color[nxt] == _GRAY:
                cycle = tuple(path[position[nxt] :])
                key = frozenset(cycle)
                if key not in seen:
                    seen.add(key)
                    cycles.append(_build_cycle(graph, cycle, by_pair))

    if cycles:
        logger.info("Detected %d dependency cycle(s)", len(cycles))
    return cycles


# ---------------------------------------------------------------------------
# Critical path
# ---------------------------------------------------------------------------


def _duration(graph: DependencyGraph, node_id: str, default: float) -> float:
    hours = graph.node(node_id).estimated_hours
    return hours if hours is not None and hours > 0 else default


def _close(a: float, b: float) -> bool:
    return math.isclose(a, b, rel_tol=0.0, abs_tol=_EPSILON)


def compute_critical_path(
    graph: DependencyGraph,
    *,
    default_duration: float = DEFAULT_ANALYSIS.default_duration_hours,
    cycles: list[CircularDependency] | None = None,
) -> CriticalPathAnalysis | None:
    """Longest duration chain through the ordering DAG, with slack.

    Returns None when the ordering graph has a cycle. Only nodes touched by
    an active ordering connection take part; with none, the analysis is empty.
    Uses Kahn's algorithm (lowest id first) plus a forward pass for earliest
    finish and a backward pass for latest finish.
    """
    if cycles is None:
        cycles = detect_cycles(graph)
    if cycles:
        return None

    node_ids = graph.ordering_node_ids()
    if not node_ids:
        return CriticalPathAnalysis(critical_path=(), total_duration=0.0)

    forward: dict[str, list[str]] = {nid: [] for nid in node_ids}
    backward: dict[str, list[str]] = {nid: [] for nid in node_ids}
    for before, after in set(graph.ordering_pairs()):
        forward[before].append(after)
        backward[after].append(before)
    for adj in (forward, backward):
        for neighbours in adj.values():
            neighbours.sort()

    duration = {nid: _duration(graph, nid, default_duration) for nid in node_ids}
    in_degree = {nid: len(backward[nid]) for nid in node_ids}

    # Topological sort (Kahn's algorithm, lowest id first)
    heap = [nid for nid in node_ids if in_degree[nid] == 0]
    heapq.heapify(heap)
    order: list[str] = []
    while heap:
        node = heapq.heappop(heap)
        order.append(node)
        for succ in forward[node]:
            in_degree[succ] -= 1
            if in_degree[succ] == 0:
                heapq.heappush(heap, succ)

    earliest_finish: dict[str, float] = {}
    for node in order:
        start = max((earliest_finish[p] for p in backward[node]), default=0.0)
        earliest_finish[node] = start + duration[node]
    total = max(earliest_finish.values())

    latest_finish: dict[str, float] = {}
    for node in reversed(order):
        latest_finish[node] = min((latest_finish[s] - duration[s] for s in forward[node]), default=total)
    slack = {nid: latest_finish[nid] - earliest_finish[nid] for nid in node_ids}

    def tight_predecessor(node: str, *, critical_only: bool = False) -> str | None:
        start = earliest_finish[node] - duration[node]
        for pred in backward[node]:  # sorted, so the first match is the lowest id
            if _close(earliest_finish[pred], start) and (not critical_only or _close(slack[pred], 0.0)):
                return pred
        return None

    def tight_successor(node: str) -> str | None:
        for succ in forward[node]:
            if _close(earliest_finish[succ] - duration[succ], earliest_finish[node]) and _close(slack[succ], 0.0):
                return succ
        return None

    end = min(nid for nid in node_ids if _close(earliest_finish[nid], total))
    path = [end]
    while (pred := tight_predecessor(path[-1])) is not None:
        path.append(pred)
    path.reverse()

    on_path = set(path)
    critical = sorted(nid for nid in node_ids if _close(slack[nid], 0.0))
    alternate_nodes = tuple(nid for nid in critical if nid not in on_path)

    alternate_paths: list[tuple[str, ...]] = []
    covered: set[str] = set()
    for nid in alternate_nodes:
        if nid in covered:
            continue
        chain = [nid]
        while (pred := tight_predecessor(chain[0], critical_only=True)) is not None:
            chain.insert(0, pred)
        while (succ := tight_successor(chain[-1])) is not None:
            chain.append(succ)
        candidate = tuple(chain)
        covered.update(candidate)
        if candidate != tuple(path) and candidate not in alternate_paths:
            alternate_paths.append(candidate)

    slack_items = tuple(
        SlackItem(nid, graph.name_of(nid), earliest_finish[nid], latest_finish[nid])
        for nid in sorted(node_ids, key=lambda n: (slack[n], n))
        if slack[nid] > _EPSILON
    )

    warnings: list[str] = []
    if len(critical) > len(node_ids) * 0.5 and len(node_ids) > 2:
        warnings.append("Over 50% of work items are on the critical path. Consider parallelizing tasks.")
    average_slack = sum(slack.values()) / len(node_ids)
    if len(node_ids) > 2 and average_slack < 2:
        warnings.append("Very low slack detected. Project timeline is tight with little room for delays.")

    logger.debug("Critical path %s (%.1fh), %d alternate node(s)", path, total, len(alternate_nodes))
    return CriticalPathAnalysis(
        critical_path=tuple(path),
        total_duration=total,
        alternate_critical_nodes=alternate_nodes,
        alternate_paths=tuple(alternate_paths),
        slack_items=slack_items,
        warnings=tuple(warnings),
    )


# ---------------------------------------------------------------------------
# Bottlenecks, orphans, conflicts
# ---------------------------------------------------------------------------


def find_bottlenecks(graph: DependencyGraph, *, top_n: int = DEFAULT_ANALYSIS.bottleneck_top_n) -> list[Bottleneck]:
    """Rank nodes by the summed strength of their active ordering connections."""
    scores: dict[str, float] = {}
    for conn in graph.ordering_connections():
        for end in (conn.source_id, conn.target_id):
            scores[end] = scores.get(end, 0.0) + conn.strength
    scores = {nid: s for nid, s in scores.items() if s > 0}
    if not scores or top_n <= 0:
        return []

    top = max(scores.values())
    ranked = sorted(scores, key=lambda nid: (-scores[nid], nid))[:top_n]
    return [
        Bottleneck(
            work_item_id=nid,
            work_item_name=graph.name_of(nid),
            dependency_count=len(graph.predecessors(nid)),
            dependent_count=len(graph.successors(nid)),
            weighted_score=scores[nid],
            risk_score=scores[nid] / top,
        )
        for nid in ranked
    ]


def find_orphans(graph: DependencyGraph) -> list[str]:
    """Sorted ids of nodes with no incident connection other than rejected ones."""
    return sorted(
        nid
        for nid in graph.nodes
        if all(c.status is ConnectionStatus.REJECTED for c in graph.incident(nid))
    )


def find_conflicts(graph: DependencyGraph) -> list[ConflictRecord]:
    """Active ``conflicts`` connections grouped per work item."""
    partners: dict[str, set[str]] = {}
    reasons: dict[str, list[str]] = {}
    for conn in graph.active_connections():
        if conn.connection_type is not ConnectionType.CONFLICTS:
            continue
        for end in (conn.source_id, conn.target_id):
            partners.setdefault(end, set()).add(conn.other_end(end))
            if conn.reason:
                reasons.setdefault(end, []).append(conn.reason)

    records: list[ConflictRecord] = []
    for nid in sorted(partners):
        others = tuple(sorted(partners[nid]))
        reason = "; ".join(reasons.get(nid, [])) or "Conflicts with " + ", ".join(graph.name_of(o) for o in others)
        records.append(ConflictRecord(nid, graph.name_of(nid), others, reason))
    return records


def _conflict_counts(graph: DependencyGraph) -> tuple[int, int]:
    conflicts = [c for c in graph.connections if c.connection_type is ConnectionType.CONFLICTS]
    return sum(1 for c in conflicts if c.is_active), len(conflicts)


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


def health_score(
    cycle_count: int,
    orphan_count: int,
    active_conflicts: int = 0,
    total_conflicts: int = 0,
    *,
    settings: AnalysisSettings = DEFAULT_ANALYSIS,
) -> int:
    """0-100 dependency health.

    ``100 - min(cycles * 15, 60) - orphans * 2 - 20 * active/total conflicts``,
    floored at 0 and rounded half-up. Non-increasing in cycles and orphans.
    """
    if cycle_count < 0 or orphan_count < 0 or active_conflicts < 0 or total_conflicts < 0:
        msg = "health_score counts must be >= 0"
        raise ValueError(msg)
    if active_conflicts > total_conflicts:
        msg = f"active_conflicts ({active_conflicts}) cannot exceed total_conflicts ({total_conflicts})"
        raise ValueError(msg)

    score = 100.0
    score -= min(cycle_count * settings.cycle_penalty, settings.cycle_penalty_cap)
    score -= orphan_count * settings.orphan_penalty
    if total_conflicts:
        score -= settings.conflict_penalty * active_conflicts / total_conflicts
    return math.floor(round(max(score, 0.0), 9) + 0.5)


# ---------------------------------------------------------------------------
# Full report
# ---------------------------------------------------------------------------


def analyze_graph(
    graph: DependencyGraph | Iterable[Any],
    edges: Iterable[Any] | None = None,
    *,
    settings: AnalysisSettings = DEFAULT_ANALYSIS,
    input_issues: Iterable[InputIssue] = (),
) -> DependencyHealthReport:
    """Produce a :class:`DependencyHealthReport` for one workspace.

    Accepts a built graph, or raw ``nodes`` and ``edges`` records which are
    ingested first. Cycle detection always runs before the critical path.
    """
    issues = list(input_issues)
    if not isinstance(graph, DependencyGraph):
        built = DependencyGraph.from_snapshot(graph, edges or [])
        graph = built.graph
        issues.extend(built.issues)

    t0 = perf_counter()
    cycles = detect_cycles(graph)
    critical = compute_critical_path(graph, default_duration=settings.default_duration_hours, cycles=cycles)
    orphans = find_orphans(graph)
    active_conflicts, total_conflicts = _conflict_counts(graph)
    report = DependencyHealthReport(
        cycles=tuple(cycles),
        critical_path=critical,
        critical_path_skipped=critical is None,
        critical_path_skip_reason=CYCLE_SKIP_REASON if critical is None else None,
        bottlenecks=tuple(find_bottlenecks(graph, top_n=settings.bottleneck_top_n)),
        orphaned_work_items=tuple(orphans),
        conflicts=tuple(find_conflicts(graph)),
        input_issues=tuple(issues),
        health_score=health_score(
            len(cycles), len(orphans), active_conflicts, total_conflicts, settings=settings
        ),
    )
    logger.info(
        "Dependency health %d",
        report.health_score,
        extra={
            "operation": "analyze_graph",
            "counts": {
                "nodes": len(graph.nodes),
                "connections": len(graph.connections),
                "cycles": len(cycles),
                "orphans": len(orphans),
                "input_issues": len(issues),
            },
            "duration_ms": elapsed_ms(t0),
        },
    )
    return report


def analyze_workspaces(
    snapshots: Mapping[str, DependencyGraph | Mapping[str, Any]],
    *,
    max_workers: int | None = None,
    settings: AnalysisSettings = DEFAULT_ANALYSIS,
) -> dict[str, DependencyHealthReport]:
    """Analyze independent workspaces in parallel.

    Each snapshot is a :class:`DependencyGraph` or a ``{"nodes", "edges"}``
    mapping. Results are keyed like the input.
    """

    def _run(snapshot: DependencyGraph | Mapping[str, Any]) -> DependencyHealthReport:
        if isinstance(snapshot, DependencyGraph):
            return analyze_graph(snapshot, settings=settings)
        return analyze_graph(snapshot.get("nodes") or [], snapshot.get("edges") or [], settings=settings)

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        futures = {key: pool.submit(_run, snap) for key, snap in snapshots.items()}
        return {key: future.result() for key, future in futures.items()}
