"""TypedDicts for graph.py and analysis.py results."""

from __future__ import annotations

from typing import NotRequired, TypedDict


class InputIssueDict(TypedDict):
    """A recoverable problem found while ingesting a snapshot."""

    kind: str
    message: str
    nodeId: NotRequired[str]
    connectionId: NotRequired[str]


class SuggestedFixDict(TypedDict):
    connectionId: str
    sourceId: str
    targetId: str
    sourceWorkItemName: str
    targetWorkItemName: str
    score: float
    reason: str


class CircularDependencyDict(TypedDict):
    cycle: list[str]
    cycleNames: list[str]
    connectionIds: list[str]
    severity: str
    suggestedFix: SuggestedFixDict


class BottleneckDict(TypedDict):
    workItemId: str
    workItemName: str
    dependencyCount: int
    dependentCount: int
    weightedScore: float
    riskScore: float


class SlackItemDict(TypedDict):
    workItemId: str
    workItemName: str
    earliestFinish: float
    latestFinish: float
    slack: float


class CriticalPathDict(TypedDict):
    criticalPath: list[str]
    totalDuration: float
    alternateCriticalNodes: list[str]
    alternatePaths: list[list[str]]
    slackItems: list[SlackItemDict]
    warnings: list[str]


class ConflictDict(TypedDict):
    workItemId: str
    workItemName: str
    conflictWith: list[str]
    reason: str


class HealthReportDict(TypedDict):
    """Serialized ``DependencyHealthReport``."""

    cycles: list[CircularDependencyDict]
    criticalPath: CriticalPathDict | None
    criticalPathSkipped: bool
    criticalPathSkipReason: str | None
    bottlenecks: list[BottleneckDict]
    orphanedWorkItems: list[str]
    conflicts: list[ConflictDict]
    inputIssues: list[InputIssueDict]
    healthScore: int
