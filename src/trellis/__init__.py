"""Trellis -- work item lifecycle readiness and dependency analysis engine."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("trellis")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"

from trellis.analysis import analyze_graph
from trellis.models import WorkItem
from trellis.phases import WorkItemType
from trellis.readiness import calculate_readiness

__all__ = ["WorkItem", "WorkItemType", "__version__", "analyze_graph", "calculate_readiness"]
