"""taskgraph: dependency graph, schedule propagation and delivery metrics."""

from taskgraph.config import VERSION as __version__

__all__ = ["__version__"]
