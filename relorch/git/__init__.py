"""Source control adapters."""

from relorch.git.source import GitCommitSource

__all__ = ["GitCommitSource"]
