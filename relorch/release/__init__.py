"""Release side of the orchestrator.

- commits: conventional commit classification (message -> BumpKind)
- decision: pure release decision over first-parent history
- ledger: append-only release history with the append_if_absent primitive
- cutter: exactly-once tag + record + metadata
- store / notes: published release metadata and notes
"""

from __future__ import annotations

from relorch.release.commits import classify, parse_message
from relorch.release.cutter import ReleaseCutter
from relorch.release.decision import decide
from relorch.release.errors import ErrorCategory, ReleaseError
from relorch.release.ledger import InMemoryLedgerStore, JsonLedgerStore, LedgerStore
from relorch.release.model import (
    BumpKind,
    Commit,
    CommitEvent,
    CutRelease,
    Decision,
    NoRelease,
    ReleaseRecord,
)
from relorch.release.semver import Version, parse_tag

__all__ = [
    "BumpKind",
    "Commit",
    "CommitEvent",
    "CutRelease",
    "Decision",
    "ErrorCategory",
    "InMemoryLedgerStore",
    "JsonLedgerStore",
    "LedgerStore",
    "NoRelease",
    "ReleaseCutter",
    "ReleaseError",
    "ReleaseRecord",
    "Version",
    "classify",
    "decide",
    "parse_message",
    "parse_tag",
]
