"""Version ledger: the append-only history of cut releases.

``append_if_absent`` is the idempotency boundary. It must check and write
atomically: at most one record per commit, tag names unique, and versions
strictly increasing per branch. Any backing store implementing this one
primitive can hold the ledger.
"""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Literal, Protocol

from relorch.core.result import Err, Ok, Result
from relorch.core.structured import StrDict, as_obj_list, as_str_dict, get_list, get_str
from relorch.platform.files import atomic_write_text, exclusive_lock
from relorch.release.errors import ReleaseError
from relorch.release.model import BumpKind, Commit, ReleaseRecord
from relorch.release.semver import Version, parse_tag

__all__ = [
    "LEDGER_SCHEMA",
    "InMemoryLedgerStore",
    "JsonLedgerStore",
    "LedgerConflict",
    "LedgerReadError",
    "LedgerStore",
    "record_from_dict",
    "record_to_dict",
]

LEDGER_SCHEMA = 1

_LOCK_TIMEOUT_SECONDS = 10.0


@dataclass(frozen=True, slots=True)
class LedgerConflict:
    """Why ``append_if_absent`` refused a record."""

    kind: Literal["already_exists", "tag_taken", "not_monotonic", "busy", "unavailable"]
    message: str


class LedgerReadError(Exception):
    """A ledger that was readable when opened can no longer be read.

    Raised by the read methods of file-backed stores; callers at a run
    boundary turn it back into ``error``.
    """

    def __init__(self, error: ReleaseError) -> None:
        super().__init__(error.pretty())
        self.error = error


class LedgerStore(Protocol):
    def get_latest(self, branch: str) -> ReleaseRecord | None: ...

    def get_by_commit(self, commit_id: str) -> ReleaseRecord | None: ...

    def get_by_tag(self, tag: str) -> ReleaseRecord | None: ...

    def records(self, branch: str | None = None) -> tuple[ReleaseRecord, ...]: ...

    def append_if_absent(self, record: ReleaseRecord) -> Result[None, LedgerConflict]: ...


def _check_append(
    records: list[ReleaseRecord], record: ReleaseRecord
) -> LedgerConflict | None:
    for r in records:
        if r.commit_id == record.commit_id:
            return LedgerConflict(
                kind="already_exists",
                message=f"{record.commit_id[:8]} already released as {r.tag}",
            )
        if r.tag == record.tag:
            return LedgerConflict(
                kind="tag_taken",
                message=f"tag {record.tag} already recorded for {r.commit_id[:8]}",
            )

    branch_versions = [r.version for r in records if r.branch == record.branch]
    if branch_versions and record.version <= max(branch_versions):
        return LedgerConflict(
            kind="not_monotonic",
            message=(
                f"{record.tag} does not increase on {record.branch} "
                f"(latest v{max(branch_versions)})"
            ),
        )
    return None


class InMemoryLedgerStore:
    """Thread-safe ledger held in process memory."""

    def __init__(self, records: tuple[ReleaseRecord, ...] = ()) -> None:
        self._lock = threading.Lock()
        self._records: list[ReleaseRecord] = []
        for r in records:
            conflict = _check_append(self._records, r)
            if conflict is not None:
                raise ValueError(conflict.message)
            self._records.append(r)

    def get_latest(self, branch: str) -> ReleaseRecord | None:
        with self._lock:
            return _latest(self._records, branch)

    def get_by_commit(self, commit_id: str) -> ReleaseRecord | None:
        with self._lock:
            return next((r for r in self._records if r.commit_id == commit_id), None)

    def get_by_tag(self, tag: str) -> ReleaseRecord | None:
        with self._lock:
            return next((r for r in self._records if r.tag == tag), None)

    def records(self, branch: str | None = None) -> tuple[ReleaseRecord, ...]:
        with self._lock:
            return tuple(r for r in self._records if branch is None or r.branch == branch)

    def append_if_absent(self, record: ReleaseRecord) -> Result[None, LedgerConflict]:
        with self._lock:
            conflict = _check_append(self._records, record)
            if conflict is not None:
                return Err(conflict)
            self._records.append(record)
            return Ok(None)


def _latest(records: list[ReleaseRecord], branch: str) -> ReleaseRecord | None:
    on_branch = [r for r in records if r.branch == branch]
    if not on_branch:
        return None
    return max(on_branch, key=lambda r: r.version)


class JsonLedgerStore:
    """Ledger persisted as a JSON file.

    Appends take a lock file next to the ledger, re-read it, check and
    replace it atomically, so several orchestrator processes can share one
    ledger on a common filesystem. Reads raise LedgerReadError when the file
    has become unreadable since ``open``.
    """

    def __init__(self, path: Path, *, lock_timeout: float = _LOCK_TIMEOUT_SECONDS) -> None:
        self.path = path
        self._lock_path = path.with_name(path.name + ".lock")
        self._lock_timeout = lock_timeout
        self._mutex = threading.Lock()

    @classmethod
    def open(cls, path: Path) -> Result[JsonLedgerStore, ReleaseError]:
        """Open a ledger, validating the file if it already exists."""
        store = cls(path)
        loaded = store._load()
        if isinstance(loaded, Err):
            return loaded
        return Ok(store)

    def _load(self) -> Result[list[ReleaseRecord], ReleaseError]:
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return Ok([])
        except OSError as e:
            return Err(
                ReleaseError(
                    kind="invalid_config",
                    message=f"failed to read ledger: {e}",
                    hint=str(self.path),
                )
            )

        try:
            obj: object = json.loads(text)
        except json.JSONDecodeError as e:
            return Err(
                ReleaseError(
                    kind="invalid_config",
                    message=f"invalid JSON in ledger: {e}",
                    hint=str(self.path),
                )
            )

        data = as_str_dict(obj)
        raw = get_list(data, "records") if data is not None else None
        if data is None or raw is None or data.get("schema") != LEDGER_SCHEMA:
            return Err(
                ReleaseError(
                    kind="invalid_config",
                    message="unsupported ledger format",
                    hint=f"{self.path} (expected schema {LEDGER_SCHEMA})",
                )
            )

        records: list[ReleaseRecord] = []
        for item in raw:
            record = record_from_dict(item)
            if record is None:
                return Err(
                    ReleaseError(
                        kind="invalid_config",
                        message="invalid record in ledger",
                        hint=str(self.path),
                    )
                )
            records.append(record)
        return Ok(records)

    def _snapshot(self) -> list[ReleaseRecord]:
        loaded = self._load()
        if isinstance(loaded, Err):
            raise LedgerReadError(loaded.error)
        return loaded.value

    def get_latest(self, branch: str) -> ReleaseRecord | None:
        return _latest(self._snapshot(), branch)

    def get_by_commit(self, commit_id: str) -> ReleaseRecord | None:
        return next((r for r in self._snapshot() if r.commit_id == commit_id), None)

    def get_by_tag(self, tag: str) -> ReleaseRecord | None:
        return next((r for r in self._snapshot() if r.tag == tag), None)

    def records(self, branch: str | None = None) -> tuple[ReleaseRecord, ...]:
        return tuple(r for r in self._snapshot() if branch is None or r.branch == branch)

    def append_if_absent(self, record: ReleaseRecord) -> Result[None, LedgerConflict]:
        with self._mutex:
            try:
                with exclusive_lock(self._lock_path, timeout=self._lock_timeout):
                    loaded = self._load()
                    if isinstance(loaded, Err):
                        return Err(LedgerConflict(kind="unavailable", message=loaded.error.message))

                    records = loaded.value
                    conflict = _check_append(records, record)
                    if conflict is not None:
                        return Err(conflict)

                    records.append(record)
                    payload: StrDict = {
                        "schema": LEDGER_SCHEMA,
                        "records": [record_to_dict(r) for r in records],
                    }
                    atomic_write_text(self.path, json.dumps(payload, indent=2) + "\n")
            except TimeoutError as e:
                return Err(LedgerConflict(kind="busy", message=str(e)))
            except OSError as e:
                return Err(
                    LedgerConflict(kind="unavailable", message=f"failed to write ledger: {e}")
                )
        return Ok(None)


def _commit_to_dict(c: Commit) -> StrDict:
    return {
        "id": c.id,
        "parents": list(c.parent_ids),
        "message": c.message,
        "timestamp": c.timestamp.isoformat() if c.timestamp else None,
    }


def _commit_from_dict(obj: object) -> Commit | None:
    d = as_str_dict(obj)
    if d is None:
        return None
    commit_id = get_str(d, "id")
    message = d.get("message")
    parents = as_obj_list(d.get("parents"))
    if commit_id is None or not isinstance(message, str) or parents is None:
        return None
    if not all(isinstance(p, str) for p in parents):
        return None
    ts = _parse_datetime(d.get("timestamp"))
    return Commit(
        id=commit_id,
        parent_ids=tuple(str(p) for p in parents),
        message=message,
        timestamp=ts,
    )


def _parse_datetime(value: object) -> datetime | None:
    if not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def record_to_dict(r: ReleaseRecord) -> StrDict:
    return {
        "branch": r.branch,
        "tag": r.tag,
        "commit_id": r.commit_id,
        "created_at": r.created_at.isoformat(),
        "bump_kind": str(r.bump_kind),
        "source_commits": [_commit_to_dict(c) for c in r.source_commits],
    }


def record_from_dict(obj: object) -> ReleaseRecord | None:
    """Parse a serialized record; None if any field is missing or malformed."""
    d = as_str_dict(obj)
    if d is None:
        return None

    branch = get_str(d, "branch")
    tag = get_str(d, "tag")
    commit_id = get_str(d, "commit_id")
    created_at = _parse_datetime(d.get("created_at"))
    bump_name = get_str(d, "bump_kind")
    if branch is None or tag is None or commit_id is None or created_at is None:
        return None

    version: Version | None = parse_tag(tag)
    if version is None or bump_name is None:
        return None
    try:
        bump = BumpKind[bump_name.upper()]
    except KeyError:
        return None

    raw_commits = as_obj_list(d.get("source_commits")) or []
    commits: list[Commit] = []
    for item in raw_commits:
        c = _commit_from_dict(item)
        if c is None:
            return None
        commits.append(c)

    return ReleaseRecord(
        branch=branch,
        version=version,
        commit_id=commit_id,
        created_at=created_at,
        bump_kind=bump,
        source_commits=tuple(commits),
    )
