from __future__ import annotations

import json
import threading
from collections.abc import Callable
from dataclasses import replace
from pathlib import Path

import pytest

from relorch.core.result import Err, Ok
from relorch.core.structured import StrDict
from relorch.release.ledger import (
    LEDGER_SCHEMA,
    InMemoryLedgerStore,
    JsonLedgerStore,
    LedgerStore,
    record_from_dict,
    record_to_dict,
)
from relorch.release.model import BumpKind
from relorch.test.fakes import commit_id, make_commit, make_record


@pytest.fixture(params=["memory", "json"])
def store(request: pytest.FixtureRequest, tmp_path: Path) -> LedgerStore:
    if request.param == "memory":
        return InMemoryLedgerStore()
    return JsonLedgerStore(tmp_path / "ledger.json")


class TestAppendIfAbsent:
    def test_append_then_lookup(self, store: LedgerStore) -> None:
        record = make_record((0, 1, 0), commit_id("a"))

        assert isinstance(store.append_if_absent(record), Ok)

        assert store.get_latest("main") == record
        assert store.get_by_commit(commit_id("a")) == record
        assert store.get_by_tag("v0.1.0") == record
        assert store.get_latest("develop") is None
        assert store.records() == (record,)

    def test_second_record_for_same_commit_is_already_exists(self, store: LedgerStore) -> None:
        store.append_if_absent(make_record((0, 1, 0), commit_id("a")))

        result = store.append_if_absent(make_record((0, 2, 0), commit_id("a")))

        assert isinstance(result, Err)
        assert result.error.kind == "already_exists"
        assert len(store.records()) == 1

    def test_tag_reuse_is_tag_taken(self, store: LedgerStore) -> None:
        store.append_if_absent(make_record((0, 1, 0), commit_id("a")))

        result = store.append_if_absent(make_record((0, 1, 0), commit_id("b")))

        assert isinstance(result, Err)
        assert result.error.kind == "tag_taken"

    def test_version_must_increase_per_branch(self, store: LedgerStore) -> None:
        store.append_if_absent(make_record((1, 0, 0), commit_id("a")))

        result = store.append_if_absent(make_record((0, 9, 0), commit_id("b")))

        assert isinstance(result, Err)
        assert result.error.kind == "not_monotonic"

    def test_branches_version_independently(self, store: LedgerStore) -> None:
        store.append_if_absent(make_record((2, 0, 0), commit_id("a"), branch="main"))

        result = store.append_if_absent(
            make_record((1, 1, 0), commit_id("b"), branch="release/1.x")
        )

        assert isinstance(result, Ok)
        assert store.get_latest("release/1.x") is not None
        assert [r.tag for r in store.records("main")] == ["v2.0.0"]

    def test_latest_is_highest_version(self, store: LedgerStore) -> None:
        for n, version in enumerate([(0, 1, 0), (0, 1, 1), (0, 2, 0)]):
            store.append_if_absent(make_record(version, commit_id(str(n))))

        latest = store.get_latest("main")

        assert latest is not None
        assert latest.tag == "v0.2.0"

    def test_concurrent_appends_admit_one_record_per_commit(self, store: LedgerStore) -> None:
        barrier = threading.Barrier(8)
        results: list[bool] = []
        lock = threading.Lock()

        def worker(n: int) -> None:
            record = make_record((0, n + 1, 0), commit_id("same"))
            barrier.wait()
            ok = isinstance(store.append_if_absent(record), Ok)
            with lock:
                results.append(ok)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == 1
        assert len(store.records()) == 1


def test_in_memory_rejects_conflicting_seed_records() -> None:
    with pytest.raises(ValueError):
        InMemoryLedgerStore(
            (make_record((0, 1, 0), commit_id("a")), make_record((0, 2, 0), commit_id("a")))
        )


class TestJsonLedgerStore:
    def test_missing_file_is_empty_ledger(self, tmp_path: Path) -> None:
        opened = JsonLedgerStore.open(tmp_path / "ledger.json")

        assert isinstance(opened, Ok)
        assert opened.value.records() == ()

    def test_records_survive_reopen(self, tmp_path: Path) -> None:
        path = tmp_path / "ledger.json"
        source = make_commit("feat: login", parents=(commit_id("root"),))
        record = replace(make_record((1, 4, 0), source.id), source_commits=(source,))
        JsonLedgerStore(path).append_if_absent(record)

        reopened = JsonLedgerStore.open(path)

        assert isinstance(reopened, Ok)
        (loaded,) = reopened.value.records()
        assert loaded.tag == "v1.4.0"
        assert loaded.commit_id == source.id
        assert loaded.created_at == record.created_at
        assert [c.message for c in loaded.source_commits] == ["feat: login"]
        assert loaded.source_commits[0].parent_ids == (commit_id("root"),)

        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["schema"] == LEDGER_SCHEMA
        assert data["records"][0]["bump_kind"] == "minor"

    def test_invalid_json_is_invalid_config(self, tmp_path: Path) -> None:
        path = tmp_path / "ledger.json"
        path.write_text("{not json", encoding="utf-8")

        opened = JsonLedgerStore.open(path)

        assert isinstance(opened, Err)
        assert opened.error.kind == "invalid_config"

    def test_unknown_schema_is_invalid_config(self, tmp_path: Path) -> None:
        path = tmp_path / "ledger.json"
        path.write_text(json.dumps({"schema": 99, "records": []}), encoding="utf-8")

        opened = JsonLedgerStore.open(path)

        assert isinstance(opened, Err)
        assert "schema" in (opened.error.hint or "")

    def test_malformed_record_is_invalid_config(self, tmp_path: Path) -> None:
        path = tmp_path / "ledger.json"
        path.write_text(
            json.dumps({"schema": LEDGER_SCHEMA, "records": [{"branch": "main"}]}),
            encoding="utf-8",
        )

        opened = JsonLedgerStore.open(path)

        assert isinstance(opened, Err)
        assert opened.error.message == "invalid record in ledger"

    def test_append_to_corrupt_ledger_is_unavailable(self, tmp_path: Path) -> None:
        path = tmp_path / "ledger.json"
        path.write_text("[]", encoding="utf-8")

        result = JsonLedgerStore(path).append_if_absent(make_record((0, 1, 0), commit_id("a")))

        assert isinstance(result, Err)
        assert result.error.kind == "unavailable"
        assert path.read_text(encoding="utf-8") == "[]"


@pytest.mark.parametrize(
    "mutate",
    [
        lambda d: d.pop("tag"),
        lambda d: d.update(tag="release-1"),
        lambda d: d.update(bump_kind="huge"),
        lambda d: d.update(created_at="yesterday"),
        lambda d: d.update(source_commits=[{"id": "x"}]),
    ],
)
def test_record_from_dict_rejects_malformed_fields(mutate: Callable[[StrDict], object]) -> None:
    data = dict(record_to_dict(make_record((0, 1, 0), commit_id("a"))))
    mutate(data)

    assert record_from_dict(data) is None


def test_record_dict_round_trip_without_sources() -> None:
    record = make_record((3, 2, 1), commit_id("a"), bump=BumpKind.PATCH)

    assert record_from_dict(record_to_dict(record)) == record
