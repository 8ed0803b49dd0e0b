"""Tests for conventional commit classification."""

from __future__ import annotations

import pytest

from relorch.release.commits import classify, max_bump, parse_message
from relorch.release.model import BumpKind
from relorch.test.fakes import make_commit


class TestClassify:
    @pytest.mark.parametrize(
        ("message", "expected"),
        [
            ("fix: handle empty body", BumpKind.PATCH),
            ("feat: add login", BumpKind.MINOR),
            ("feat(auth): add login", BumpKind.MINOR),
            ("chore: bump deps", BumpKind.NONE),
            ("docs: typo", BumpKind.NONE),
            ("refactor(core): split module", BumpKind.NONE),
            ("test: cover edge case", BumpKind.NONE),
            ("ci: cache wheels", BumpKind.NONE),
        ],
    )
    def test_types(self, message: str, expected: BumpKind) -> None:
        assert classify(message) is expected

    def test_bang_is_major(self) -> None:
        assert classify("feat!: new auth") is BumpKind.MAJOR

    def test_bang_with_scope_is_major(self) -> None:
        assert classify("fix(api)!: drop v1 endpoints") is BumpKind.MAJOR

    def test_breaking_change_footer_is_major(self) -> None:
        message = "feat: new config loader\n\nBREAKING CHANGE: old keys are rejected"
        assert classify(message) is BumpKind.MAJOR

    def test_breaking_chore_is_major(self) -> None:
        assert classify("chore!: drop python 3.11") is BumpKind.MAJOR

    def test_breaking_footer_needs_conventional_subject(self) -> None:
        message = "Update everything\n\nBREAKING CHANGE: lots"
        assert classify(message) is BumpKind.NONE

    def test_breaking_footer_must_start_the_line(self) -> None:
        message = "fix: typo\n\nSee BREAKING CHANGE: notes elsewhere"
        assert classify(message) is BumpKind.PATCH

    @pytest.mark.parametrize(
        "message",
        [
            "",
            "Merge pull request #12 from feature/x",
            "feat:missing space",
            "feat: ",
            "Feat: capitalised type",
            "perf: not a known type",
            "feat(): empty scope",
            "WIP",
        ],
    )
    def test_non_conventional_is_none(self, message: str) -> None:
        assert classify(message) is BumpKind.NONE


class TestParseMessage:
    def test_parsed_fields(self) -> None:
        parsed = parse_message("feat(auth)!: new login flow\n\nbody")
        assert parsed.commit_type == "feat"
        assert parsed.scope == "auth"
        assert parsed.description == "new login flow"
        assert parsed.is_breaking is True
        assert parsed.is_conventional is True

    def test_scope_containing_separator(self) -> None:
        parsed = parse_message("fix(api: v2): handle empty body")
        assert parsed.scope == "api: v2"
        assert parsed.description == "handle empty body"

    def test_description_without_scope(self) -> None:
        assert parse_message("fix: a: b").description == "a: b"

    def test_unparsed_keeps_subject(self) -> None:
        parsed = parse_message("Initial import\n\nlong body")
        assert parsed.is_conventional is False
        assert parsed.description == "Initial import"


def test_max_bump_picks_highest() -> None:
    commits = [
        make_commit("fix: a"),
        make_commit("feat: b"),
        make_commit("chore: c"),
    ]
    assert max_bump(commits) is BumpKind.MINOR


def test_max_bump_of_nothing_is_none() -> None:
    assert max_bump([]) is BumpKind.NONE
