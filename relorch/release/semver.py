from __future__ import annotations

import re
from dataclasses import dataclass

from relorch.release.model import BumpKind


_TAG_RE = re.compile(r"^v(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)$")


@dataclass(frozen=True, slots=True, order=True)
class Version:
    major: int
    minor: int
    patch: int

    def __post_init__(self) -> None:
        if self.major < 0 or self.minor < 0 or self.patch < 0:
            raise ValueError(f"version components must be non-negative: {self}")

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"

    def to_tag(self) -> str:
        return f"v{self}"

    def bump(self, kind: BumpKind) -> Version:
        match kind:
            case BumpKind.MAJOR:
                return Version(self.major + 1, 0, 0)
            case BumpKind.MINOR:
                return Version(self.major, self.minor + 1, 0)
            case BumpKind.PATCH:
                return Version(self.major, self.minor, self.patch + 1)
            case BumpKind.NONE:
                return self
            case _:
                raise AssertionError(f"unexpected bump kind: {kind}")


INITIAL_VERSION = Version(0, 0, 0)


def parse_tag(tag: str) -> Version | None:
    """Parse ``v<major>.<minor>.<patch>``; anything else is not a release tag."""
    m = _TAG_RE.match(tag)
    if m is None:
        return None
    return Version(int(m.group(1)), int(m.group(2)), int(m.group(3)))


def is_release_tag(tag: str) -> bool:
    return _TAG_RE.match(tag) is not None
