from __future__ import annotations

from relorch.release.commits import parse_message
from relorch.release.model import ReleaseRecord

_SECTIONS: tuple[tuple[str, str], ...] = (
    ("feat", "Features"),
    ("fix", "Bug Fixes"),
    ("refactor", "Refactoring"),
    ("docs", "Documentation"),
    ("test", "Tests"),
    ("ci", "CI"),
    ("chore", "Chores"),
)


def render_release_notes(record: ReleaseRecord) -> str:
    """Markdown notes for a release, grouped by commit type, breaking changes first."""
    lines: list[str] = [f"# {record.tag}", ""]
    lines.append(f"Branch: {record.branch}")
    lines.append(f"Commit: {record.commit_id}")
    lines.append(f"Bump: {record.bump_kind}")

    parsed = [(c, parse_message(c.message)) for c in record.source_commits]

    breaking = [(c, p) for c, p in parsed if p.is_breaking]
    if breaking:
        lines.append("")
        lines.append("## Breaking Changes")
        for c, p in breaking:
            lines.append(_bullet(c.short_id, p.scope, p.description))

    for commit_type, title in _SECTIONS:
        items = [(c, p) for c, p in parsed if p.commit_type == commit_type and not p.is_breaking]
        if not items:
            continue
        lines.append("")
        lines.append(f"## {title}")
        for c, p in items:
            lines.append(_bullet(c.short_id, p.scope, p.description))

    other = [(c, p) for c, p in parsed if not p.is_conventional]
    if other:
        lines.append("")
        lines.append("## Other")
        for c, p in other:
            lines.append(_bullet(c.short_id, None, p.description))

    return "\n".join(lines).rstrip() + "\n"


def _bullet(short_id: str, scope: str | None, description: str) -> str:
    prefix = f"**{scope}:** " if scope else ""
    return f"- {prefix}{description} ({short_id})"


def marker_commit_message(*, template: str, record: ReleaseRecord, notes: str) -> str:
    """Subject from ``template`` (``{tag}`` placeholder), notes as body.

    The default template yields a ``chore(release):`` subject, which
    classifies as NONE, so the marker commit never asks for another release.
    """
    subject = template.format(tag=record.tag)
    return f"{subject}\n\n{notes}"
