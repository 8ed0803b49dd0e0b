from __future__ import annotations

import json
from pathlib import Path

from relorch.core.result import Err, Ok, Result
from relorch.platform.files import atomic_write_text
from relorch.release.errors import ReleaseError, transient
from relorch.release.ledger import record_to_dict
from relorch.release.model import ReleaseRecord

RELEASE_METADATA_SCHEMA = 1


class FileReleaseStore:
    """Publishes release metadata as ``<tag>.json`` plus ``<tag>.md`` notes in a directory.

    Publishing the same tag twice rewrites identical content, so a retried
    publish converges.
    """

    def __init__(self, root: Path) -> None:
        self.root = root

    def metadata_path(self, tag: str) -> Path:
        return self.root / f"{tag}.json"

    def notes_path(self, tag: str) -> Path:
        return self.root / f"{tag}.md"

    def publish(self, record: ReleaseRecord, notes: str) -> Result[None, ReleaseError]:
        payload: dict[str, object] = {
            "schema": RELEASE_METADATA_SCHEMA,
            "notes_file": self.notes_path(record.tag).name,
            **record_to_dict(record),
        }
        try:
            atomic_write_text(self.notes_path(record.tag), notes)
            # Metadata last: its presence is what is_published checks.
            atomic_write_text(
                self.metadata_path(record.tag), json.dumps(payload, indent=2) + "\n"
            )
        except OSError as e:
            return Err(transient(f"failed to publish {record.tag}: {e}", hint=str(self.root)))
        return Ok(None)

    def is_published(self, tag: str) -> Result[bool, ReleaseError]:
        try:
            return Ok(self.metadata_path(tag).is_file())
        except OSError as e:
            return Err(transient(f"failed to check {tag}: {e}", hint=str(self.root)))
