"""Extract-file archiver collaborator."""

from __future__ import annotations

import logging
from pathlib import Path
import shutil
from typing import Protocol


logger = logging.getLogger("telco_billing.archive")


class Archiver(Protocol):
    def archive(self, file_name: str) -> None: ...


class DirectoryArchiver:
    """Moves a fully loaded extract file from the extract root into the archive root."""

    def __init__(self, extract_root: Path, archive_root: Path) -> None:
        self.extract_root = Path(extract_root)
        self.archive_root = Path(archive_root)

    def archive(self, file_name: str) -> None:
        source = self.extract_root / file_name
        if not source.exists():
            logger.warning("Archive skipped, extract file missing: %s", source)
            return
        self.archive_root.mkdir(parents=True, exist_ok=True)
        target = self.archive_root / file_name
        shutil.move(str(source), str(target))
        logger.info("Archived extract %s -> %s", source, target)


class NullArchiver:
    def archive(self, file_name: str) -> None:
        return None
