"""Renders target groups to a Prometheus file_sd JSON document with atomic replace."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Iterable

from ..discovery.models import TargetGroup

logger = logging.getLogger(__name__)


class FileSDWriter:
    """Keeps the published target groups keyed by source and rewrites the output file.

    A group carrying targets replaces the entry for its source; a group
    without targets removes it.
    """

    def __init__(self, path: str | Path):
        self._path = Path(path)
        self._groups: dict[str, TargetGroup] = {}
        self._last_written: str | None = None

    @property
    def path(self) -> Path:
        return self._path

    @property
    def groups(self) -> dict[str, TargetGroup]:
        return dict(self._groups)

    def apply(self, batch: Iterable[TargetGroup]) -> bool:
        """Merge one batch and write the document if it changed. Returns True if written."""
        for group in batch:
            if group.targets:
                self._groups[group.source] = group
            else:
                self._groups.pop(group.source, None)

        document = self.render()
        if document == self._last_written:
            logger.debug("Target groups unchanged, not rewriting", extra={"path": str(self._path)})
            return False

        self._write(document)
        self._last_written = document
        logger.info(
            "Wrote target groups",
            extra={"path": str(self._path), "targets": len(self._groups)},
        )
        return True

    def render(self) -> str:
        entries = [self._groups[source].to_dict() for source in sorted(self._groups)]
        return json.dumps(entries, indent=4, sort_keys=True)

    def _write(self, document: str) -> None:
        """Write to a temp file in the target directory, then rename it over the output."""
        directory = self._path.parent
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self._path.name}.", suffix=".tmp", dir=directory)
        try:
            with os.fdopen(fd, "w") as f:
                f.write(document)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self._path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise
