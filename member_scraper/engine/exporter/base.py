"""Exporter Service Provider Interface."""

from __future__ import annotations

import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import IO, Sequence

from ...errors import ExportError
from ..records import StoredRow


def _default_file_mode() -> int:
    umask = os.umask(0)
    os.umask(umask)
    return 0o666 & ~umask


class BaseExporter(ABC):
    """Uniform exporter contract enabling plug-and-play outputs.

    Subclasses only render rows into a text stream; ``export`` owns the
    atomic write: the rendering goes to a temporary file next to the
    destination which replaces the destination only once it is complete.
    """

    format: str = ""
    extension: str = ""

    @abstractmethod
    def render(self, rows: Sequence[StoredRow], stream: IO[str]) -> None:
        """Write ``rows`` to ``stream`` in this exporter's format."""

    def export(self, rows: Sequence[StoredRow], destination: Path) -> Path:
        destination = Path(destination)
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=destination.parent, prefix=f".{destination.name}.", suffix=".tmp"
            )
        except OSError as exc:
            raise ExportError(f"cannot prepare {destination}: {exc}") from exc
        tmp_path = Path(tmp_name)
        try:
            with open(fd, "w", encoding="utf-8", newline="") as stream:
                self.render(rows, stream)
                stream.flush()
                os.fsync(stream.fileno())
            # mkstemp creates 0600 files
            os.chmod(tmp_path, _default_file_mode())
            os.replace(tmp_path, destination)
        except Exception as exc:
            tmp_path.unlink(missing_ok=True)
            if isinstance(exc, ExportError):
                raise
            raise ExportError(f"cannot write {destination}: {exc}") from exc
        return destination


__all__ = ["BaseExporter"]
