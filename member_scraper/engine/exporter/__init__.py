"""Exporter SPI and implementations."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Sequence

from ...errors import ExportError
from ..records import StoredRow
from .base import BaseExporter
from .file_exporter import CsvExporter, JsonExporter

EXPORTERS: dict[str, type[BaseExporter]] = {
    JsonExporter.format: JsonExporter,
    CsvExporter.format: CsvExporter,
}


def build_exporter(fmt: str) -> BaseExporter:
    try:
        return EXPORTERS[fmt.lower()]()
    except KeyError:
        raise ExportError(f"Unsupported export format: {fmt}") from None


def export_rows(rows: Sequence[StoredRow], fmt: str, destination: Path) -> Path:
    """Render ``rows`` as ``fmt`` into ``destination`` atomically."""

    return build_exporter(fmt).export(rows, destination)


def artifact_paths(
    base_name: str, output_dir: Path, formats: Iterable[str], timestamp: int
) -> dict[str, Path]:
    """Return ``<base_name>_<timestamp>.<ext>`` per requested format."""

    paths: dict[str, Path] = {}
    for fmt in formats:
        exporter_cls = EXPORTERS.get(fmt.lower())
        if exporter_cls is None:
            raise ExportError(f"Unsupported export format: {fmt}")
        paths[exporter_cls.format] = Path(output_dir) / f"{base_name}_{timestamp}.{exporter_cls.extension}"
    return paths


__all__ = [
    "BaseExporter",
    "CsvExporter",
    "EXPORTERS",
    "JsonExporter",
    "artifact_paths",
    "build_exporter",
    "export_rows",
]
