"""File based exporters supporting JSON/CSV."""

from __future__ import annotations

import csv
import json
from typing import IO, Any, Sequence

from ..records import EXPORT_FIELDS, StoredRow
from .base import BaseExporter


class JsonExporter(BaseExporter):
    """Write rows as one JSON array; absent fields are explicit nulls."""

    format = "json"
    extension = "json"

    def __init__(self, indent: int | None = 2) -> None:
        self.indent = indent

    def render(self, rows: Sequence[StoredRow], stream: IO[str]) -> None:
        json.dump([row.to_export() for row in rows], stream, ensure_ascii=False, indent=self.indent)
        stream.write("\n")


class CsvExporter(BaseExporter):
    """Write rows as RFC 4180 CSV with a header row."""

    format = "csv"
    extension = "csv"

    def render(self, rows: Sequence[StoredRow], stream: IO[str]) -> None:
        writer = csv.writer(stream, quoting=csv.QUOTE_MINIMAL, lineterminator="\r\n")
        writer.writerow(EXPORT_FIELDS)
        for row in rows:
            data = row.to_export()
            writer.writerow([self._cell(data[name]) for name in EXPORT_FIELDS])

    @staticmethod
    def _cell(value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)


__all__ = ["CsvExporter", "JsonExporter"]
