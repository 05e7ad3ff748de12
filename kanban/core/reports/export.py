"""Report export renderers.

JSON and CSV renderers are registered by default. PDF and Excel are known
formats without a bundled renderer; callers register one to enable them.
"""

import csv
import io
import json
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from ..errors import ValidationError
from .query import ReportResult


class ExportFormat(str, Enum):
    PDF = "pdf"
    EXCEL = "excel"
    JSON = "json"
    CSV = "csv"


class ReportRenderer(ABC):
    """Turns a report result into bytes of one format."""

    media_type = "application/octet-stream"

    @abstractmethod
    def render(self, result: ReportResult) -> bytes:
        ...


class JsonRenderer(ReportRenderer):
    media_type = "application/json"

    def __init__(self, indent: Optional[int] = 2):
        self.indent = indent

    def render(self, result: ReportResult) -> bytes:
        return json.dumps(result.to_dict(), indent=self.indent, sort_keys=True, default=str).encode("utf-8")


class CsvRenderer(ReportRenderer):
    """
    Renders a report as CSV sections.

    The first section lists the report metadata and every scalar figure as
    ``key,value`` rows. Each nested mapping or list of rows follows as its
    own section: a title row, a header row and the data rows, separated by
    blank lines.
    """

    media_type = "text/csv"

    def render(self, result: ReportResult) -> bytes:
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")

        writer.writerow(["key", "value"])
        writer.writerow(["report_type", result.report_type.value])
        writer.writerow(["start", result.query.date_range.start.isoformat()])
        writer.writerow(["end", result.query.date_range.end.isoformat()])
        writer.writerow(["generated_at", result.generated_at.isoformat()])

        sections: List[Tuple[str, Any]] = []
        for key, value in result.data.items():
            if isinstance(value, (dict, list)):
                sections.append((key, value))
            else:
                writer.writerow([key, _cell(value)])

        for title, value in sections:
            writer.writerow([])
            writer.writerow([title])
            header, rows = _table(value)
            writer.writerow(header)
            writer.writerows(rows)

        return buffer.getvalue().encode("utf-8")


def _cell(value) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True, default=str)
    return str(value)


def _table(value: Union[Dict[str, Any], List[Any]]) -> Tuple[List[str], List[List[str]]]:
    if isinstance(value, dict):
        # Mapping of uniform sub-mappings, e.g. per-stage counts
        if value and all(isinstance(v, dict) for v in value.values()):
            columns = _columns(value.values())
            rows = [[key] + [_cell(v.get(c)) for c in columns] for key, v in value.items()]
            return ["key"] + columns, rows
        return ["key", "value"], [[key, _cell(v)] for key, v in value.items()]

    if value and all(isinstance(item, dict) for item in value):
        columns = _columns(value)
        return columns, [[_cell(item.get(c)) for c in columns] for item in value]
    return ["value"], [[_cell(item)] for item in value]


def _columns(items: Iterable[Dict[str, Any]]) -> List[str]:
    columns: List[str] = []
    for item in items:
        for key in item:
            if key not in columns:
                columns.append(key)
    return columns


class ExportFormatter:
    """Registry of renderers keyed by export format."""

    def __init__(self, renderers: Optional[Dict[ExportFormat, ReportRenderer]] = None):
        self._renderers: Dict[ExportFormat, ReportRenderer] = {
            ExportFormat.JSON: JsonRenderer(),
            ExportFormat.CSV: CsvRenderer(),
        }
        for fmt, renderer in (renderers or {}).items():
            self.register(fmt, renderer)

    def register(self, fmt: Union[ExportFormat, str], renderer: ReportRenderer) -> None:
        self._renderers[self._format(fmt)] = renderer

    def supports(self, fmt: Union[ExportFormat, str]) -> bool:
        try:
            return self._format(fmt) in self._renderers
        except ValidationError:
            return False

    @property
    def formats(self) -> List[ExportFormat]:
        return [fmt for fmt in ExportFormat if fmt in self._renderers]

    def media_type(self, fmt: Union[ExportFormat, str]) -> str:
        return self._renderer(fmt).media_type

    def render(self, result: ReportResult, fmt: Union[ExportFormat, str]) -> bytes:
        """
        Render a report.

        Raises:
            ValidationError: If the format is unknown or has no renderer
        """
        return self._renderer(fmt).render(result)

    def _renderer(self, fmt) -> ReportRenderer:
        fmt = self._format(fmt)
        renderer = self._renderers.get(fmt)
        if renderer is None:
            raise ValidationError(
                f"No renderer registered for export format '{fmt.value}'",
                details=[{"field": "format", "message": "unsupported format", "value": fmt.value}],
            )
        return renderer

    @staticmethod
    def _format(fmt) -> ExportFormat:
        try:
            return ExportFormat(fmt.lower() if isinstance(fmt, str) else fmt)
        except ValueError:
            raise ValidationError(
                f"Unknown export format '{fmt}'",
                details=[{"field": "format", "message": "unknown format", "value": str(fmt)}],
            )
