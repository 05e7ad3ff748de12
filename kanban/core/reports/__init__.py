"""Reporting over kanban request history."""

from .aggregator import ReportAggregator
from .export import CsvRenderer, ExportFormat, ExportFormatter, JsonRenderer, ReportRenderer
from .query import ReportQuery, ReportResult, ReportType

__all__ = [
    "CsvRenderer",
    "ExportFormat",
    "ExportFormatter",
    "JsonRenderer",
    "ReportAggregator",
    "ReportQuery",
    "ReportRenderer",
    "ReportResult",
    "ReportType",
]
