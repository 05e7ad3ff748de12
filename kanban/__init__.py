"""Kanban request approvals and operational reporting."""

__version__ = "0.1.0"
