"""Core workflow, access policy and reporting for kanban approvals."""
