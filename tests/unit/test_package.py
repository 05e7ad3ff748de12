"""Tests for package metadata."""

import kanban
import kanban.db


def test_version_lives_on_top_level_package():
    assert kanban.__version__ == "0.1.0"
    assert not hasattr(kanban.db, "__version__")
    assert kanban.db.__doc__ != kanban.__doc__
