"""Seed data for departments.

Seeding is idempotent: departments are matched on their code, existing rows
are left untouched and missing ones are created.
"""

import os
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from sqlalchemy import select
from sqlalchemy.orm import Session

from kanban.common.logger import get_logger
from kanban.core.errors import ValidationError
from kanban.db.models import Department

logger = get_logger(__name__)

DEFAULT_DEPARTMENTS: List[Dict[str, Any]] = [
    {"code": "PC", "name": "Production Control", "is_production_control": True},
    {"code": "QC", "name": "Quality Control"},
]


def load_department_seed(seed_path: str) -> List[Dict[str, Any]]:
    """Load department definitions from a YAML file.

    The file holds a top-level ``departments`` list of mappings with
    ``code``, ``name`` and optionally ``is_production_control``.
    Environment variables in string values are expanded.

    Raises:
        FileNotFoundError: If the seed file doesn't exist
        yaml.YAMLError: If the seed file is invalid YAML
        ValidationError: If the structure is wrong
    """
    seed_file = Path(seed_path)
    if not seed_file.exists():
        raise FileNotFoundError(f"Department seed file not found: {seed_path}")

    with seed_file.open("r") as f:
        content = yaml.safe_load(f) or {}

    if not isinstance(content, dict) or not isinstance(content.get("departments", []), list):
        raise ValidationError(f"Seed file {seed_path} must contain a 'departments' list")

    departments = []
    for index, entry in enumerate(content.get("departments", [])):
        if not isinstance(entry, dict) or not entry.get("code") or not entry.get("name"):
            raise ValidationError(
                f"Department entry {index} in {seed_path} needs a code and a name",
                details=[{"field": f"departments.{index}", "message": "code and name are required"}],
            )
        departments.append({
            "code": os.path.expandvars(str(entry["code"])),
            "name": os.path.expandvars(str(entry["name"])),
            "is_production_control": bool(entry.get("is_production_control", False)),
        })
    return departments


def seed_departments(
    db: Session,
    departments: Optional[List[Dict[str, Any]]] = None,
    *,
    pc_department_code: str = "PC",
) -> Dict[str, Department]:
    """
    Create the configured departments.

    Args:
        db: Database session
        departments: Department definitions (DEFAULT_DEPARTMENTS when omitted)
        pc_department_code: Code of the production control department

    Returns:
        Dict mapping department code to Department object

    Raises:
        ValidationError: If the definitions do not name exactly one
            production control department
    """
    definitions = departments if departments is not None else DEFAULT_DEPARTMENTS

    pc_codes = {
        d["code"] for d in definitions
        if d.get("is_production_control") or d["code"] == pc_department_code
    }
    if len(pc_codes) != 1:
        raise ValidationError(
            f"Exactly one production control department is required, got {sorted(pc_codes)}"
        )

    seeded = {}
    for definition in definitions:
        code = definition["code"]
        existing = db.execute(select(Department).where(Department.code == code)).scalar_one_or_none()
        if existing:
            seeded[code] = existing
            continue

        department = Department(
            id=uuid.uuid4(),
            code=code,
            name=definition["name"],
            is_production_control=code in pc_codes,
        )
        db.add(department)
        seeded[code] = department
        logger.info(f"Seeded department {code} ({definition['name']})")

    db.flush()
    return seeded
