"""
catalog.py - Issue category catalog.

Loads the list of grievance categories from YAML. Each category belongs to
a home department queue: ACADEMIC and EXAM categories are handled by their
department admins, every other category by the campus admin.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .models.enums import Department

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_PATH = Path(__file__).with_name("default_issues.yaml")


@dataclass(frozen=True)
class IssueCategory:
    code: str
    title: str
    department: Department
    active: bool = True
    required_attachments: tuple[str, ...] = field(default_factory=tuple)


class IssueCatalog:
    """Immutable lookup of issue categories by code."""

    def __init__(self, categories: list[IssueCategory], version: str = "0") -> None:
        self.version = version
        self._by_code = {c.code: c for c in categories}

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> IssueCatalog:
        if not isinstance(data, dict) or not isinstance(data.get("categories"), dict):
            raise ValueError("Issue catalog must be a mapping with a 'categories' mapping")

        categories = []
        for code, entry in data["categories"].items():
            entry = entry or {}
            code = str(code).upper()
            categories.append(
                IssueCategory(
                    code=code,
                    title=entry.get("title", code.title()),
                    department=home_department_for(code, entry.get("department")),
                    active=bool(entry.get("active", True)),
                    required_attachments=tuple(entry.get("required_attachments", ())),
                )
            )
        return cls(categories, version=str(data.get("version", "0")))

    @classmethod
    def load(cls, path: str | Path | None = None) -> IssueCatalog:
        """
        Load a catalog from ``path``, falling back to the packaged default
        when the file does not exist.
        """
        config_path = Path(path) if path else DEFAULT_CATALOG_PATH
        if not config_path.exists():
            logger.info("Issue catalog %s not found, using packaged default", config_path)
            config_path = DEFAULT_CATALOG_PATH

        data = yaml.safe_load(config_path.read_text(encoding="utf-8"))
        catalog = cls.from_mapping(data)
        logger.info(
            "Issue catalog loaded: version=%s, categories=%d",
            catalog.version,
            len(catalog),
        )
        return catalog

    def get(self, code: str) -> IssueCategory | None:
        return self._by_code.get(code.upper()) if code else None

    def is_active(self, code: str) -> bool:
        category = self.get(code)
        return category is not None and category.active

    def home_department(self, code: str) -> Department:
        category = self.get(code)
        if category is not None:
            return category.department
        return home_department_for(code)

    def codes(self) -> list[str]:
        return sorted(self._by_code)

    def __len__(self) -> int:
        return len(self._by_code)


def home_department_for(code: str, declared: str | None = None) -> Department:
    """ACADEMIC and EXAM own their namesake categories; CAMPUS owns the rest."""
    code = (code or "").upper()
    if code == Department.ACADEMIC.value:
        return Department.ACADEMIC
    if code == Department.EXAM.value:
        return Department.EXAM
    if declared and declared.upper() in (Department.ACADEMIC.value, Department.EXAM.value):
        raise ValueError(
            f"Category {code} cannot be owned by {declared.upper()}; "
            "only its namesake category routes there"
        )
    return Department.CAMPUS
