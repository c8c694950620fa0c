"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Call-Center CRM - Import tableur des points de service                      ║
║                                                                              ║
║  Deux étapes EXPLICITES:                                                     ║
║  1. parse  → lignes valides + plan des localités manquantes                  ║
║  2. confirm (validé par l'utilisateur) → création des localités,             ║
║     résolution des lignes, écriture en masse par lots                        ║
║                                                                              ║
║  RÈGLE: l'import n'est PAS transactionnel. Les lots déjà écrits              ║
║  et les localités créées sont conservés.                                     ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


class ImportRunState(str, Enum):
    IDLE = "idle"
    PARSED = "parsed"
    PLANNED = "planned"
    RECONCILING = "reconciling"
    DONE = "done"
    CANCELLED = "cancelled"
    FAILED = "failed"


VALID_IMPORT_TRANSITIONS = {
    ImportRunState.IDLE: [ImportRunState.PARSED],
    ImportRunState.PARSED: [ImportRunState.PLANNED, ImportRunState.CANCELLED],
    ImportRunState.PLANNED: [ImportRunState.RECONCILING, ImportRunState.CANCELLED],
    ImportRunState.RECONCILING: [ImportRunState.DONE, ImportRunState.CANCELLED, ImportRunState.FAILED],
    ImportRunState.DONE: [],  # TERMINAL
    ImportRunState.CANCELLED: [],  # TERMINAL
    ImportRunState.FAILED: [],  # TERMINAL
}


class MissingGovernorate(BaseModel):
    """
    Entrée du plan, indexée par le nom canonique du gouvernorat.
    missing_districts: nom canonique → nom original
    """
    original_name: str
    governorate_missing: bool = False
    missing_districts: Dict[str, str] = Field(default_factory=dict)


class ImportParseRequest(BaseModel):
    """Matrice brute (lignes x cellules), position de l'entête inconnue"""
    matrix: List[List[Any]]


class ImportParseResult(BaseModel):
    total: int
    valid: int
    missing_plan: Dict[str, MissingGovernorate] = Field(default_factory=dict)
    rows: List[Dict[str, Any]] = Field(default_factory=list)

    @property
    def invalid(self) -> int:
        return self.total - self.valid


class ImportConfirmResult(BaseModel):
    status: ImportRunState = ImportRunState.DONE
    created_governorates: int = 0
    created_districts: int = 0
    resolved_count: int = 0
    dropped_rows: int = 0
    inserted_count: int = 0
    failed_count: int = 0
    failed_chunks: int = 0
    outcome: str = ""
    message: str = ""
    error: Optional[str] = None
