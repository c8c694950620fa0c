"""
Call-Center CRM - Lecture des fichiers importés (xlsx / csv)

Produit une matrice brute: liste de lignes, chaque ligne liste de cellules.
Aucune hypothèse sur la position de l'entête (voir import_reconciler.parse_matrix).
"""

import csv
import io
import zipfile
import logging
from datetime import date, datetime, time
from pathlib import Path
from typing import Any, List

import openpyxl
from openpyxl.utils.exceptions import InvalidFileException

logger = logging.getLogger("spreadsheet_reader")

ALLOWED_EXTENSIONS = {".xlsx", ".xlsm", ".csv"}
MAX_FILE_SIZE = 10 * 1024 * 1024  # 10 MB


class UnsupportedSpreadsheet(ValueError):
    pass


def _clean_cell(value: Any) -> Any:
    # Valeurs stockables telles quelles dans MongoDB
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, time):
        return value.isoformat()
    return value


def read_xlsx(content: bytes) -> List[List[Any]]:
    """Première feuille uniquement"""
    wb = openpyxl.load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    try:
        ws = wb.worksheets[0]
        return [[_clean_cell(c) for c in row] for row in ws.iter_rows(values_only=True)]
    finally:
        wb.close()


def read_csv(content: bytes) -> List[List[Any]]:
    text = content.decode("utf-8-sig", errors="replace")
    return [row for row in csv.reader(io.StringIO(text))]


def read_matrix(filename: str, content: bytes) -> List[List[Any]]:
    ext = Path(filename or "").suffix.lower()
    if ext not in ALLOWED_EXTENSIONS:
        raise UnsupportedSpreadsheet(
            f"Extension non autorisée. Extensions valides: {', '.join(sorted(ALLOWED_EXTENSIONS))}"
        )
    if len(content) > MAX_FILE_SIZE:
        raise UnsupportedSpreadsheet("Fichier trop volumineux (10 MB max)")

    try:
        matrix = read_csv(content) if ext == ".csv" else read_xlsx(content)
    except (OSError, KeyError, ValueError, zipfile.BadZipFile, InvalidFileException) as e:
        raise UnsupportedSpreadsheet(f"Fichier illisible: {e}") from e

    logger.info(f"Fichier '{filename}' lu: {len(matrix)} ligne(s)")
    return matrix
