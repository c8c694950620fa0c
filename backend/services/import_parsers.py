"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Call-Center CRM - Lecture des lignes d'import                               ║
║                                                                              ║
║  ALIAS DE COLONNES: table champ → synonymes ordonnés.                        ║
║  Le premier synonyme présent ET non vide l'emporte.                          ║
║  Nouvelle variante de tableur = une ligne de données, pas de code.           ║
║                                                                              ║
║  PARSEURS: chaîne ordonnée de stratégies, la première qui réussit            ║
║  l'emporte. Aucun parseur ne lève d'exception.                               ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import re
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from dateutil import parser as dateparser

# ════════════════════════════════════════════════════════════════════════════
# ALIAS TABLE
# ════════════════════════════════════════════════════════════════════════════

FIELD_ALIASES: Dict[str, List[str]] = {
    "name": ["الاسم", "Name", "اسم الوكيل", "الوكيل"],
    "type": ["النوع", "Type"],
    "governorate": ["المحافظة", "Governorate", "المناطقة"],
    "district": ["المديرية", "District", "البنديه"],
    "phone": ["الهاتف", "Phone", "رقم الهاتف"],
    "address": ["العنوان", "Address"],
    "google_map_link": ["الموقع", "Map", "رابط الموقع"],
    "record_date": ["التاريخ", "Date"],
    # "عدد التتفعيلات" : faute de frappe présente dans des fichiers réels
    "activations_count": ["عدد التفعيلات", "عدد التتفعيلات", "ActivationsCount", "عدد التنبيهات"],
    "cash_withdrawal_count": ["عدد عمليات السحب النقدي", "CashWithdrawalCount"],
    "deposit_count": ["عدد عمليات الإيداع", "DepositCount"],
    "deposit_withdrawal": ["سحب وايداع", "DepositStatus"],
    "registration_activation": ["تسجيل وتفعيل", "RegistrationStatus"],
}

MANDATORY_FIELDS = ("name", "governorate", "district")

# Mots-clés qui identifient la ligne d'entête (inclusion dans une cellule texte)
HEADER_KEYWORDS = ("الوكيل", "Name", "الاسم")

# Epoch des numéros de série tableur (1900 date system, bug 1900 inclus)
SPREADSHEET_EPOCH = date(1899, 12, 30)

MONTH_YEAR_RE = re.compile(r"^(\d{1,2})/(\d{4})$")
ISO_DATE_RE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})([T ].*)?$")


def _is_present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip() != ""
    return True


def extract_field(row: Dict[str, Any], field: str, default: Any = None) -> Any:
    """Premier alias présent et non vide"""
    for alias in FIELD_ALIASES[field]:
        value = row.get(alias)
        if _is_present(value):
            return value.strip() if isinstance(value, str) else value
    return default


def extract_mandatory(row: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Retourne {name, governorate, district} ou None si un champ obligatoire manque.
    """
    values = {f: extract_field(row, f) for f in MANDATORY_FIELDS}
    if not all(_is_present(v) for v in values.values()):
        return None
    return {k: str(v).strip() for k, v in values.items()}


# ════════════════════════════════════════════════════════════════════════════
# DATE STRATEGIES
# ════════════════════════════════════════════════════════════════════════════

def _date_from_native(raw: Any) -> Optional[str]:
    # openpyxl renvoie des datetime pour les cellules date
    if isinstance(raw, datetime):
        return raw.date().isoformat()
    if isinstance(raw, date):
        return raw.isoformat()
    return None


def _date_from_serial(raw: Any) -> Optional[str]:
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        return None
    try:
        return (SPREADSHEET_EPOCH + timedelta(days=int(raw))).isoformat()
    except (OverflowError, ValueError):
        return None


def _date_from_month_year(raw: Any) -> Optional[str]:
    if not isinstance(raw, str):
        return None
    m = MONTH_YEAR_RE.match(raw.strip())
    if not m:
        return None
    month, year = int(m.group(1)), int(m.group(2))
    if not 1 <= month <= 12:
        return None
    return f"{year:04d}-{month:02d}-01"


def _date_from_iso(raw: Any) -> Optional[str]:
    # dayfirst inverserait jour et mois d'une date ISO
    if not isinstance(raw, str):
        return None
    m = ISO_DATE_RE.match(raw.strip())
    if not m:
        return None
    try:
        return date(int(m.group(1)), int(m.group(2)), int(m.group(3))).isoformat()
    except ValueError:
        return None


def _date_from_string(raw: Any) -> Optional[str]:
    if not isinstance(raw, str) or not raw.strip():
        return None
    if MONTH_YEAR_RE.match(raw.strip()):
        # MM/YYYY au mois invalide: pas de repli
        return None
    try:
        return dateparser.parse(raw.strip(), dayfirst=True).date().isoformat()
    except (ValueError, OverflowError):
        return None


DATE_STRATEGIES: List[Callable[[Any], Optional[str]]] = [
    _date_from_native,
    _date_from_serial,
    _date_from_month_year,
    _date_from_iso,
    _date_from_string,
]


def parse_date(raw: Any) -> Optional[str]:
    """YYYY-MM-DD ou None - ne lève jamais"""
    if not _is_present(raw):
        return None
    for strategy in DATE_STRATEGIES:
        parsed = strategy(raw)
        if parsed:
            return parsed
    return None


# ════════════════════════════════════════════════════════════════════════════
# NUMBERS / TYPE
# ════════════════════════════════════════════════════════════════════════════

def parse_int(raw: Any, default: int = 0) -> int:
    """Compteur entier, default en cas d'échec"""
    if isinstance(raw, bool) or not _is_present(raw):
        return default
    if isinstance(raw, (int, float)):
        try:
            return int(raw)
        except (OverflowError, ValueError):
            return default
    m = re.match(r"^\s*([+-]?\d+)", str(raw))
    return int(m.group(1)) if m else default


def detect_point_type(raw: Any) -> str:
    """'بيع' ou 'pos' → POS, sinon Agent"""
    text = str(raw) if _is_present(raw) else ""
    if "بيع" in text or "pos" in text.lower():
        return "POS"
    return "Agent"


def cell_to_text(raw: Any) -> Optional[str]:
    """Les téléphones arrivent souvent en nombre (773123456.0)"""
    if not _is_present(raw):
        return None
    if isinstance(raw, float) and raw.is_integer():
        return str(int(raw))
    return str(raw).strip()
