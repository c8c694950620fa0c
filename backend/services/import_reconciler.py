"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Call-Center CRM - Réconciliation d'un import tableur                        ║
║                                                                              ║
║  PHASE 0 - parse   : détection de la ligne d'entête, lignes → dicts          ║
║  PHASE 1 - plan    : validation + localités manquantes (dédoublonnées)       ║
║  PHASE 2 - confirm : (validé par l'utilisateur)                              ║
║     1. snapshot rafraîchi                                                    ║
║     2. gouvernorats manquants créés UN PAR UN (jamais en parallèle)          ║
║     3. districts manquants créés un par un                                   ║
║     4. chaque ligne re-résolue sur le snapshot complété                      ║
║     5. écriture en masse par lots indépendants                               ║
║                                                                              ║
║  NON TRANSACTIONNEL: localités créées et lots écrits sont conservés.         ║
║  Deux imports simultanés peuvent créer deux fois le même gouvernorat.        ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
from typing import Any, Dict, List, Optional

from config import IMPORT_CHUNK_SIZE
from models.imports import ImportConfirmResult, ImportParseResult, ImportRunState, MissingGovernorate
from models.taxonomy import TaxonomyType
from services.bulk_writer import write_in_chunks
from services.cancellation import CancellationToken
from services.import_parsers import (
    HEADER_KEYWORDS,
    cell_to_text,
    detect_point_type,
    extract_field,
    extract_mandatory,
    parse_date,
    parse_int,
)
from services.node_editor import NodeEditor
from services.normalization import find_matching_node, names_match, normalize_text
from services.service_points import ServicePointRepository
from services.taxonomy_errors import ImportCancelled, NodeNotFound, PersistenceError
from services.taxonomy_store import NodeStore, get_taxonomy_type_or_raise
from services.tree_builder import build_tree

logger = logging.getLogger("import_reconciler")


# ════════════════════════════════════════════════════════════════════════════
# PHASE 0 - PARSE
# ════════════════════════════════════════════════════════════════════════════

def _row_is_empty(row) -> bool:
    if not row:
        return True
    return all(c is None or (isinstance(c, str) and not c.strip()) for c in row)


def find_header_row(matrix: List[List[Any]]) -> int:
    """Index de la première ligne contenant un mot-clé d'entête, -1 sinon"""
    for i, row in enumerate(matrix):
        for cell in row or []:
            if isinstance(cell, str) and any(k in cell for k in HEADER_KEYWORDS):
                return i
    return -1


def parse_matrix(matrix: List[List[Any]]) -> List[Dict[str, Any]]:
    """
    Matrice brute → liste de dicts entête → valeur.
    Sans entête reconnue, la première ligne sert d'entête (jamais d'erreur).
    """
    if not matrix:
        return []

    header_index = find_header_row(matrix)
    if header_index == -1:
        logger.info("Ligne d'entête non trouvée: première ligne utilisée")
        header_index = 0

    headers = matrix[header_index] or []
    rows = []
    for raw in matrix[header_index + 1:]:
        if _row_is_empty(raw):
            continue
        row = {}
        for index, header in enumerate(headers):
            if header is None or not str(header).strip():
                continue
            row[str(header).strip()] = raw[index] if index < len(raw) else None
        rows.append(row)
    return rows


# ════════════════════════════════════════════════════════════════════════════
# SNAPSHOT
# ════════════════════════════════════════════════════════════════════════════

class LocationSnapshot:
    """
    Vue locale gouvernorats → districts, construite une fois par phase.
    Les noeuds créés pendant la phase 2 y sont ajoutés immédiatement.
    """

    def __init__(self, forest: List[Dict[str, Any]]):
        self.governorates = forest

    def find_governorate(self, name) -> Optional[Dict[str, Any]]:
        return find_matching_node(name, self.governorates)

    def find_district(self, governorate: Optional[Dict[str, Any]], name) -> Optional[Dict[str, Any]]:
        if not governorate:
            return None
        return find_matching_node(name, governorate.get("children", []))

    def add_governorate(self, node: Dict[str, Any]) -> Dict[str, Any]:
        gov = dict(node)
        gov["children"] = []
        self.governorates.append(gov)
        return gov

    def add_district(self, governorate: Dict[str, Any], node: Dict[str, Any]) -> Dict[str, Any]:
        governorate.setdefault("children", []).append(node)
        return node


# ════════════════════════════════════════════════════════════════════════════
# PHASE 1 - PLAN (pur, sans I/O)
# ════════════════════════════════════════════════════════════════════════════

def _find_plan_key(plan: Dict[str, Any], canonical: str) -> Optional[str]:
    if canonical in plan:
        return canonical
    for key in plan:
        if names_match(key, canonical):
            return key
    return None


def plan_rows(rows: List[Dict[str, Any]], snapshot: LocationSnapshot) -> ImportParseResult:
    missing: Dict[str, MissingGovernorate] = {}
    valid_rows = []

    for row in rows:
        mandatory = extract_mandatory(row)
        if not mandatory:
            continue

        gov = snapshot.find_governorate(mandatory["governorate"])
        dist = snapshot.find_district(gov, mandatory["district"])

        if not gov or not dist:
            canonical_gov = normalize_text(mandatory["governorate"])
            key = _find_plan_key(missing, canonical_gov)
            if key is None:
                key = canonical_gov
                missing[key] = MissingGovernorate(
                    original_name=mandatory["governorate"],
                    governorate_missing=gov is None,
                )
            entry = missing[key]
            canonical_dist = normalize_text(mandatory["district"])
            if _find_plan_key(entry.missing_districts, canonical_dist) is None:
                entry.missing_districts[canonical_dist] = mandatory["district"]

        valid_rows.append(row)

    return ImportParseResult(
        total=len(rows),
        valid=len(valid_rows),
        missing_plan=missing,
        rows=valid_rows,
    )


def build_record(row: Dict[str, Any], mandatory: Dict[str, str], gov: Dict, dist: Dict) -> Dict[str, Any]:
    return {
        "name": mandatory["name"],
        "type": detect_point_type(extract_field(row, "type", "Agent")),
        "governorate_id": gov["id"],
        "district_id": dist["id"],
        "phone": cell_to_text(extract_field(row, "phone")),
        "address": cell_to_text(extract_field(row, "address")),
        "google_map_link": cell_to_text(extract_field(row, "google_map_link")),
        "deposit_withdrawal": cell_to_text(extract_field(row, "deposit_withdrawal")),
        "registration_activation": cell_to_text(extract_field(row, "registration_activation")),
        "record_date": parse_date(extract_field(row, "record_date")),
        "activations_count": parse_int(extract_field(row, "activations_count")),
        "cash_withdrawal_count": parse_int(extract_field(row, "cash_withdrawal_count")),
        "deposit_count": parse_int(extract_field(row, "deposit_count")),
    }


# ════════════════════════════════════════════════════════════════════════════
# RECONCILER
# ════════════════════════════════════════════════════════════════════════════

class ImportReconciler:

    def __init__(
        self,
        store: Optional[NodeStore] = None,
        editor: Optional[NodeEditor] = None,
        writer: Optional[ServicePointRepository] = None,
        chunk_size: int = IMPORT_CHUNK_SIZE,
        user: str = "system",
    ):
        self.store = store or NodeStore()
        self.editor = editor or NodeEditor(self.store, user=user)
        self.writer = writer or ServicePointRepository(self.store.database, self.store)
        self.chunk_size = chunk_size

    async def load_snapshot(self) -> LocationSnapshot:
        return LocationSnapshot(build_tree(await self.store.list(TaxonomyType.LOCATION)))

    async def run_parse(self, matrix: List[List[Any]], taxonomy_type="location") -> ImportParseResult:
        """Phases 0 et 1 - aucune écriture"""
        if get_taxonomy_type_or_raise(taxonomy_type) != TaxonomyType.LOCATION:
            raise ValueError("L'import ne concerne que la taxonomie location")

        rows = parse_matrix(matrix)
        snapshot = await self.load_snapshot()
        result = plan_rows(rows, snapshot)
        logger.info(
            f"Import analysé: {result.valid}/{result.total} lignes valides, "
            f"{len(result.missing_plan)} gouvernorat(s) à compléter"
        )
        return result

    async def confirm(
        self,
        missing_plan: Dict[str, Any],
        rows: List[Dict[str, Any]],
        token: Optional[CancellationToken] = None,
        run_id: Optional[str] = None,
    ) -> ImportConfirmResult:
        """Phase 2 - création des localités manquantes puis écriture"""
        token = token or CancellationToken()
        result = ImportConfirmResult(status=ImportRunState.RECONCILING)
        plan = {
            k: v if isinstance(v, MissingGovernorate) else MissingGovernorate(**v)
            for k, v in (missing_plan or {}).items()
        }

        try:
            token.raise_if_cancelled()
            snapshot = await self.load_snapshot()
            await self._create_missing(plan, snapshot, result, token)
        except ImportCancelled:
            logger.warning(
                f"Import annulé pendant la création des localités "
                f"({result.created_governorates} gouv., {result.created_districts} districts créés)"
            )
            result.status = ImportRunState.CANCELLED
            result.outcome = "cancelled"
            result.message = "تم إلغاء الاستيراد"
            return result

        records = []
        for row in rows:
            mandatory = extract_mandatory(row)
            gov = snapshot.find_governorate(mandatory["governorate"]) if mandatory else None
            dist = snapshot.find_district(gov, mandatory["district"]) if mandatory else None
            if not gov or not dist:
                result.dropped_rows += 1
                continue
            record = build_record(row, mandatory, gov, dist)
            if run_id:
                record["import_run_id"] = run_id
            records.append(record)
        result.resolved_count = len(records)

        if result.dropped_rows:
            logger.warning(f"{result.dropped_rows} ligne(s) sans localité résolue après création")

        if not records:
            result.status = ImportRunState.DONE
            result.outcome = "nothing_imported"
            result.message = "لم يتم استيراد أي سجلات. تأكد من صحة البيانات."
            return result

        written = await write_in_chunks(records, self.writer.insert_many, self.chunk_size, token)
        result.inserted_count = written.inserted_count
        result.failed_count = written.failed_count
        result.failed_chunks = len(written.failed_chunks)

        if written.cancelled:
            result.status = ImportRunState.CANCELLED
            result.outcome = "cancelled"
            result.message = f"تم إلغاء الاستيراد بعد إضافة {result.inserted_count} سجل"
        elif written.failed_chunks:
            result.status = ImportRunState.DONE
            result.outcome = "imported_with_partial_failures"
            result.message = (
                f"تم إضافة {result.inserted_count} سجل، وفشل {result.failed_count} سجل "
                f"في {result.failed_chunks} دفعة"
            )
        elif result.created_governorates or result.created_districts:
            result.status = ImportRunState.DONE
            result.outcome = "imported_with_new_taxonomy"
            result.message = f"تم إضافة {result.inserted_count} نقطة وإنشاء المناطق الجديدة."
        else:
            result.status = ImportRunState.DONE
            result.outcome = "imported"
            result.message = f"تم إضافة {result.inserted_count} نقطة."

        logger.info(
            f"Import terminé ({result.outcome}): {result.inserted_count} écrits, "
            f"{result.failed_count} en échec, {result.created_governorates} gouv. / "
            f"{result.created_districts} districts créés"
        )
        return result

    async def _create_missing(
        self,
        plan: Dict[str, MissingGovernorate],
        snapshot: LocationSnapshot,
        result: ImportConfirmResult,
        token: CancellationToken,
    ):
        # Séquentiel: un même gouvernorat ne doit pas être créé deux fois par ce run
        for entry in plan.values():
            token.raise_if_cancelled()

            gov = snapshot.find_governorate(entry.original_name)
            if not gov:
                try:
                    node = await self.editor.add(entry.original_name, None, TaxonomyType.LOCATION)
                except PersistenceError as e:
                    logger.error(f"Création du gouvernorat '{entry.original_name}' échouée: {e}")
                    continue
                gov = snapshot.add_governorate(node)
                result.created_governorates += 1

            for district_name in entry.missing_districts.values():
                token.raise_if_cancelled()
                if snapshot.find_district(gov, district_name):
                    continue
                try:
                    node = await self.editor.add(district_name, gov["id"], TaxonomyType.LOCATION)
                except (PersistenceError, NodeNotFound) as e:
                    logger.error(f"Création du district '{district_name}' échouée: {e}")
                    continue
                snapshot.add_district(gov, node)
                result.created_districts += 1
