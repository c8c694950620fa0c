"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Call-Center CRM - Import Run State Machine                                  ║
║                                                                              ║
║  idle → parsed → planned → reconciling → done | cancelled | failed           ║
║                                                                              ║
║  SEUL CE MODULE change le state d'un import_run.                             ║
║  planned → reconciling est conditionnel (filtre sur state): deux             ║
║  confirmations du même run ne peuvent pas réconcilier deux fois.             ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
import uuid
from typing import Any, Dict, List, Optional

from config import db as default_db, now_iso
from models.imports import ImportParseResult, ImportRunState, VALID_IMPORT_TRANSITIONS
from services.bulk_writer import write_in_chunks
from services.taxonomy_errors import InvalidImportTransition, PersistenceError

logger = logging.getLogger("import_runs")

ROW_CHUNK_SIZE = 500


def validate_import_transition(run_id: str, from_state: str, to_state: str) -> bool:
    valid_next = VALID_IMPORT_TRANSITIONS.get(ImportRunState(from_state), [])
    if ImportRunState(to_state) not in valid_next:
        raise InvalidImportTransition(
            f"INVALID TRANSITION: import_run {run_id} cannot go from '{from_state}' to '{to_state}'. "
            f"Valid transitions from '{from_state}': {[s.value for s in valid_next]}"
        )
    return True


class ImportRunStore:
    """
    Un run = un document import_runs (état, historique, plan) + ses lignes
    dans import_rows, écrites par lots: la taille du fichier source ne
    dépend pas de la limite BSON d'un document.
    """

    def __init__(self, database=None, row_chunk_size: int = ROW_CHUNK_SIZE):
        self.database = database if database is not None else default_db
        self.row_chunk_size = row_chunk_size

    @property
    def collection(self):
        return self.database.import_runs

    @property
    def rows_collection(self):
        return self.database.import_rows

    async def insert_rows(self, docs: List[Dict[str, Any]]):
        await self.rows_collection.insert_many(docs)

    async def create(self, parsed: ImportParseResult, source: str = "", user: str = "system") -> Dict[str, Any]:
        """
        Crée le run directement en 'planned' (idle → parsed → planned tracés)

        Raises:
            PersistenceError si un lot de lignes n'a pas pu être écrit
            (le run et ses lignes déjà écrites sont alors supprimés)
        """
        now = now_iso()
        run = {
            "id": str(uuid.uuid4()),
            "taxonomy_type": "location",
            "source": source,
            "created_by": user,
            "state": ImportRunState.PLANNED.value,
            "history": [
                {"from": ImportRunState.IDLE.value, "to": ImportRunState.PARSED.value, "at": now},
                {"from": ImportRunState.PARSED.value, "to": ImportRunState.PLANNED.value, "at": now},
            ],
            "total": parsed.total,
            "valid": parsed.valid,
            "row_count": len(parsed.rows),
            "missing_plan": {k: v.dict() for k, v in parsed.missing_plan.items()},
            "result": None,
            "created_at": now,
            "updated_at": now,
        }
        await self.collection.insert_one(run)
        run.pop("_id", None)

        docs = [{"run_id": run["id"], "index": i, "row": row} for i, row in enumerate(parsed.rows)]
        written = await write_in_chunks(docs, self.insert_rows, self.row_chunk_size)
        if written.failed_chunks:
            await self.discard(run["id"])
            first = written.failed_chunks[0]
            raise PersistenceError(
                f"Lignes de l'import non enregistrées ({written.failed_count}/{len(docs)}): {first['error']}"
            )
        return run

    async def discard(self, run_id: str):
        await self.rows_collection.delete_many({"run_id": run_id})
        await self.collection.delete_one({"id": run_id})
        logger.warning(f"import_run {run_id[:8]} supprimé (lignes incomplètes)")

    async def get_rows(self, run_id: str) -> List[Dict[str, Any]]:
        docs = await self.rows_collection.find({"run_id": run_id}, {"_id": 0}).sort("index", 1).to_list(None)
        return [d["row"] for d in docs]

    async def get(self, run_id: str, include_rows: bool = False) -> Optional[Dict[str, Any]]:
        run = await self.collection.find_one({"id": run_id}, {"_id": 0})
        if run and include_rows:
            run["rows"] = await self.get_rows(run_id)
        return run

    async def transition(
        self,
        run_id: str,
        to_state: ImportRunState,
        result: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Raises:
            InvalidImportTransition si la transition est interdite ou si le run
            a changé d'état entre la lecture et l'écriture
        """
        run = await self.get(run_id)
        if not run:
            raise InvalidImportTransition(f"import_run {run_id} not found")

        from_state = run["state"]
        validate_import_transition(run_id, from_state, to_state.value)

        now = now_iso()
        update = {"state": to_state.value, "updated_at": now}
        if result is not None:
            update["result"] = result

        res = await self.collection.update_one(
            {"id": run_id, "state": from_state},
            {
                "$set": update,
                "$push": {"history": {"from": from_state, "to": to_state.value, "at": now}},
            },
        )
        if res.modified_count == 0:
            raise InvalidImportTransition(f"import_run {run_id} changed state concurrently")

        logger.info(f"import_run {run_id[:8]}: {from_state} → {to_state.value}")
        run.update(update)
        return run
