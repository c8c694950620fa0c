"""
Call-Center CRM - Routes Import des points de service

Flux en deux temps:
1. POST /api/imports/service-points/upload (fichier) ou /parse (matrice JSON)
   → run 'planned' + plan des localités manquantes, AUCUNE écriture
2. POST /api/imports/{run_id}/confirm → création des localités + écriture par lots

POST /api/imports/{run_id}/cancel interrompt un run (entre deux lots si en cours).
"""

import logging

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from pymongo.errors import DocumentTooLarge, PyMongoError

from config import IMPORT_CHUNK_SIZE
from models.imports import ImportParseRequest, ImportParseResult, ImportRunState
from routes.deps import get_actor, get_database
from services.cancellation import get_token, register_token, release_token
from services.event_logger import log_event
from services.import_parsers import FIELD_ALIASES
from services.import_reconciler import ImportReconciler
from services.import_runs import ImportRunStore
from services.node_editor import NodeEditor
from services.service_points import ServicePointRepository
from services.spreadsheet_reader import UnsupportedSpreadsheet, read_matrix
from services.taxonomy_errors import InvalidImportTransition, PersistenceError
from services.taxonomy_store import NodeStore

logger = logging.getLogger("routes.imports")

router = APIRouter(prefix="/imports", tags=["Imports"])

TEMPLATE_ROW = {
    "التاريخ": "11/2025",
    "الوكيل": "مثال وكيل",
    "المناطقة": "أمانة العاصمة",
    "البنديه": "الوحدة",
    "العنوان": "شارع حدة - جوار الجامع",
    "عدد التفعيلات": 0,
    "عدد عمليات السحب النقدي": 0,
    "عدد عمليات الإيداع": 0,
}


def build_reconciler(database, actor: str) -> ImportReconciler:
    store = NodeStore(database)
    return ImportReconciler(
        store=store,
        editor=NodeEditor(store, user=actor),
        writer=ServicePointRepository(database, store),
        chunk_size=IMPORT_CHUNK_SIZE,
        user=actor,
    )


def _parse_response(run: dict, parsed: ImportParseResult) -> dict:
    return {
        "run_id": run["id"],
        "state": run["state"],
        "total": parsed.total,
        "valid": parsed.valid,
        "invalid": parsed.invalid,
        "missing_governorates": sum(1 for e in parsed.missing_plan.values() if e.governorate_missing),
        "missing_districts": sum(len(e.missing_districts) for e in parsed.missing_plan.values()),
        "missing_plan": {k: v.dict() for k, v in parsed.missing_plan.items()},
        "rows": parsed.rows,
    }


async def _mark_failed(runs: ImportRunStore, run_id: str, error: str):
    try:
        await runs.transition(run_id, ImportRunState.FAILED, result={"error": error})
    except (InvalidImportTransition, PyMongoError) as e:
        logger.error(f"Import {run_id[:8]}: passage en 'failed' impossible: {e}")


async def _parse_and_store(matrix, source: str, database, actor: str) -> dict:
    reconciler = build_reconciler(database, actor)
    try:
        parsed = await reconciler.run_parse(matrix)
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=str(e))
    try:
        run = await ImportRunStore(database).create(parsed, source=source, user=actor)
    except DocumentTooLarge as e:
        logger.error(f"Import '{source}' trop volumineux: {e}")
        raise HTTPException(status_code=413, detail="Fichier trop volumineux: découpez-le en plusieurs imports")
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return _parse_response(run, parsed)


@router.get("/service-points/template")
async def get_template():
    """Entête attendue + ligne exemple"""
    return {
        "headers": list(TEMPLATE_ROW.keys()),
        "example": TEMPLATE_ROW,
        "aliases": FIELD_ALIASES,
    }


@router.post("/service-points/parse")
async def parse_matrix_import(
    data: ImportParseRequest,
    database=Depends(get_database),
    actor: str = Depends(get_actor),
):
    return await _parse_and_store(data.matrix, "matrix", database, actor)


@router.post("/service-points/upload")
async def upload_import(
    file: UploadFile = File(...),
    database=Depends(get_database),
    actor: str = Depends(get_actor),
):
    content = await file.read()
    try:
        matrix = read_matrix(file.filename, content)
    except UnsupportedSpreadsheet as e:
        raise HTTPException(status_code=400, detail=str(e))
    return await _parse_and_store(matrix, file.filename, database, actor)


@router.get("/{run_id}")
async def get_import_run(run_id: str, database=Depends(get_database)):
    run = await ImportRunStore(database).get(run_id)
    if not run:
        raise HTTPException(status_code=404, detail="Import non trouvé")
    return {"run": run}


@router.post("/{run_id}/confirm")
async def confirm_import(
    run_id: str,
    database=Depends(get_database),
    actor: str = Depends(get_actor),
):
    runs = ImportRunStore(database)
    run = await runs.get(run_id, include_rows=True)
    if not run:
        raise HTTPException(status_code=404, detail="Import non trouvé")

    try:
        await runs.transition(run_id, ImportRunState.RECONCILING)
    except InvalidImportTransition as e:
        raise HTTPException(status_code=409, detail=str(e))

    token = register_token(run_id)
    try:
        result = await build_reconciler(database, actor).confirm(
            run.get("missing_plan") or {},
            run.get("rows") or [],
            token=token,
            run_id=run_id,
        )
    except PersistenceError as e:
        logger.error(f"Import {run_id[:8]} en échec: {e}")
        await _mark_failed(runs, run_id, str(e))
        raise HTTPException(status_code=500, detail=str(e))
    except Exception as e:
        # Tout échec inattendu sort le run de 'reconciling', sinon il n'est plus annulable
        logger.exception(f"Import {run_id[:8]} interrompu par une erreur inattendue")
        await _mark_failed(runs, run_id, f"{type(e).__name__}: {e}")
        raise HTTPException(status_code=500, detail=f"Import interrompu: {e}")
    finally:
        release_token(run_id)

    await runs.transition(run_id, result.status, result={**result.dict(), "status": result.status.value})
    await log_event(
        action="confirm_import",
        entity_type="import_run",
        entity_id=run_id,
        user=actor,
        details={
            "outcome": result.outcome,
            "inserted": result.inserted_count,
            "failed": result.failed_count,
            "created_governorates": result.created_governorates,
            "created_districts": result.created_districts,
        },
        database=database,
    )
    return {"success": result.failed_chunks == 0 and result.status == ImportRunState.DONE, **result.dict()}


@router.post("/{run_id}/cancel")
async def cancel_import(run_id: str, database=Depends(get_database)):
    runs = ImportRunStore(database)
    run = await runs.get(run_id)
    if not run:
        raise HTTPException(status_code=404, detail="Import non trouvé")

    if run["state"] == ImportRunState.RECONCILING.value:
        token = get_token(run_id)
        if not token:
            raise HTTPException(status_code=409, detail="Import en cours sur un autre processus")
        token.cancel("cancelled by user")
        return {"success": True, "state": run["state"], "cancel_requested": True}

    try:
        run = await runs.transition(run_id, ImportRunState.CANCELLED)
    except InvalidImportTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"success": True, "state": run["state"], "cancel_requested": False}
