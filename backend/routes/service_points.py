"""
Call-Center CRM - Routes Points de service (agents / points de vente)

CRUD + recherche. Les localités viennent de la taxonomie location.
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from typing import Optional

from models.service_point import ServicePointCreate, ServicePointUpdate
from routes.deps import get_actor, get_database
from services.event_logger import log_event
from services.service_points import ServicePointRepository

router = APIRouter(prefix="/service-points", tags=["Service Points"])


def get_repository(database=Depends(get_database)) -> ServicePointRepository:
    return ServicePointRepository(database)


@router.get("")
async def list_service_points(
    search: Optional[str] = Query(None, description="Nom, téléphone ou adresse"),
    type: Optional[str] = Query(None, description="Agent | POS"),
    governorate_id: Optional[str] = None,
    district_id: Optional[str] = None,
    deposit_withdrawal: Optional[str] = None,
    registration_activation: Optional[str] = None,
    repo: ServicePointRepository = Depends(get_repository),
):
    """Liste les points de service"""
    point_type = None if not type or type == "All" else type
    points = await repo.list(
        search=search,
        point_type=point_type,
        governorate_id=governorate_id,
        district_id=district_id,
        deposit_withdrawal=deposit_withdrawal,
        registration_activation=registration_activation,
    )
    return {"service_points": points, "count": len(points)}


@router.get("/{point_id}")
async def get_service_point(point_id: str, repo: ServicePointRepository = Depends(get_repository)):
    point = await repo.get(point_id)
    if not point:
        raise HTTPException(status_code=404, detail="Point de service non trouvé")
    return {"service_point": point}


@router.post("")
async def create_service_point(
    data: ServicePointCreate,
    repo: ServicePointRepository = Depends(get_repository),
    actor: str = Depends(get_actor),
):
    error = await repo.validate_location(data.governorate_id, data.district_id)
    if error:
        raise HTTPException(status_code=400, detail=error)

    payload = data.dict()
    payload["type"] = data.type.value
    point = await repo.create(payload)

    await log_event(
        action="create_service_point",
        entity_type="service_point",
        entity_id=point["id"],
        user=actor,
        details={"name": point.get("name")},
        database=repo.database,
    )
    return {"success": True, "service_point": point}


@router.put("/{point_id}")
async def update_service_point(
    point_id: str,
    data: ServicePointUpdate,
    repo: ServicePointRepository = Depends(get_repository),
    actor: str = Depends(get_actor),
):
    update = {k: v for k, v in data.dict().items() if v is not None}
    if "type" in update:
        update["type"] = data.type.value

    if "governorate_id" in update or "district_id" in update:
        current = await repo.get(point_id)
        if not current:
            raise HTTPException(status_code=404, detail="Point de service non trouvé")
        error = await repo.validate_location(
            update.get("governorate_id", current.get("governorate_id")),
            update.get("district_id", current.get("district_id")),
        )
        if error:
            raise HTTPException(status_code=400, detail=error)

    point = await repo.update(point_id, update)
    if not point:
        raise HTTPException(status_code=404, detail="Point de service non trouvé")

    await log_event(
        action="update_service_point",
        entity_type="service_point",
        entity_id=point_id,
        user=actor,
        details={"fields": sorted(update.keys())},
        database=repo.database,
    )
    return {"success": True, "service_point": point}


@router.delete("/{point_id}")
async def delete_service_point(
    point_id: str,
    repo: ServicePointRepository = Depends(get_repository),
    actor: str = Depends(get_actor),
):
    if not await repo.delete(point_id):
        raise HTTPException(status_code=404, detail="Point de service non trouvé")

    await log_event(
        action="delete_service_point",
        entity_type="service_point",
        entity_id=point_id,
        user=actor,
        database=repo.database,
    )
    return {"success": True, "deleted_id": point_id}
