"""
Call-Center CRM - Routes Event Log (audit trail)
"""

from fastapi import APIRouter, Depends, Query
from typing import Optional

from routes.deps import get_database
from services.event_logger import get_events

router = APIRouter(prefix="/event-log", tags=["EventLog"])


@router.get("")
async def list_events(
    action: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    user: Optional[str] = Query(None, alias="user_filter"),
    limit: int = Query(100, ge=1, le=1000),
    skip: int = Query(0, ge=0),
    database=Depends(get_database),
):
    """Liste les events avec filtres (plus récents d'abord)"""
    events = await get_events(
        entity_type=entity_type,
        action=action,
        entity_id=entity_id,
        user=user,
        limit=limit,
        skip=skip,
        database=database,
    )
    return {"events": events, "count": len(events)}


@router.get("/actions")
async def list_action_types(database=Depends(get_database)):
    """Liste les types d'actions distincts dans le log"""
    actions = await database.event_log.distinct("action")
    return {"actions": sorted(actions)}
