"""
Call-Center CRM - Event Logger

Centralized audit trail for taxonomy edits and imports.
Single function to call from any route/service.
"""

import uuid
from config import db as default_db, now_iso


async def log_event(
    action: str,
    entity_type: str,
    entity_id: str,
    user: str = "system",
    details: dict = None,
    related: dict = None,
    database=None,
):
    """
    Write a single event to the event_log collection.

    Args:
        action: e.g. add_node, update_node, delete_node, reorder_nodes, confirm_import
        entity_type: classification | location | procedure | action | account_type | import_run
        entity_id: ID of the primary entity
        user: email of user performing action
        details: free-form dict (name, old_value, new_value, counts, etc.)
        related: linked entity IDs (parent_id, run_id, etc.)
        database: explicit db handle, defaults to config.db
    """
    database = database if database is not None else default_db
    await database.event_log.insert_one({
        "id": str(uuid.uuid4()),
        "action": action,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "user": user,
        "details": details or {},
        "related": related or {},
        "created_at": now_iso()
    })


async def get_events(
    entity_type: str = None,
    action: str = None,
    entity_id: str = None,
    user: str = None,
    limit: int = 100,
    skip: int = 0,
    database=None,
):
    database = database if database is not None else default_db
    query = {}
    if entity_type:
        query["entity_type"] = entity_type
    if action:
        query["action"] = action
    if entity_id:
        query["$or"] = [
            {"entity_id": entity_id},
            {"related.parent_id": entity_id},
        ]
    if user:
        query["user"] = {"$regex": user, "$options": "i"}
    return await database.event_log.find(query, {"_id": 0}) \
        .sort("created_at", -1) \
        .skip(skip) \
        .limit(limit) \
        .to_list(limit)
