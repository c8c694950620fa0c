"""
Call-Center CRM - Service Points de service

Collection: service_points
Chaque point référence governorate_id (racine location) et district_id
(enfant direct de ce gouvernorat).
"""

import logging
import re
import uuid
from typing import Any, Dict, List, Optional

from pymongo.errors import BulkWriteError

from config import db as default_db, now_iso
from models.taxonomy import TaxonomyType
from services.bulk_writer import PartialChunkWrite
from services.taxonomy_store import NodeStore

logger = logging.getLogger("service_points")


class ServicePointRepository:

    def __init__(self, database=None, store: Optional[NodeStore] = None):
        self.database = database if database is not None else default_db
        self.store = store or NodeStore(self.database)

    @property
    def collection(self):
        return self.database.service_points

    # ---- Écriture en masse (collaborateur de l'import) ----

    async def insert_many(self, records: List[Dict[str, Any]]) -> int:
        docs = []
        for record in records:
            doc = dict(record)
            doc.setdefault("id", str(uuid.uuid4()))
            doc.setdefault("created_at", now_iso())
            docs.append(doc)
        if not docs:
            return 0
        try:
            # non ordonné: un document rejeté n'empêche pas les autres du lot
            await self.collection.insert_many(docs, ordered=False)
        except BulkWriteError as e:
            inserted = e.details.get("nInserted", 0)
            errors = e.details.get("writeErrors") or []
            first = errors[0].get("errmsg") if errors else str(e)
            raise PartialChunkWrite(inserted, f"{len(docs) - inserted} rejeté(s): {first}") from e
        return len(docs)

    # ---- Lecture ----

    async def list(
        self,
        search: Optional[str] = None,
        point_type: Optional[str] = None,
        governorate_id: Optional[str] = None,
        district_id: Optional[str] = None,
        deposit_withdrawal: Optional[str] = None,
        registration_activation: Optional[str] = None,
        limit: int = 5000,
    ) -> List[Dict[str, Any]]:
        query: Dict[str, Any] = {}
        if point_type:
            query["type"] = point_type
        if governorate_id:
            query["governorate_id"] = governorate_id
        if district_id:
            query["district_id"] = district_id
        if deposit_withdrawal:
            query["deposit_withdrawal"] = deposit_withdrawal
        if registration_activation:
            query["registration_activation"] = registration_activation
        if search:
            pattern = re.escape(search.strip())
            query["$or"] = [
                {"name": {"$regex": pattern, "$options": "i"}},
                {"phone": {"$regex": pattern}},
                {"address": {"$regex": pattern, "$options": "i"}},
            ]

        points = await self.collection.find(query, {"_id": 0}).sort("name", 1).to_list(limit)
        return await self._enrich(points)

    async def get(self, point_id: str) -> Optional[Dict[str, Any]]:
        point = await self.collection.find_one({"id": point_id}, {"_id": 0})
        if not point:
            return None
        return (await self._enrich([point]))[0]

    async def _enrich(self, points: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Ajoute governorate/district {id, name}"""
        if not points:
            return points
        names = {n["id"]: n["name"] for n in await self.store.list(TaxonomyType.LOCATION)}
        for p in points:
            gid, did = p.get("governorate_id"), p.get("district_id")
            p["governorate"] = {"id": gid, "name": names[gid]} if gid in names else None
            p["district"] = {"id": did, "name": names[did]} if did in names else None
        return points

    # ---- CRUD unitaire ----

    async def validate_location(self, governorate_id: str, district_id: str) -> Optional[str]:
        """Message d'erreur, ou None si le couple est cohérent"""
        gov = await self.store.get(TaxonomyType.LOCATION, governorate_id)
        if not gov:
            return "Gouvernorat introuvable"
        dist = await self.store.get(TaxonomyType.LOCATION, district_id)
        if not dist:
            return "District introuvable"
        if dist.get("parent_id") != governorate_id:
            return "Le district n'appartient pas à ce gouvernorat"
        return None

    async def create(self, data: Dict[str, Any]) -> Dict[str, Any]:
        point = dict(data)
        point["id"] = str(uuid.uuid4())
        point["created_at"] = now_iso()
        point["updated_at"] = now_iso()
        await self.collection.insert_one(point)
        point.pop("_id", None)
        logger.info(f"Point de service créé: {point['id'][:8]} '{point.get('name')}'")
        return point

    async def update(self, point_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        update = dict(fields)
        update["updated_at"] = now_iso()
        result = await self.collection.update_one({"id": point_id}, {"$set": update})
        if result.matched_count == 0:
            return None
        return await self.get(point_id)

    async def delete(self, point_id: str) -> bool:
        result = await self.collection.delete_one({"id": point_id})
        return result.deleted_count > 0
