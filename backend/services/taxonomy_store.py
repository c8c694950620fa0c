"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Call-Center CRM - NodeStore (persistance des taxonomies)                    ║
║                                                                              ║
║  Une collection MongoDB par type:                                            ║
║  classification → classifications      location → locations                  ║
║  procedure → procedures                action → actions                      ║
║  account_type → account_types                                                ║
║                                                                              ║
║  Lecture triée: (sort_order ASC, created_at ASC)                             ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
import uuid
from typing import Any, Dict, List, Optional, Union

from pymongo.errors import PyMongoError

from config import db as default_db, now_iso
from models.taxonomy import TaxonomyType, ROOT_ONLY_TYPES
from services.taxonomy_errors import NodeNotFound, PersistenceError, UnknownTaxonomyType

logger = logging.getLogger("taxonomy_store")

TABLE_MAP: Dict[TaxonomyType, str] = {
    TaxonomyType.CLASSIFICATION: "classifications",
    TaxonomyType.LOCATION: "locations",
    TaxonomyType.PROCEDURE: "procedures",
    TaxonomyType.ACTION: "actions",
    TaxonomyType.ACCOUNT_TYPE: "account_types",
}

LIST_LIMIT = 10000


def get_taxonomy_type_or_raise(value: Union[str, TaxonomyType]) -> TaxonomyType:
    """
    Retourne le TaxonomyType ou lève UnknownTaxonomyType.
    À appeler AVANT toute opération base.
    """
    if isinstance(value, TaxonomyType):
        return value
    try:
        return TaxonomyType(value)
    except ValueError:
        raise UnknownTaxonomyType(str(value))


class NodeStore:
    """Accès typé aux collections de noeuds"""

    def __init__(self, database=None):
        database = database if database is not None else default_db
        self.database = database
        missing = [t.value for t in TaxonomyType if t not in TABLE_MAP]
        if missing:
            raise RuntimeError(f"TABLE_MAP incomplet: {missing}")
        self._collections = {t: database[name] for t, name in TABLE_MAP.items()}

    def collection(self, taxonomy_type: Union[str, TaxonomyType]):
        return self._collections[get_taxonomy_type_or_raise(taxonomy_type)]

    async def ensure_indexes(self):
        for coll in self._collections.values():
            await coll.create_index("id", unique=True)
            await coll.create_index("parent_id")

    async def list(self, taxonomy_type) -> List[Dict[str, Any]]:
        coll = self.collection(taxonomy_type)
        try:
            return await coll.find({}, {"_id": 0}) \
                .sort([("sort_order", 1), ("created_at", 1)]) \
                .to_list(LIST_LIMIT)
        except PyMongoError as e:
            raise PersistenceError(f"Lecture {taxonomy_type} impossible: {e}") from e

    async def get(self, taxonomy_type, node_id: str) -> Optional[Dict[str, Any]]:
        coll = self.collection(taxonomy_type)
        try:
            return await coll.find_one({"id": node_id}, {"_id": 0})
        except PyMongoError as e:
            raise PersistenceError(f"Lecture du noeud {node_id} impossible: {e}") from e

    async def list_children(self, taxonomy_type, parent_id: str) -> List[Dict[str, Any]]:
        coll = self.collection(taxonomy_type)
        try:
            return await coll.find({"parent_id": parent_id}, {"_id": 0}) \
                .sort([("sort_order", 1), ("created_at", 1)]) \
                .to_list(LIST_LIMIT)
        except PyMongoError as e:
            raise PersistenceError(f"Lecture des enfants de {parent_id} impossible: {e}") from e

    async def insert(
        self,
        taxonomy_type,
        name: str,
        parent_id: Optional[str] = None,
        is_required: bool = False,
    ) -> Dict[str, Any]:
        """Crée un noeud, placé en dernier parmi ses frères"""
        taxonomy_type = get_taxonomy_type_or_raise(taxonomy_type)
        coll = self.collection(taxonomy_type)
        if taxonomy_type in ROOT_ONLY_TYPES:
            parent_id = None

        try:
            # max + 1 et non le nombre de frères: une suppression laisse des trous
            last = await coll.find(
                {"parent_id": parent_id}, {"_id": 0, "sort_order": 1}
            ).sort("sort_order", -1).to_list(1)
            sort_order = (last[0].get("sort_order") or 0) + 1 if last else 0
            node = {
                "id": str(uuid.uuid4()),
                "name": name,
                "parent_id": parent_id,
                "is_required": bool(is_required),
                "sort_order": sort_order,
                "created_at": now_iso(),
                "updated_at": now_iso(),
            }
            await coll.insert_one(node)
        except PyMongoError as e:
            raise PersistenceError(f"Création dans {TABLE_MAP[taxonomy_type]} impossible: {e}") from e

        node.pop("_id", None)
        return node

    async def update(self, taxonomy_type, node_id: str, fields: Dict[str, Any]) -> None:
        taxonomy_type = get_taxonomy_type_or_raise(taxonomy_type)
        coll = self.collection(taxonomy_type)
        update = dict(fields)
        update["updated_at"] = now_iso()
        try:
            result = await coll.update_one({"id": node_id}, {"$set": update})
        except PyMongoError as e:
            raise PersistenceError(f"Mise à jour du noeud {node_id} impossible: {e}") from e
        if result.matched_count == 0:
            raise NodeNotFound(taxonomy_type.value, node_id)

    async def delete(self, taxonomy_type, node_id: str) -> None:
        taxonomy_type = get_taxonomy_type_or_raise(taxonomy_type)
        coll = self.collection(taxonomy_type)
        try:
            result = await coll.delete_one({"id": node_id})
        except PyMongoError as e:
            raise PersistenceError(f"Suppression du noeud {node_id} impossible: {e}") from e
        if result.deleted_count == 0:
            raise NodeNotFound(taxonomy_type.value, node_id)
