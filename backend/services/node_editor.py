"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Call-Center CRM - NodeEditor (ajout / modification / suppression)           ║
║                                                                              ║
║  SUPPRESSION EN CASCADE (best-effort):                                       ║
║  - enfants découverts par requête, chaque sous-arbre supprimé AVANT          ║
║    son parent                                                                ║
║  - un échec dans une branche est journalisé, les branches soeurs             ║
║    continuent, le noeud racine est tenté quand même                          ║
║  - le résultat agrégé signale toute suppression partielle                    ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
from typing import Any, Dict, Optional

from pymongo.errors import PyMongoError

from models.taxonomy import TaxonomyType, ROOT_ONLY_TYPES, is_hierarchical
from services.event_logger import log_event
from services.taxonomy_errors import (
    CascadeDeleteFailure,
    DeleteResult,
    NodeNotFound,
    PersistenceError,
)
from services.taxonomy_store import NodeStore, get_taxonomy_type_or_raise

logger = logging.getLogger("node_editor")


class NodeEditor:

    def __init__(self, store: Optional[NodeStore] = None, user: str = "system"):
        self.store = store or NodeStore()
        self.user = user

    async def _audit(self, action: str, taxonomy_type: TaxonomyType, node_id: str, details: dict = None):
        # Le noeud est déjà écrit: un journal indisponible ne doit pas faire échouer l'opération
        try:
            await log_event(
                action=action,
                entity_type=taxonomy_type.value,
                entity_id=node_id,
                user=self.user,
                details=details,
                database=self.store.database,
            )
        except PyMongoError as e:
            logger.error(f"[{taxonomy_type.value}] Journal '{action}' non écrit pour {node_id[:8]}: {e}")

    # ==================== ADD ====================

    async def add(
        self,
        name: str,
        parent_id: Optional[str] = None,
        taxonomy_type="classification",
        is_required: bool = False,
    ) -> Dict[str, Any]:
        """
        Crée un noeud. Les types racine-seulement ignorent parent_id.
        Un parent_id doit exister dans le MÊME type.
        """
        taxonomy_type = get_taxonomy_type_or_raise(taxonomy_type)
        name = (name or "").strip()
        if not name:
            raise ValueError("Le nom est obligatoire")

        if taxonomy_type in ROOT_ONLY_TYPES:
            parent_id = None
        elif parent_id:
            parent = await self.store.get(taxonomy_type, parent_id)
            if not parent:
                raise NodeNotFound(taxonomy_type.value, parent_id)

        node = await self.store.insert(taxonomy_type, name, parent_id=parent_id, is_required=is_required)
        logger.info(f"[{taxonomy_type.value}] Noeud créé: {node['id'][:8]} '{name}' parent={parent_id}")

        await self._audit("add_node", taxonomy_type, node["id"], {"name": name, "parent_id": parent_id})
        return node

    # ==================== UPDATE ====================

    async def update(
        self,
        node_id: str,
        name: Optional[str] = None,
        taxonomy_type="classification",
        is_required: Optional[bool] = None,
        sort_order: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Mise à jour partielle - NodeNotFound si l'id n'existe pas pour ce type"""
        taxonomy_type = get_taxonomy_type_or_raise(taxonomy_type)

        fields = {}
        if name:
            fields["name"] = name.strip()
        if is_required is not None:
            fields["is_required"] = bool(is_required)
        if sort_order is not None:
            fields["sort_order"] = int(sort_order)

        if not fields:
            node = await self.store.get(taxonomy_type, node_id)
            if not node:
                raise NodeNotFound(taxonomy_type.value, node_id)
            return node

        await self.store.update(taxonomy_type, node_id, fields)
        await self._audit("update_node", taxonomy_type, node_id, {"fields": fields})
        return await self.store.get(taxonomy_type, node_id)

    # ==================== DELETE (CASCADE) ====================

    async def delete(self, node_id: str, taxonomy_type="classification") -> DeleteResult:
        """
        Supprime le noeud et tout son sous-arbre.

        Raises:
            NodeNotFound si le noeud n'existe pas
            CascadeDeleteFailure si au moins une branche a échoué
                (les suppressions réussies ne sont PAS annulées)
        """
        taxonomy_type = get_taxonomy_type_or_raise(taxonomy_type)

        node = await self.store.get(taxonomy_type, node_id)
        if not node:
            raise NodeNotFound(taxonomy_type.value, node_id)

        result = DeleteResult(node_id)
        await self._delete_subtree(taxonomy_type, node_id, result, visited=set())

        await self._audit("delete_node", taxonomy_type, node_id, {
            "name": node.get("name"),
            "deleted": len(result.deleted_ids),
            "failed": len(result.failed_ids),
        })

        if not result.ok:
            logger.error(
                f"[{taxonomy_type.value}] Suppression partielle de {node_id[:8]}: "
                f"{len(result.failed_ids)} échec(s), {len(result.errors)} erreur(s)"
            )
            raise CascadeDeleteFailure(result)

        logger.info(f"[{taxonomy_type.value}] {len(result.deleted_ids)} noeud(s) supprimé(s) depuis {node_id[:8]}")
        return result

    async def _delete_subtree(self, taxonomy_type: TaxonomyType, node_id: str, result: DeleteResult, visited: set):
        if node_id in visited:
            return
        visited.add(node_id)

        if is_hierarchical(taxonomy_type):
            try:
                children = await self.store.list_children(taxonomy_type, node_id)
            except PersistenceError as e:
                logger.error(f"[{taxonomy_type.value}] Lecture des enfants de {node_id[:8]} échouée: {e}")
                result.errors.append(str(e))
                children = []

            for child in children:
                await self._delete_subtree(taxonomy_type, child["id"], result, visited)

        try:
            await self.store.delete(taxonomy_type, node_id)
            result.deleted_ids.append(node_id)
        except NodeNotFound:
            # Déjà supprimé par ailleurs
            logger.warning(f"[{taxonomy_type.value}] Noeud {node_id[:8]} déjà absent")
        except PersistenceError as e:
            logger.error(f"[{taxonomy_type.value}] Suppression de {node_id[:8]} échouée: {e}")
            result.failed_ids.append(node_id)
            result.errors.append(str(e))
