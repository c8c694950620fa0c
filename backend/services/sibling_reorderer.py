"""
Call-Center CRM - Réordonnancement des frères (glisser-déposer)

Règles:
- uniquement entre noeuds du MÊME parent (sinon CrossParentReorder, rien n'est écrit)
- le noeud déplacé est retiré PUIS réinséré juste avant la cible
- tout le groupe est renuméroté 0..n-1 et chaque sort_order est écrit en parallèle
- l'arbre en mémoire n'est pas modifié: l'appelant relit l'arbre ensuite
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from services.event_logger import log_event
from services.taxonomy_errors import CrossParentReorder, NodeNotFound, PersistenceError
from services.taxonomy_store import NodeStore, get_taxonomy_type_or_raise

logger = logging.getLogger("sibling_reorderer")


class SiblingIndex:
    """
    Index plat id → parent, construit une fois par opération.
    Même règle que build_tree: un parent introuvable = racine.
    """

    def __init__(self, nodes: List[Dict[str, Any]]):
        self.nodes = {n["id"]: n for n in nodes}
        self.parent_of = {}
        self.groups: Dict[Optional[str], List[str]] = {}
        for node in nodes:
            parent_id = node.get("parent_id")
            if not parent_id or parent_id not in self.nodes or parent_id == node["id"]:
                parent_id = None
            self.parent_of[node["id"]] = parent_id
            self.groups.setdefault(parent_id, []).append(node["id"])

    def __contains__(self, node_id):
        return node_id in self.nodes

    def siblings(self, node_id: str) -> List[str]:
        return self.groups[self.parent_of[node_id]]


def move_before(sibling_ids: List[str], dragged_id: str, target_id: str) -> List[str]:
    """Retire dragged puis l'insère à l'index de target dans la liste raccourcie"""
    order = list(sibling_ids)
    order.remove(dragged_id)
    order.insert(order.index(target_id), dragged_id)
    return order


class SiblingReorderer:

    def __init__(self, store: Optional[NodeStore] = None, user: str = "system"):
        self.store = store or NodeStore()
        self.user = user

    async def reorder(self, taxonomy_type, dragged_id: str, target_id: str) -> List[Dict[str, Any]]:
        """
        Returns:
            Le groupe de frères dans le nouvel ordre (sort_order à jour)

        Raises:
            NodeNotFound, CrossParentReorder, PersistenceError
        """
        taxonomy_type = get_taxonomy_type_or_raise(taxonomy_type)
        index = SiblingIndex(await self.store.list(taxonomy_type))

        for node_id in (dragged_id, target_id):
            if node_id not in index:
                raise NodeNotFound(taxonomy_type.value, node_id)

        if dragged_id == target_id:
            return [index.nodes[i] for i in index.siblings(dragged_id)]

        if index.parent_of[dragged_id] != index.parent_of[target_id]:
            logger.info(f"[{taxonomy_type.value}] Réordonnancement refusé: parents différents")
            raise CrossParentReorder(dragged_id, target_id)

        new_order = move_before(index.siblings(dragged_id), dragged_id, target_id)

        results = await asyncio.gather(
            *[
                self.store.update(taxonomy_type, node_id, {"sort_order": position})
                for position, node_id in enumerate(new_order)
            ],
            return_exceptions=True,
        )
        failures = [r for r in results if isinstance(r, Exception)]
        if failures:
            logger.error(
                f"[{taxonomy_type.value}] {len(failures)}/{len(new_order)} sort_order non écrits, "
                f"l'ordre peut être incomplet: relancer l'opération"
            )
            first = failures[0]
            if isinstance(first, (PersistenceError, NodeNotFound)):
                raise first
            raise PersistenceError(str(first)) from first

        await log_event(
            action="reorder_nodes",
            entity_type=taxonomy_type.value,
            entity_id=dragged_id,
            user=self.user,
            details={"target_id": target_id, "order": new_order},
            related={"parent_id": index.parent_of[dragged_id]},
            database=self.store.database,
        )

        reordered = []
        for position, node_id in enumerate(new_order):
            node = dict(index.nodes[node_id])
            node["sort_order"] = position
            reordered.append(node)
        return reordered
