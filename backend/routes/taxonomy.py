"""
Call-Center CRM - Routes Taxonomies

Endpoints:
- GET    /api/taxonomy/{type}                 - arbre complet
- POST   /api/taxonomy/{type}                 - ajout racine ou enfant
- PUT    /api/taxonomy/{type}/{node_id}       - mise à jour partielle
- DELETE /api/taxonomy/{type}/{node_id}       - suppression en cascade
- POST   /api/taxonomy/{type}/reorder         - glisser-déposer entre frères
"""

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from models.taxonomy import NodeCreate, NodeUpdate, ReorderRequest, TaxonomyType
from routes.deps import get_actor, get_store
from services.node_editor import NodeEditor
from services.sibling_reorderer import SiblingReorderer
from services.taxonomy_errors import (
    CascadeDeleteFailure,
    CrossParentReorder,
    NodeNotFound,
    PersistenceError,
    UnknownTaxonomyType,
)
from services.taxonomy_store import NodeStore, get_taxonomy_type_or_raise
from services.tree_builder import build_tree

router = APIRouter(prefix="/taxonomy", tags=["Taxonomy"])


def _resolve_type(taxonomy_type: str) -> TaxonomyType:
    try:
        return get_taxonomy_type_or_raise(taxonomy_type)
    except UnknownTaxonomyType as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/{taxonomy_type}")
async def get_tree(taxonomy_type: str, store: NodeStore = Depends(get_store)):
    """Arbre d'un type (racines + children)"""
    t = _resolve_type(taxonomy_type)
    try:
        nodes = await store.list(t)
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"type": t.value, "tree": build_tree(nodes), "count": len(nodes)}


@router.post("/{taxonomy_type}")
async def add_node(
    taxonomy_type: str,
    data: NodeCreate,
    store: NodeStore = Depends(get_store),
    actor: str = Depends(get_actor),
):
    t = _resolve_type(taxonomy_type)
    editor = NodeEditor(store, user=actor)
    try:
        node = await editor.add(data.name, data.parent_id, t, is_required=data.is_required)
    except NodeNotFound as e:
        raise HTTPException(status_code=404, detail=f"Parent introuvable: {e.node_id}")
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"success": True, "node": node}


@router.post("/{taxonomy_type}/reorder")
async def reorder_nodes(
    taxonomy_type: str,
    data: ReorderRequest,
    store: NodeStore = Depends(get_store),
    actor: str = Depends(get_actor),
):
    t = _resolve_type(taxonomy_type)
    reorderer = SiblingReorderer(store, user=actor)
    try:
        siblings = await reorderer.reorder(t, data.dragged_id, data.target_id)
    except NodeNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except CrossParentReorder:
        raise HTTPException(status_code=409, detail="يمكنك اعادة الترتيب في نفس المستوى فقط")
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"success": True, "siblings": siblings}


@router.put("/{taxonomy_type}/{node_id}")
async def update_node(
    taxonomy_type: str,
    node_id: str,
    data: NodeUpdate,
    store: NodeStore = Depends(get_store),
    actor: str = Depends(get_actor),
):
    t = _resolve_type(taxonomy_type)
    editor = NodeEditor(store, user=actor)
    try:
        node = await editor.update(
            node_id, data.name, t,
            is_required=data.is_required,
            sort_order=data.sort_order,
        )
    except NodeNotFound:
        raise HTTPException(status_code=404, detail="Noeud non trouvé")
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"success": True, "node": node}


@router.delete("/{taxonomy_type}/{node_id}")
async def delete_node(
    taxonomy_type: str,
    node_id: str,
    store: NodeStore = Depends(get_store),
    actor: str = Depends(get_actor),
):
    """Supprime le noeud et tous ses descendants (best-effort)"""
    t = _resolve_type(taxonomy_type)
    editor = NodeEditor(store, user=actor)
    try:
        result = await editor.delete(node_id, t)
    except NodeNotFound:
        raise HTTPException(status_code=404, detail="Noeud non trouvé")
    except CascadeDeleteFailure as e:
        return JSONResponse(status_code=207, content={"success": False, **e.result.to_dict()})
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"success": True, **result.to_dict()}
