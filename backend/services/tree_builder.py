"""
Call-Center CRM - Construction des arbres de taxonomie

Liste plate (parent_id) → forêt de racines avec "children".
Un parent_id qui ne résout pas (parent supprimé) fait du noeud une racine:
pas d'erreur, le noeud reste visible.
"""

from typing import Any, Dict, Iterable, List


def build_tree(nodes: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    O(n), deux passes. L'ordre des frères est celui de la liste reçue
    (sort_order puis created_at côté NodeStore).
    Les noeuds reçus ne sont pas modifiés: chaque noeud est copié.
    """
    items = []
    lookup = {}
    for node in nodes:
        item = dict(node)
        item["children"] = []
        items.append(item)
        lookup[item["id"]] = item

    roots = []
    for item in items:
        parent_id = item.get("parent_id")
        if parent_id and parent_id in lookup and parent_id != item["id"]:
            lookup[parent_id]["children"].append(item)
        else:
            roots.append(item)
    return roots


def flatten_tree(roots: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Parcours en profondeur (pré-ordre), sans le champ children"""
    out = []
    stack = list(reversed(list(roots)))
    while stack:
        node = stack.pop()
        out.append({k: v for k, v in node.items() if k != "children"})
        stack.extend(reversed(node.get("children", [])))
    return out


def count_nodes(roots: Iterable[Dict[str, Any]]) -> int:
    return sum(1 + count_nodes(r.get("children", [])) for r in roots)
