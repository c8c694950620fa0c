"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Call-Center CRM - Normalisation des noms arabes                             ║
║                                                                              ║
║  Forme canonique:                                                            ║
║  1. Suppression des espaces en début/fin                                     ║
║  2. أ إ آ → ا   (variantes d'alef)                                           ║
║  3. ة → ه       (taa marbuta)                                                ║
║  4. ى → ي       (alef maksura)                                               ║
║                                                                              ║
║  Correspondance (import): égalité canonique OU inclusion, si la plus         ║
║  courte des deux formes fait plus de 3 caractères.                           ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from typing import Any, Dict, Iterable, Optional

ORTHOGRAPHIC_TABLE = str.maketrans({
    "أ": "ا",
    "إ": "ا",
    "آ": "ا",
    "ة": "ه",
    "ى": "ي",
})

# En dessous, une inclusion ferait correspondre presque tout
MIN_SUBSTRING_MATCH_LENGTH = 3


def normalize_text(text: Any) -> str:
    """Idempotent: normalize_text(normalize_text(x)) == normalize_text(x)"""
    if text is None:
        return ""
    return str(text).strip().translate(ORTHOGRAPHIC_TABLE)


def names_match(a: Any, b: Any) -> bool:
    """
    Heuristique volontairement grossière (pas de distance d'édition).
    """
    ca, cb = normalize_text(a), normalize_text(b)
    if not ca or not cb:
        return False
    if ca == cb:
        return True
    shorter, longer = (ca, cb) if len(ca) <= len(cb) else (cb, ca)
    return len(shorter) > MIN_SUBSTRING_MATCH_LENGTH and shorter in longer


def find_matching_node(name: Any, nodes: Iterable[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """
    Cherche un noeud par nom: l'égalité canonique est prioritaire sur l'inclusion,
    puis le premier dans l'ordre reçu.
    """
    canonical = normalize_text(name)
    if not canonical:
        return None
    candidates = list(nodes)
    for node in candidates:
        if normalize_text(node.get("name")) == canonical:
            return node
    for node in candidates:
        if names_match(canonical, node.get("name")):
            return node
    return None
