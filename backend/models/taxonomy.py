"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Call-Center CRM - Taxonomies (arbres de configuration)                      ║
║                                                                              ║
║  Cinq espaces de noms INDÉPENDANTS:                                          ║
║  - classification, location  → hiérarchiques (parent_id)                     ║
║  - procedure, action, account_type → racines uniquement                      ║
║                                                                              ║
║  RÈGLE: un parent_id référence TOUJOURS un noeud du même type                ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, validator


class TaxonomyType(str, Enum):
    """Types de taxonomie - liste fermée"""
    CLASSIFICATION = "classification"
    LOCATION = "location"
    PROCEDURE = "procedure"
    ACTION = "action"
    ACCOUNT_TYPE = "account_type"


# Types dont les noeuds peuvent avoir un parent
HIERARCHICAL_TYPES = {TaxonomyType.CLASSIFICATION, TaxonomyType.LOCATION}

# Types plats: parent_id ignoré
ROOT_ONLY_TYPES = {TaxonomyType.PROCEDURE, TaxonomyType.ACTION, TaxonomyType.ACCOUNT_TYPE}


class NodeCreate(BaseModel):
    """
    Ajout d'un noeud (racine si parent_id absent)

    Exemple:
    {
        "name": "أمانة العاصمة",
        "parent_id": null,
        "is_required": false
    }
    """
    name: str
    parent_id: Optional[str] = None
    is_required: bool = False

    @validator("name")
    def name_not_blank(cls, v):
        if not v or not v.strip():
            raise ValueError("Le nom est obligatoire")
        return v.strip()


class NodeUpdate(BaseModel):
    """Mise à jour partielle: les champs absents ne sont pas touchés"""
    name: Optional[str] = None
    is_required: Optional[bool] = None
    sort_order: Optional[int] = Field(default=None, ge=0)

    @validator("name")
    def name_not_blank(cls, v):
        if v is not None and not v.strip():
            raise ValueError("Le nom ne peut pas être vide")
        return v.strip() if v is not None else v


class ReorderRequest(BaseModel):
    """Glisser-déposer: dragged_id est placé juste avant target_id"""
    dragged_id: str
    target_id: str


# ==================== VALIDATION HELPER ====================

def is_hierarchical(taxonomy_type: TaxonomyType) -> bool:
    return taxonomy_type in HIERARCHICAL_TYPES
