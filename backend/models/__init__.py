"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Call-Center CRM - Models Package                                            ║
║                                                                              ║
║  Exporte tous les modèles pour import facile                                 ║
║  from models import TaxonomyType, NodeCreate, ServicePointCreate, etc.       ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

# Taxonomies
from .taxonomy import (
    TaxonomyType,
    HIERARCHICAL_TYPES,
    ROOT_ONLY_TYPES,
    NodeCreate,
    NodeUpdate,
    ReorderRequest,
    is_hierarchical,
)

# Points de service
from .service_point import (
    ServicePointType,
    ServicePointCreate,
    ServicePointUpdate,
)

# Import tableur
from .imports import (
    ImportRunState,
    VALID_IMPORT_TRANSITIONS,
    MissingGovernorate,
    ImportParseRequest,
    ImportParseResult,
    ImportConfirmResult,
)

__all__ = [
    # Taxonomies
    "TaxonomyType",
    "HIERARCHICAL_TYPES",
    "ROOT_ONLY_TYPES",
    "NodeCreate",
    "NodeUpdate",
    "ReorderRequest",
    "is_hierarchical",
    # Points de service
    "ServicePointType",
    "ServicePointCreate",
    "ServicePointUpdate",
    # Import
    "ImportRunState",
    "VALID_IMPORT_TRANSITIONS",
    "MissingGovernorate",
    "ImportParseRequest",
    "ImportParseResult",
    "ImportConfirmResult",
]
