"""
Call-Center CRM - Erreurs du moteur de taxonomies et de l'import
"""

from typing import List, Optional


class TaxonomyError(Exception):
    """Base des erreurs taxonomie"""
    pass


class UnknownTaxonomyType(TaxonomyError):
    """Type hors de la liste fermée - levée AVANT tout accès base"""

    def __init__(self, taxonomy_type: str):
        self.taxonomy_type = taxonomy_type
        super().__init__(f"Type de taxonomie inconnu: {taxonomy_type}")


class NodeNotFound(TaxonomyError):
    def __init__(self, taxonomy_type: str, node_id: str):
        self.taxonomy_type = taxonomy_type
        self.node_id = node_id
        super().__init__(f"Noeud {node_id} introuvable ({taxonomy_type})")


class PersistenceError(TaxonomyError):
    """Échec d'écriture/lecture côté MongoDB"""
    pass


class DeleteResult:
    """Résultat agrégé d'une suppression en cascade"""

    def __init__(self, root_id: str):
        self.root_id = root_id
        self.deleted_ids: List[str] = []
        self.failed_ids: List[str] = []
        self.errors: List[str] = []

    @property
    def ok(self) -> bool:
        return not self.failed_ids and not self.errors

    def to_dict(self):
        return {
            "root_id": self.root_id,
            "ok": self.ok,
            "deleted_ids": self.deleted_ids,
            "failed_ids": self.failed_ids,
            "errors": self.errors,
        }


class CascadeDeleteFailure(TaxonomyError):
    """Au moins une branche n'a pas pu être supprimée"""

    def __init__(self, result: DeleteResult):
        self.result = result
        super().__init__(
            f"Suppression partielle de {result.root_id}: "
            f"{len(result.failed_ids)} échec(s), {len(result.deleted_ids)} supprimé(s)"
        )


class CrossParentReorder(TaxonomyError):
    """Réordonnancement entre parents différents - refusé sans modification"""

    def __init__(self, dragged_id: str, target_id: str, message: Optional[str] = None):
        self.dragged_id = dragged_id
        self.target_id = target_id
        super().__init__(message or "Le réordonnancement n'est possible qu'au même niveau")


class ImportCancelled(Exception):
    """Import interrompu entre deux étapes"""
    pass


class InvalidImportTransition(Exception):
    pass
