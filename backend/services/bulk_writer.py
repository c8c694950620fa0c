"""
Call-Center CRM - Écriture en masse par lots

Chaque lot est soumis indépendamment: un lot en échec est compté,
les autres continuent, rien n'est annulé (at-least-once, non atomique).
"""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from services.cancellation import CancellationToken

logger = logging.getLogger("bulk_writer")

DEFAULT_CHUNK_SIZE = 100


class PartialChunkWrite(Exception):
    """Lot écrit en partie: `inserted` enregistrements sont en base"""

    def __init__(self, inserted: int, message: str):
        self.inserted = inserted
        super().__init__(message)


class BulkWriteResult:

    def __init__(self):
        self.chunks = 0
        self.inserted_count = 0
        self.failed_count = 0
        self.failed_chunks: List[Dict[str, Any]] = []
        self.cancelled = False

    def to_dict(self):
        return {
            "chunks": self.chunks,
            "inserted_count": self.inserted_count,
            "failed_count": self.failed_count,
            "failed_chunks": self.failed_chunks,
            "cancelled": self.cancelled,
        }


async def write_in_chunks(
    records: List[Dict[str, Any]],
    insert_many: Callable[[List[Dict[str, Any]]], Awaitable[Any]],
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    token: Optional[CancellationToken] = None,
) -> BulkWriteResult:
    """
    Args:
        records: enregistrements résolus
        insert_many: collaborateur d'écriture (ex: collection.insert_many)
        chunk_size: taille des lots (le dernier peut être plus petit)
        token: annulation vérifiée AVANT chaque lot
    """
    if chunk_size < 1:
        raise ValueError("chunk_size doit être >= 1")

    result = BulkWriteResult()
    for chunk_start in range(0, len(records), chunk_size):
        if token is not None and token.cancelled:
            result.cancelled = True
            logger.warning(f"Écriture interrompue avant le lot {result.chunks + 1}")
            break

        chunk = records[chunk_start:chunk_start + chunk_size]
        result.chunks += 1
        try:
            await insert_many(chunk)
            result.inserted_count += len(chunk)
        except Exception as e:
            inserted = e.inserted if isinstance(e, PartialChunkWrite) else 0
            logger.error(
                f"Lot {result.chunks} ({len(chunk)} enregistrements) en échec, {inserted} écrits: {e}"
            )
            result.inserted_count += inserted
            result.failed_count += len(chunk) - inserted
            result.failed_chunks.append({
                "index": result.chunks - 1,
                "offset": chunk_start,
                "size": len(chunk),
                "inserted": inserted,
                "error": str(e),
            })

    return result
