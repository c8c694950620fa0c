"""
Call-Center CRM - Jeton d'annulation coopératif pour les imports longs

Vérifié entre deux créations de localités et entre deux lots:
ce qui est déjà écrit reste écrit.
"""

from typing import Dict, Optional

from services.taxonomy_errors import ImportCancelled


class CancellationToken:

    def __init__(self):
        self._cancelled = False
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self, reason: str = "cancelled"):
        self._cancelled = True
        self.reason = reason

    def raise_if_cancelled(self):
        if self._cancelled:
            raise ImportCancelled(self.reason or "cancelled")


# Imports en cours de réconciliation dans ce processus: run_id → jeton
_active_tokens: Dict[str, CancellationToken] = {}


def register_token(run_id: str) -> CancellationToken:
    token = CancellationToken()
    _active_tokens[run_id] = token
    return token


def get_token(run_id: str) -> Optional[CancellationToken]:
    return _active_tokens.get(run_id)


def release_token(run_id: str):
    _active_tokens.pop(run_id, None)
