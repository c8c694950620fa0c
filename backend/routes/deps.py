"""
Dépendances FastAPI partagées par les routes

L'authentification est assurée en amont (passerelle / session):
l'utilisateur arrive dans l'entête X-User-Email.
"""

from fastapi import Depends, Request

from config import db
from services.taxonomy_store import NodeStore


def get_database():
    return db


def get_store(database=Depends(get_database)) -> NodeStore:
    return NodeStore(database)


def get_actor(request: Request) -> str:
    return request.headers.get("x-user-email", "system").strip() or "system"
