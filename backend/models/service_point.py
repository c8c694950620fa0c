"""
Call-Center CRM - Modèle Point de service (agent ou point de vente)

Chaque point de service est rattaché à une feuille de la taxonomie location:
governorate_id (racine) + district_id (enfant direct).
"""

from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


class ServicePointType(str, Enum):
    AGENT = "Agent"
    POS = "POS"


class ServicePointCreate(BaseModel):
    """Création d'un point de service"""
    name: str
    type: ServicePointType = ServicePointType.AGENT
    governorate_id: str
    district_id: str
    phone: Optional[str] = ""
    address: Optional[str] = ""
    google_map_link: Optional[str] = ""
    working_hours: Optional[str] = ""
    deposit_withdrawal: Optional[str] = None
    registration_activation: Optional[str] = None
    record_date: Optional[str] = None  # YYYY-MM-DD
    activations_count: int = Field(default=0, ge=0)
    cash_withdrawal_count: int = Field(default=0, ge=0)
    deposit_count: int = Field(default=0, ge=0)


class ServicePointUpdate(BaseModel):
    """Mise à jour d'un point de service"""
    name: Optional[str] = None
    type: Optional[ServicePointType] = None
    governorate_id: Optional[str] = None
    district_id: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    google_map_link: Optional[str] = None
    working_hours: Optional[str] = None
    deposit_withdrawal: Optional[str] = None
    registration_activation: Optional[str] = None
    record_date: Optional[str] = None
    activations_count: Optional[int] = Field(default=None, ge=0)
    cash_withdrawal_count: Optional[int] = Field(default=None, ge=0)
    deposit_count: Optional[int] = Field(default=None, ge=0)
