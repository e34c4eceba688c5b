"""
Modelos de clientes del programa de lealtad
"""
from sqlmodel import SQLModel, Field
from sqlalchemy import CheckConstraint
from typing import Optional
from datetime import datetime
from enum import Enum

from .base import BaseModelWithTimestamp


class TipoNivelCliente(str, Enum):
    """Niveles del programa"""
    PARTNER = "partner"
    VIP = "vip"


class Cliente(BaseModelWithTimestamp, table=True):
    """
    Cliente del programa, identificado por su teléfono.

    ``puntos_actuales`` solo cambia a través de LedgerService; ningún otro
    código escribe el saldo directamente.
    """
    __tablename__ = "clientes"

    telefono: str = Field(max_length=20, unique=True, index=True)
    nombre: str = Field(max_length=120)
    puntos_actuales: int = Field(default=0, ge=0, description="Saldo de puntos disponible")
    puntos_historicos: int = Field(default=0, ge=0, description="Puntos acumulados (nunca decrece)")
    nivel: TipoNivelCliente = Field(default=TipoNivelCliente.PARTNER)
    es_admin: bool = Field(default=False, description="Claim de administrador")
    activo: bool = Field(default=True, index=True)
    ultima_sincronizacion: Optional[datetime] = Field(default=None, description="Última sincronización con el CRM")

    __table_args__ = (
        CheckConstraint("puntos_actuales >= 0", name="ck_clientes_puntos_no_negativos"),
    )


# Esquemas Pydantic para API

class ClienteRead(SQLModel):
    """Esquema para leer cliente"""
    id: int
    telefono: str
    nombre: str
    puntos_actuales: int
    puntos_historicos: int
    nivel: TipoNivelCliente
    ultima_sincronizacion: Optional[datetime] = None


class NivelClienteUpdate(SQLModel):
    """Cambio de nivel (solo admin)"""
    nivel: TipoNivelCliente
