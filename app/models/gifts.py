"""
Links de regalo (individuales o campañas) y beneficios otorgados
"""
from sqlmodel import SQLModel, Field
from sqlalchemy import UniqueConstraint
from typing import Optional
from datetime import datetime
from enum import Enum

from .base import BaseModelWithTimestamp


class TipoRegalo(str, Enum):
    PUNTOS = "puntos"
    BENEFICIO = "beneficio"


class EstadoLinkRegalo(str, Enum):
    PENDIENTE = "pendiente"
    CANJEADO = "canjeado"
    EXPIRADO = "expirado"


class LinkRegalo(BaseModelWithTimestamp, table=True):
    """
    Link de regalo compartible.

    Un link individual se consume una sola vez (``canjeado_por``). Una
    campaña admite un canje por cliente hasta ``max_canjes``.
    """
    __tablename__ = "links_regalo"

    codigo: str = Field(max_length=12, unique=True, index=True)
    tipo: TipoRegalo
    puntos_regalo: Optional[int] = Field(default=None, gt=0)
    nombre_beneficio: Optional[str] = Field(default=None, max_length=120)
    descripcion_beneficio: Optional[str] = Field(default=None)
    mensaje_personalizado: Optional[str] = Field(default=None)
    destinatario_telefono: Optional[str] = Field(default=None, max_length=20)
    estado: EstadoLinkRegalo = Field(default=EstadoLinkRegalo.PENDIENTE, index=True)
    fecha_expiracion: Optional[datetime] = Field(default=None)
    es_campana: bool = Field(default=False)
    nombre_campana: Optional[str] = Field(default=None, max_length=120)
    max_canjes: Optional[int] = Field(default=1, ge=1)
    canjes_realizados: int = Field(default=0, ge=0)
    canjeado_por: Optional[int] = Field(default=None, foreign_key="clientes.id")
    fecha_canje: Optional[datetime] = Field(default=None)
    vigencia_beneficio_dias: int = Field(default=365, gt=0)
    creado_por: Optional[int] = Field(default=None, foreign_key="clientes.id")

    def expirado(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.utcnow()
        if self.estado == EstadoLinkRegalo.EXPIRADO:
            return True
        return self.fecha_expiracion is not None and self.fecha_expiracion < now

    def agotado(self) -> bool:
        if not self.es_campana:
            return self.estado == EstadoLinkRegalo.CANJEADO
        return self.max_canjes is not None and self.canjes_realizados >= self.max_canjes


class BeneficioCliente(BaseModelWithTimestamp, table=True):
    """Beneficio obtenido por un cliente al reclamar un link"""
    __tablename__ = "beneficios_cliente"

    id_cliente: int = Field(foreign_key="clientes.id", index=True)
    id_link_regalo: int = Field(foreign_key="links_regalo.id", index=True)
    nombre_beneficio: str = Field(max_length=120)
    descripcion_beneficio: Optional[str] = Field(default=None)
    puntos_otorgados: Optional[int] = Field(default=None)
    fecha_expiracion: datetime
    estado: str = Field(default="activo", max_length=20)

    __table_args__ = (
        UniqueConstraint("id_link_regalo", "id_cliente", name="uq_beneficio_link_cliente"),
    )


# Esquemas Pydantic para API

class LinkRegaloCreate(SQLModel):
    tipo: TipoRegalo
    puntos_regalo: Optional[int] = Field(default=None, gt=0)
    nombre_beneficio: Optional[str] = Field(default=None, max_length=120)
    descripcion_beneficio: Optional[str] = None
    mensaje_personalizado: Optional[str] = None
    destinatario_telefono: Optional[str] = None
    dias_expiracion: int = Field(default=30, gt=0)
    es_campana: bool = False
    nombre_campana: Optional[str] = None
    max_canjes: Optional[int] = Field(default=None, ge=1)
    vigencia_beneficio_dias: int = Field(default=365, gt=0)


class LinkRegaloPublic(SQLModel):
    """Lo que ve quien abre el link"""
    codigo: str
    tipo: TipoRegalo
    puntos_regalo: Optional[int] = None
    nombre_beneficio: Optional[str] = None
    descripcion_beneficio: Optional[str] = None
    mensaje_personalizado: Optional[str] = None
    estado: str
    fecha_expiracion: Optional[datetime] = None
    es_campana: bool
    nombre_campana: Optional[str] = None


class ReclamoRegaloResponse(SQLModel):
    id_beneficio: int
    id_cliente: int
    tipo: TipoRegalo
    puntos_otorgados: Optional[int] = None
    nuevo_saldo: int
    es_campana: bool
