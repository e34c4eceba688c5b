"""
Modelos de canjes (redención de puntos por productos o servicios)
"""
from sqlmodel import SQLModel, Field, Index
from typing import Optional
from datetime import datetime
from enum import Enum

from .base import BaseModel
from .products import TipoProducto


class EstadoCanje(str, Enum):
    """Ciclo de vida de un canje; solo avanza, nunca retrocede"""
    PENDIENTE_ENTREGA = "pendiente_entrega"
    EN_LISTA = "en_lista"
    ENTREGADO = "entregado"
    COMPLETADO = "completado"


# Orden del ciclo de vida
FLUJO_ESTADOS = [
    EstadoCanje.PENDIENTE_ENTREGA,
    EstadoCanje.EN_LISTA,
    EstadoCanje.ENTREGADO,
    EstadoCanje.COMPLETADO,
]

ESTADOS_TERMINALES = {EstadoCanje.ENTREGADO, EstadoCanje.COMPLETADO}

# "agendado" es un sinónimo heredado de "en_lista"; nunca se guarda
ALIAS_ESTADOS = {"agendado": EstadoCanje.EN_LISTA}


def normalizar_estado(valor: str) -> EstadoCanje:
    """Convierte un estado recibido (incluyendo alias) al estado canónico"""
    if valor in ALIAS_ESTADOS:
        return ALIAS_ESTADOS[valor]
    return EstadoCanje(valor)


def siguiente_estado(actual: EstadoCanje) -> Optional[EstadoCanje]:
    idx = FLUJO_ESTADOS.index(actual)
    if idx + 1 >= len(FLUJO_ESTADOS):
        return None
    return FLUJO_ESTADOS[idx + 1]


class Canje(BaseModel, table=True):
    """
    Registro de un canje.

    ``puntos_usados`` es una foto del precio al momento del canje y no se
    recalcula aunque el producto cambie de precio después.
    """
    __tablename__ = "canjes"

    id_cliente: int = Field(foreign_key="clientes.id", index=True)
    id_producto: int = Field(foreign_key="productos.id", index=True)
    puntos_usados: int = Field(gt=0, description="Puntos cobrados en el canje")
    estado: EstadoCanje = Field(default=EstadoCanje.PENDIENTE_ENTREGA, index=True)
    tipo_producto_original: TipoProducto = Field(default=TipoProducto.PRODUCTO)
    nombre_producto_original: str = Field(max_length=120)
    fecha_canje: datetime = Field(default_factory=datetime.utcnow, index=True)
    fecha_entrega: Optional[datetime] = Field(default=None)

    __table_args__ = (
        Index("idx_canjes_estado_fecha", "estado", "fecha_canje"),
    )


# Esquemas Pydantic para API

class CanjeCreate(SQLModel):
    """Esquema para crear canje"""
    id_producto: int


class CanjeEstadoUpdate(SQLModel):
    """Cambio de estado; acepta el alias "agendado" """
    estado: str


class CanjeRead(SQLModel):
    """Esquema para leer canje"""
    id: int
    id_cliente: int
    id_producto: int
    puntos_usados: int
    estado: EstadoCanje
    tipo_producto_original: TipoProducto
    nombre_producto_original: str
    fecha_canje: datetime
    fecha_entrega: Optional[datetime] = None


class CanjeCreateResponse(SQLModel):
    canje: CanjeRead
    nuevo_saldo: int
    mensaje: str = "¡Canje exitoso!"
