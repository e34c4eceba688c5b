"""
Libro de puntos: registro inmutable de cada movimiento
"""
from sqlmodel import SQLModel, Field, Index
from typing import Optional
from datetime import datetime
from enum import Enum


class MotivoTransaccion(str, Enum):
    ACUMULACION = "acumulacion"
    CANJE = "canje"
    AJUSTE_MANUAL = "ajuste_manual"
    REGALO = "regalo"


ACTOR_SISTEMA = "system"


def actor_admin(cliente_id: int) -> str:
    return f"admin:{cliente_id}"


def actor_regalo(codigo: str) -> str:
    return f"gift:{codigo}"


class TransaccionPuntos(SQLModel, table=True):
    """
    Movimiento de puntos. Solo se insertan filas; el saldo de un cliente es
    la suma de ``delta`` de todas sus transacciones.
    """
    __tablename__ = "transacciones_puntos"

    id: Optional[int] = Field(default=None, primary_key=True)
    id_cliente: int = Field(foreign_key="clientes.id", index=True)
    delta: int = Field(description="Puntos con signo: positivo acumula, negativo descuenta")
    motivo: MotivoTransaccion = Field(index=True)
    actor: str = Field(max_length=80, description="system, admin:<id> o gift:<codigo>")
    saldo_anterior: int = Field(ge=0)
    saldo_posterior: int = Field(ge=0)
    descripcion: Optional[str] = Field(default=None, max_length=200)
    referencia: Optional[str] = Field(default=None, max_length=80, description="p. ej. canje:12")
    fecha: datetime = Field(default_factory=datetime.utcnow, index=True)

    __table_args__ = (
        Index("idx_transacciones_puntos_cliente_fecha", "id_cliente", "fecha"),
    )


class TransaccionPuntosRead(SQLModel):
    id: int
    delta: int
    motivo: MotivoTransaccion
    actor: str
    saldo_anterior: int
    saldo_posterior: int
    descripcion: Optional[str] = None
    referencia: Optional[str] = None
    fecha: datetime


class AjustePuntosRequest(SQLModel):
    """Ajuste administrativo de puntos"""
    delta: int
    motivo: MotivoTransaccion = MotivoTransaccion.AJUSTE_MANUAL
    descripcion: Optional[str] = Field(default=None, max_length=200)


class AjustePuntosResponse(SQLModel):
    id_cliente: int
    nuevo_saldo: int
