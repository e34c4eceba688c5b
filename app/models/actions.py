"""
Acciones offline ya aplicadas en el servidor.

El cliente reenvía cada acción con su id hasta recibir respuesta; si la
respuesta se pierde, el reenvío encuentra aquí el resultado original en
lugar de aplicar la acción otra vez.
"""
from sqlmodel import SQLModel, Field, Column
from sqlalchemy import JSON
from typing import Any, Dict, Optional
from datetime import datetime
from enum import Enum


class TipoAccion(str, Enum):
    CANJEAR = "canjear"
    AJUSTAR_PUNTOS = "ajustar_puntos"
    RECLAMAR_REGALO = "reclamar_regalo"
    AVANZAR_ESTADO = "avanzar_estado"


class AccionAplicada(SQLModel, table=True):
    __tablename__ = "acciones_aplicadas"

    id_accion: str = Field(primary_key=True, max_length=64, description="Id generado por el cliente")
    tipo: TipoAccion
    id_cliente: Optional[int] = Field(default=None, foreign_key="clientes.id", index=True)
    resultado: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    fecha: datetime = Field(default_factory=datetime.utcnow, index=True)
