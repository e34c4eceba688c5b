"""
Cola de sincronización con el CRM externo y tabla de correlación de ids
"""
from sqlmodel import SQLModel, Field, Column, Index
from sqlalchemy import JSON, UniqueConstraint
from typing import Any, Dict, Optional
from datetime import datetime
from enum import Enum


class EstadoTarea(str, Enum):
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    DONE = "done"
    FAILED = "failed"
    SKIPPED = "skipped"


ESTADOS_TAREA_TERMINALES = {EstadoTarea.DONE, EstadoTarea.FAILED, EstadoTarea.SKIPPED}


class TipoEntidad(str, Enum):
    CLIENTE = "cliente"
    CANJE = "canje"
    BENEFICIO = "beneficio"


class OperacionSync(str, Enum):
    SYNC_CLIENTE = "sync_cliente"
    SYNC_CANJE = "sync_canje"
    CREATE_BENEFIT_TICKET = "create_benefit_ticket"


SISTEMA_NOTION = "notion"


class TareaSync(SQLModel, table=True):
    """
    Operación pendiente de reflejar en el CRM.

    Se crea en la misma transacción que la mutación local que la origina.
    Solo pasa a ``done`` tras una escritura externa confirmada; al agotar los
    reintentos queda en ``failed`` para reintento manual.
    """
    __tablename__ = "tareas_sync"

    id: Optional[int] = Field(default=None, primary_key=True)
    tipo_entidad: TipoEntidad = Field(index=True)
    id_entidad: int = Field(index=True)
    operacion: OperacionSync
    payload: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    estado: EstadoTarea = Field(default=EstadoTarea.PENDING, index=True)
    intentos: int = Field(default=0, ge=0)
    ultimo_error: Optional[str] = Field(default=None)
    resultado: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON, nullable=True))
    proximo_intento: Optional[datetime] = Field(default=None, index=True)
    origen: str = Field(default="app", max_length=40)
    creado_el: datetime = Field(default_factory=datetime.utcnow, index=True)
    actualizado_el: Optional[datetime] = Field(default=None)

    __table_args__ = (
        Index("idx_tareas_sync_entidad", "tipo_entidad", "id_entidad", "id"),
    )


class ReferenciaExterna(SQLModel, table=True):
    """
    Correlación 1:1 entre una entidad local y su página en un sistema externo.
    Es el ancla de idempotencia: con referencia se actualiza, sin ella se crea.
    """
    __tablename__ = "referencias_externas"

    id: Optional[int] = Field(default=None, primary_key=True)
    sistema: str = Field(default=SISTEMA_NOTION, max_length=30)
    tipo_entidad: TipoEntidad
    id_entidad: int
    id_externo: str = Field(max_length=64)
    creado_el: datetime = Field(default_factory=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("sistema", "tipo_entidad", "id_entidad", name="uq_ref_externa_entidad"),
        UniqueConstraint("sistema", "id_externo", name="uq_ref_externa_id"),
    )


class TareaSyncRead(SQLModel):
    id: int
    tipo_entidad: TipoEntidad
    id_entidad: int
    operacion: OperacionSync
    estado: EstadoTarea
    intentos: int
    ultimo_error: Optional[str] = None
    creado_el: datetime


class ResumenProcesamiento(SQLModel):
    procesadas: int = 0
    exitosas: int = 0
    omitidas: int = 0
    reintentar: int = 0
    fallidas: int = 0


class ResincronizacionRequest(SQLModel):
    clientes: bool = True
    canjes: bool = True


class ResumenResincronizacion(SQLModel):
    clientes: int = 0
    canjes: int = 0
    omitidas: int = 0
