"""
Bitácora de auditoría: una fila por acción mutante y por intento de sync
"""
from sqlmodel import SQLModel, Field, Column
from sqlalchemy import JSON
from typing import Any, Dict, Optional
from datetime import datetime


class TipoEvento:
    REDEMPTION_SUCCESS = "redemption.success"
    REDEMPTION_FAILED = "redemption.failed"
    REDEMPTION_STATUS = "redemption.status_changed"
    POINTS_ADJUSTED = "points.adjusted"
    GIFT_CLAIMED = "gift.claimed"
    GIFT_CLAIM_FAILED = "gift.claim_failed"
    GIFT_CREATED = "gift.created"
    ADMIN_CHANGED = "client.admin_changed"
    CLIENT_TIER_CHANGED = "client.tier_changed"
    SYNC_QUEUED = "sync.queued"
    SYNC_COMPLETED = "sync.completed"
    SYNC_SKIPPED = "sync.skipped"
    SYNC_FAILED = "sync.failed"
    SYNC_RESYNC_REQUESTED = "sync.resync_requested"
    WEBHOOK_SKIPPED = "webhook.skipped"


class RegistroAuditoria(SQLModel, table=True):
    __tablename__ = "registros_auditoria"

    id: Optional[int] = Field(default=None, primary_key=True)
    tipo_evento: str = Field(max_length=40, index=True)
    tipo_entidad: Optional[str] = Field(default=None, max_length=30, index=True)
    id_entidad: Optional[str] = Field(default=None, max_length=40, index=True)
    accion: str = Field(max_length=200)
    exito: bool = Field(default=True, index=True)
    mensaje_error: Optional[str] = Field(default=None)
    actor: Optional[str] = Field(default=None, max_length=80)
    datos: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON, nullable=True))
    fecha: datetime = Field(default_factory=datetime.utcnow, index=True)
