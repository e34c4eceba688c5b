"""
Modelos base para la API Manny Rewards
"""
from sqlmodel import SQLModel, Field
from typing import Optional
from datetime import datetime
import uuid


class BaseModel(SQLModel):
    """
    Campos de identidad comunes.

    ``id`` es la llave local; ``id_ext`` es estable entre entornos y es el
    valor que se escribe en la propiedad "ID Rewards" del CRM para poder
    recuperar la página si se pierde la ReferenciaExterna.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    id_ext: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        unique=True,
        index=True,
        description="Identificador estable compartido con el CRM",
    )


class TimestampMixin(SQLModel):
    creado_el: datetime = Field(default_factory=datetime.utcnow, index=True)


class BaseModelWithTimestamp(BaseModel, TimestampMixin):
    """Entidad con identidad y fecha de alta"""
    pass
