"""
Modelos SQLModel para la API Manny Rewards
"""

# Modelos base
from .base import (
    BaseModel,
    TimestampMixin,
    BaseModelWithTimestamp
)

# Clientes y catálogo
from .clients import (
    TipoNivelCliente,
    Cliente,
    ClienteRead,
    NivelClienteUpdate
)
from .products import (
    TipoProducto,
    Producto,
    ProductoRead
)

# Libro de puntos
from .ledger import (
    MotivoTransaccion,
    TransaccionPuntos,
    TransaccionPuntosRead,
    AjustePuntosRequest,
    AjustePuntosResponse
)

# Canjes
from .redemptions import (
    EstadoCanje,
    Canje,
    CanjeCreate,
    CanjeEstadoUpdate,
    CanjeRead,
    CanjeCreateResponse
)

# Regalos
from .gifts import (
    TipoRegalo,
    EstadoLinkRegalo,
    LinkRegalo,
    BeneficioCliente,
    LinkRegaloCreate,
    LinkRegaloPublic,
    ReclamoRegaloResponse
)

# Sincronización con el CRM
from .sync import (
    EstadoTarea,
    TipoEntidad,
    OperacionSync,
    TareaSync,
    ReferenciaExterna,
    TareaSyncRead,
    ResumenProcesamiento,
    ResincronizacionRequest,
    ResumenResincronizacion
)

# Acciones offline aplicadas
from .actions import (
    TipoAccion,
    AccionAplicada
)

# Auditoría
from .audit import (
    TipoEvento,
    RegistroAuditoria
)

__all__ = [
    # Base
    "BaseModel",
    "TimestampMixin",
    "BaseModelWithTimestamp",

    # Clientes y catálogo
    "TipoNivelCliente",
    "Cliente",
    "ClienteRead",
    "NivelClienteUpdate",
    "TipoProducto",
    "Producto",
    "ProductoRead",

    # Libro de puntos
    "MotivoTransaccion",
    "TransaccionPuntos",
    "TransaccionPuntosRead",
    "AjustePuntosRequest",
    "AjustePuntosResponse",

    # Canjes
    "EstadoCanje",
    "Canje",
    "CanjeCreate",
    "CanjeEstadoUpdate",
    "CanjeRead",
    "CanjeCreateResponse",

    # Regalos
    "TipoRegalo",
    "EstadoLinkRegalo",
    "LinkRegalo",
    "BeneficioCliente",
    "LinkRegaloCreate",
    "LinkRegaloPublic",
    "ReclamoRegaloResponse",

    # Sincronización
    "EstadoTarea",
    "TipoEntidad",
    "OperacionSync",
    "TareaSync",
    "ReferenciaExterna",
    "TareaSyncRead",
    "ResumenProcesamiento",
    "ResincronizacionRequest",
    "ResumenResincronizacion",

    # Acciones offline
    "TipoAccion",
    "AccionAplicada",

    # Auditoría
    "TipoEvento",
    "RegistroAuditoria",
]
