"""
Errores de dominio del programa de lealtad.

Todos heredan de ValueError y ``str(error)`` devuelve el código
(``"INSUFFICIENT_POINTS"``, ``"OUT_OF_STOCK"``...), igual que los
``ValueError("CODIGO")`` que usan los servicios. ``message`` es el texto
para mostrar al usuario y ``data`` lleva el detalle (p. ej. el déficit).

Uso:
    try:
        RedemptionService.create_redemption(session, client_id=1, product_id=2)
    except InsufficientPoints as e:
        e.data["faltantes"]  # puntos que le faltan al cliente
"""
from typing import Any, Optional


class LoyaltyError(ValueError):
    """Error base con código, mensaje y datos estructurados"""

    code = "LOYALTY_ERROR"
    status_code = 400
    default_message = "Operación no permitida"

    def __init__(self, message: Optional[str] = None, **data: Any):
        self.message = message or self.default_message
        self.data = data
        super().__init__(self.code)

    def as_dict(self) -> dict:
        return {"code": self.code, "detail": self.message, "data": self.data}


class UnknownClient(LoyaltyError):
    code = "UNKNOWN_CLIENT"
    status_code = 404
    default_message = "Cliente no encontrado"


class UnknownProduct(LoyaltyError):
    code = "UNKNOWN_PRODUCT"
    status_code = 404
    default_message = "Producto no encontrado"


class UnknownRedemption(LoyaltyError):
    code = "UNKNOWN_REDEMPTION"
    status_code = 404
    default_message = "Canje no encontrado"


class InsufficientPoints(LoyaltyError):
    code = "INSUFFICIENT_POINTS"
    status_code = 409
    default_message = "Puntos insuficientes"

    def __init__(self, disponibles: int, requeridos: int):
        faltantes = requeridos - disponibles
        super().__init__(
            f"Puntos insuficientes: tienes {disponibles}, necesitas {requeridos} (te faltan {faltantes})",
            disponibles=disponibles,
            requeridos=requeridos,
            faltantes=faltantes,
        )


class ProductUnavailable(LoyaltyError):
    code = "PRODUCT_UNAVAILABLE"
    status_code = 409
    default_message = "El producto no está disponible actualmente"


class OutOfStock(ProductUnavailable):
    code = "OUT_OF_STOCK"
    default_message = "Producto agotado"

    def __init__(self, disponibles: int, solicitados: int = 1):
        super().__init__(
            f"Producto agotado: quedan {disponibles} unidades, se solicitaron {solicitados}",
            disponibles=disponibles,
            solicitados=solicitados,
        )


class InvalidTransition(LoyaltyError):
    code = "INVALID_TRANSITION"
    status_code = 409
    default_message = "Transición de estado no permitida"


class GiftNotFound(LoyaltyError):
    code = "GIFT_NOT_FOUND"
    status_code = 404
    default_message = "Link de regalo no encontrado"


class GiftRestricted(GiftNotFound):
    code = "GIFT_RESTRICTED"
    status_code = 403
    default_message = "Este regalo es para un número específico"


class GiftAlreadyClaimed(LoyaltyError):
    code = "GIFT_ALREADY_CLAIMED"
    status_code = 409
    default_message = "Este regalo ya fue canjeado"


class GiftExpired(LoyaltyError):
    code = "GIFT_EXPIRED"
    status_code = 410
    default_message = "Este regalo ha expirado"


class ActionConflict(LoyaltyError):
    code = "ACTION_CONFLICT"
    status_code = 409
    default_message = "El identificador de la acción ya se usó para otra operación"


class TransientSyncFailure(Exception):
    """Fallo de red o del CRM externo; se reintenta con backoff"""

    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        super().__init__(message)


class CorruptLocalState(Exception):
    """Estado local ilegible; se descarta y se reinicializa"""


def error_from_code(code: Optional[str], message: Optional[str] = None, data: Optional[dict] = None) -> LoyaltyError:
    """Reconstruye el error de dominio a partir del cuerpo de una respuesta de la API"""
    for cls in _ERRORES_DE_NEGOCIO:
        if cls.code == code:
            error = LoyaltyError.__new__(cls)
            LoyaltyError.__init__(error, message, **(data or {}))
            return error
    error = LoyaltyError(message, **(data or {}))
    if code:
        error.code = code
        error.args = (code,)
    return error


_ERRORES_DE_NEGOCIO = (
    UnknownClient,
    UnknownProduct,
    UnknownRedemption,
    InsufficientPoints,
    ProductUnavailable,
    OutOfStock,
    InvalidTransition,
    GiftNotFound,
    GiftRestricted,
    GiftAlreadyClaimed,
    GiftExpired,
    ActionConflict,
)
