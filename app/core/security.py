"""
Tokens de sesión de clientes.

El login por teléfono vive fuera de este servicio; aquí solo se emiten
(para scripts y tests) y se validan los JWT. El claim ``sub`` lleva el id
del cliente y ``scope`` distingue los tokens de cliente de otros emisores.
"""
from datetime import datetime, timedelta
from typing import Optional
from jose import JWTError, jwt
import logging
from app.core.config import settings

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
SCOPE_CLIENTE = "cliente"


def create_cliente_token(cliente_id: int, expires_delta: Optional[timedelta] = None) -> str:
    """Crear token JWT de sesión para un cliente"""
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    claims = {"sub": str(cliente_id), "scope": SCOPE_CLIENTE, "exp": expire}
    return jwt.encode(claims, settings.secret_key, algorithm=ALGORITHM)


def cliente_id_from_token(token: str) -> Optional[int]:
    """Id del cliente del token, o None si el token no es válido"""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except JWTError:
        logger.debug("Token JWT inválido o vencido")
        return None

    if payload.get("scope", SCOPE_CLIENTE) != SCOPE_CLIENTE:
        return None
    try:
        return int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        return None
