"""
Contexto de sesión explícito: el cliente actual se resuelve desde el token
JWT en cada request y se pasa como dependencia, nunca desde estado global.
"""
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlmodel import Session

from app.core.database import get_session
from app.core.security import cliente_id_from_token
from app.models.clients import Cliente

# El login por teléfono vive fuera de este servicio; aquí solo se valida el token
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login")


def get_current_cliente(
    token: Annotated[str, Depends(oauth2_scheme)],
    session: Session = Depends(get_session),
) -> Cliente:
    """Obtener cliente actual desde el token JWT"""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="No se pudieron validar las credenciales",
        headers={"WWW-Authenticate": "Bearer"},
    )

    cliente_id = cliente_id_from_token(token)
    if cliente_id is None:
        raise credentials_exception

    cliente = session.get(Cliente, cliente_id)
    if cliente is None:
        raise credentials_exception
    if not cliente.activo:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cliente inactivo")
    return cliente


def require_admin(current: Cliente = Depends(get_current_cliente)) -> Cliente:
    """Requerir el claim de administrador en el cliente"""
    if not current.es_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Se requieren permisos de administrador"
        )
    return current


def check_ownership_or_admin(cliente_id: int, current: Cliente) -> bool:
    """Verificar si el cliente actual es el dueño del recurso o es admin"""
    return current.id == cliente_id or current.es_admin
