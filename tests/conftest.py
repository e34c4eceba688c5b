import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DEBUG", "false")
os.environ.setdefault("NOTION_TOKEN", "")

import sys
from pathlib import Path

project_root = Path(__file__).resolve().parents[1]
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

import app.core.database
import app.models  # noqa: F401
from app.core.rate_limit import limiter

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine

limiter.enabled = False


@pytest.fixture()
def engine():
    return create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )


@pytest.fixture()
def db_session(engine):
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        yield session


@pytest.fixture()
def client(engine, db_session):
    from app.main import app
    from app.core.database import get_session

    def get_session_override():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = get_session_override
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def crear_cliente(session: Session, *, telefono: str = "5512345678", nombre: str = "Ana", puntos: int = 0,
                  es_admin: bool = False, nivel=None):
    from app.models.clients import Cliente, TipoNivelCliente

    cliente = Cliente(
        telefono=telefono,
        nombre=nombre,
        puntos_actuales=puntos,
        puntos_historicos=puntos,
        es_admin=es_admin,
        nivel=nivel or TipoNivelCliente.PARTNER,
    )
    session.add(cliente)
    session.commit()
    session.refresh(cliente)
    return cliente


def crear_producto(session: Session, *, nombre: str = "Termo Manny", puntos: int = 300, stock: int = 1,
                   tipo=None, activo: bool = True):
    from app.models.products import Producto, TipoProducto

    producto = Producto(
        nombre=nombre,
        puntos_requeridos=puntos,
        stock=stock,
        tipo=tipo or TipoProducto.PRODUCTO,
        activo=activo,
    )
    session.add(producto)
    session.commit()
    session.refresh(producto)
    return producto


def auth_headers(cliente) -> dict:
    from app.core.security import create_cliente_token

    return {"Authorization": f"Bearer {create_cliente_token(cliente.id)}"}
