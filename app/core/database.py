from sqlmodel import SQLModel, create_engine, Session
from app.core.config import settings


def _connect_args(url: str) -> dict:
    # SQLite local (desarrollo y cola offline en proceso) se usa desde varios hilos
    if url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


# Crear el motor de la base de datos
engine = create_engine(
    settings.database_url,
    echo=settings.debug,  # Mostrar consultas SQL en modo debug
    pool_pre_ping=True,   # Verificar conexiones antes de usarlas
    connect_args=_connect_args(settings.database_url),
)


def create_db_and_tables():
    """Crear las tablas del núcleo de lealtad si no existen"""
    # Registrar los modelos en el metadata antes de crear
    import app.models  # noqa: F401

    SQLModel.metadata.create_all(engine)


def new_session() -> Session:
    """Sesión independiente para scripts, el worker de sync y la cola offline"""
    return Session(engine)


def get_session():
    """Dependencia de FastAPI: una sesión por request"""
    with new_session() as session:
        yield session
