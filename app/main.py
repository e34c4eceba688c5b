from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.config import settings
from app.core.database import create_db_and_tables
from app.core.errors import (
    http_exception_handler,
    loyalty_error_handler,
    rate_limit_exceeded_handler,
    starlette_http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from app.core.exceptions import LoyaltyError
from app.core.rate_limit import limiter
from app.core.request_id import RequestIdMiddleware, configure_logging
from app.routers import canjes, puntos, regalos, sync_admin, webhooks

configure_logging(settings.debug)

# Crear la aplicación FastAPI
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="API de Manny Rewards - puntos, canjes y regalos con sincronización a Notion",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.state.limiter = limiter

app.add_exception_handler(LoyaltyError, loyalty_error_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(StarletteHTTPException, starlette_http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

# Configurar CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # En producción, especificar dominios específicos
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestIdMiddleware)

# Incluir routers
app.include_router(canjes.router, prefix="/api/v1")
app.include_router(puntos.router, prefix="/api/v1")
app.include_router(regalos.router, prefix="/api/v1")
app.include_router(sync_admin.router, prefix="/api/v1")
app.include_router(webhooks.router, prefix="/api/v1")


@app.on_event("startup")
def on_startup():
    """Eventos que se ejecutan al iniciar la aplicación"""
    create_db_and_tables()


@app.get("/")
def read_root():
    """Endpoint raíz de la API"""
    return {
        "message": f"Bienvenido a {settings.app_name}",
        "version": settings.app_version,
        "docs": "/docs",
        "redoc": "/redoc"
    }


@app.get("/health")
def health_check():
    """Endpoint para verificar el estado de la API"""
    return {"status": "healthy", "app": settings.app_name}
