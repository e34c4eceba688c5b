"""
Catálogo de productos y servicios canjeables por puntos
"""
from sqlmodel import SQLModel, Field
from sqlalchemy import CheckConstraint
from typing import Optional
from enum import Enum

from .base import BaseModelWithTimestamp


class TipoProducto(str, Enum):
    PRODUCTO = "producto"
    SERVICIO = "servicio"


class Producto(BaseModelWithTimestamp, table=True):
    """
    Producto físico o servicio del catálogo.

    ``stock`` solo aplica a productos físicos; para servicios se ignora.
    Se decrementa únicamente vía LedgerService.decrement_stock.
    """
    __tablename__ = "productos"

    nombre: str = Field(max_length=120)
    descripcion: Optional[str] = Field(default=None)
    tipo: TipoProducto = Field(default=TipoProducto.PRODUCTO, index=True)
    puntos_requeridos: int = Field(gt=0, description="Puntos necesarios para canjear")
    stock: int = Field(default=0, ge=0, description="Unidades disponibles (solo productos físicos)")
    activo: bool = Field(default=True, index=True)
    imagen_url: Optional[str] = Field(default=None)

    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_productos_stock_no_negativo"),
    )

    @property
    def controla_stock(self) -> bool:
        return self.tipo == TipoProducto.PRODUCTO


class ProductoRead(SQLModel):
    id: int
    nombre: str
    tipo: TipoProducto
    puntos_requeridos: int
    stock: int
    activo: bool
    imagen_url: Optional[str] = None
