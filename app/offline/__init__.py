"""
Cola offline del cliente: acciones capturadas sin conexión y reaplicadas
en orden al recuperar la red.
"""
from .storage import JsonStore, ProfileCache, KEY_OFFLINE_QUEUE, KEY_CLIENTE_PERFIL
from .queue import AccionOffline, EstadoAccion, TipoAccion, OfflineQueue, ResumenDrenado
from .executors import ApiExecutor, ServiceExecutor

__all__ = [
    "JsonStore",
    "ProfileCache",
    "KEY_OFFLINE_QUEUE",
    "KEY_CLIENTE_PERFIL",
    "AccionOffline",
    "EstadoAccion",
    "TipoAccion",
    "OfflineQueue",
    "ResumenDrenado",
    "ApiExecutor",
    "ServiceExecutor",
]
