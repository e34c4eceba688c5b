"""
Política de reintentos compartida por la cola de sincronización y la cola offline.

El intento N espera ``base * 2^(N-1)``; al llegar al techo de intentos la
tarea o acción queda en ``failed`` para intervención manual.
"""
from datetime import datetime, timedelta
from typing import Optional


def retry_delay(attempt: int, base_delay: float) -> float:
    """Segundos a esperar antes del reintento número ``attempt`` (1-indexado)"""
    if attempt < 1:
        return 0.0
    return base_delay * (2 ** (attempt - 1))


def next_retry_at(attempt: int, base_delay: float, now: Optional[datetime] = None) -> datetime:
    now = now or datetime.utcnow()
    return now + timedelta(seconds=retry_delay(attempt, base_delay))


def attempts_exhausted(attempts: int, max_attempts: int) -> bool:
    return attempts >= max_attempts
