"""
Almacenamiento local durable para el cliente.

Un único documento JSON con claves fijas. Si el archivo o una clave no se
puede interpretar se descarta (se trata como ausente) y se registra un
warning; nunca se propaga el error al llamador.
"""
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

from pydantic import ValidationError

from ..core.exceptions import CorruptLocalState
from ..models.clients import ClienteRead


logger = logging.getLogger(__name__)

KEY_OFFLINE_QUEUE = "offline_queue"
KEY_CLIENTE_PERFIL = "cliente_perfil"


class JsonStore:

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def _read_raw(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise CorruptLocalState(f"{self.path}: {e}") from e
        if not isinstance(data, dict):
            raise CorruptLocalState(f"{self.path}: se esperaba un objeto JSON")
        return data

    def _read(self) -> Dict[str, Any]:
        try:
            return self._read_raw()
        except CorruptLocalState as e:
            logger.warning("Estado local corrupto, se descarta: %s", e)
            self._write({})
            return {}

    def _write(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(data, ensure_ascii=False, default=str), encoding="utf-8")
        os.replace(tmp, self.path)

    def get(self, key: str, default: Any = None) -> Any:
        return self._read().get(key, default)

    def set(self, key: str, value: Any) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def delete(self, key: str) -> None:
        data = self._read()
        if key in data:
            del data[key]
            self._write(data)

    def clear(self) -> None:
        """Borra todo el estado local (cierre de sesión)"""
        self._write({})


class ProfileCache:
    """Perfil del cliente guardado localmente para mostrarlo sin conexión"""

    def __init__(self, store: JsonStore):
        self.store = store

    def save(self, perfil: ClienteRead) -> None:
        self.store.set(KEY_CLIENTE_PERFIL, perfil.model_dump(mode="json"))

    def load(self) -> Optional[ClienteRead]:
        raw = self.store.get(KEY_CLIENTE_PERFIL)
        if raw is None:
            return None
        try:
            return ClienteRead.model_validate(raw)
        except ValidationError as e:
            logger.warning("Perfil local ilegible, se descarta: %s", e.errors()[:1])
            self.store.delete(KEY_CLIENTE_PERFIL)
            return None

    def clear(self) -> None:
        self.store.delete(KEY_CLIENTE_PERFIL)
