from typing import Any, Optional


class ScopeGuard:
    """Marca el scope activo de una vista para descartar respuestas que llegan tarde.

    Cada ``begin`` devuelve un token; una consulta lanzada con un token que ya no
    es el actual pertenece a un scope abandonado y su resultado no se aplica.
    """

    def __init__(self):
        self._token = 0
        self.scope: Optional[Any] = None

    def begin(self, scope: Any) -> int:
        self._token += 1
        self.scope = scope
        return self._token

    def end(self) -> None:
        self._token += 1
        self.scope = None

    def is_current(self, token: int) -> bool:
        return token == self._token

    @property
    def token(self) -> int:
        return self._token
