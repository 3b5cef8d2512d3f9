import functools
import logging
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


class ErrorManufactura(Exception):
    """Errores de dominio del motor de producción e inventario."""

    tipo = "error_interno"

    def __init__(self, mensaje: str = ""):
        super().__init__(mensaje)
        self.mensaje = mensaje


class NoEncontrado(ErrorManufactura):
    tipo = "no_encontrado"


class MaterialesNoEncontrados(ErrorManufactura):
    tipo = "materiales_no_encontrados"


class StockInsuficiente(ErrorManufactura):
    tipo = "stock_insuficiente"


class TransicionInvalida(ErrorManufactura):
    tipo = "transicion_invalida"


class OrdenNoEditable(ErrorManufactura):
    tipo = "orden_no_editable"


class ValidacionFallida(ErrorManufactura):
    tipo = "validacion"


class ClienteRequerido(ErrorManufactura):
    tipo = "cliente_requerido"


class Conflicto(ErrorManufactura):
    tipo = "conflicto"


class ErrorInterno(ErrorManufactura):
    tipo = "error_interno"


MENSAJE_ERROR_INTERNO = (
    "Ocurrió un error inesperado. Por favor, inténtelo de nuevo más tarde"
)


@dataclass(frozen=True)
class Resultado:
    """
    Resultado discriminado de una operación pública:
    - ok=True  → `valor` contiene la entidad resultante.
    - ok=False → `error` es el tipo (ej: "stock_insuficiente") y `detalle` el mensaje.
    """

    ok: bool
    valor: Any = None
    error: str | None = None
    detalle: str = ""

    @classmethod
    def exito(cls, valor=None) -> "Resultado":
        return cls(ok=True, valor=valor)

    @classmethod
    def fallo(cls, exc: ErrorManufactura) -> "Resultado":
        return cls(ok=False, error=exc.tipo, detalle=exc.mensaje)

    def desenvolver(self):
        """Devuelve el valor o relanza el error como excepción de dominio."""
        if self.ok:
            return self.valor
        for clase in _CLASES_ERROR:
            if clase.tipo == self.error:
                raise clase(self.detalle)
        raise ErrorInterno(self.detalle)


_CLASES_ERROR = (
    NoEncontrado,
    MaterialesNoEncontrados,
    StockInsuficiente,
    TransicionInvalida,
    OrdenNoEditable,
    ValidacionFallida,
    ClienteRequerido,
    Conflicto,
    ErrorInterno,
)


def con_resultado(func):
    """
    Convierte una función de servicio que lanza ErrorManufactura en una que
    devuelve Resultado. Debe ir POR FUERA de transaction.atomic, para que el
    rollback ocurra antes de capturar la excepción.
    """

    @functools.wraps(func)
    def wrapper(*args, **kwargs) -> Resultado:
        try:
            return Resultado.exito(func(*args, **kwargs))
        except ErrorManufactura as exc:
            logger.warning("%s rechazada (%s): %s", func.__name__, exc.tipo, exc.mensaje)
            return Resultado.fallo(exc)
        except Exception:
            logger.exception("Error inesperado en %s", func.__name__)
            return Resultado.fallo(ErrorInterno(MENSAJE_ERROR_INTERNO))

    # Acceso a la versión que lanza excepciones, para componer servicios
    wrapper.sin_resultado = func
    return wrapper
