# manufactura/services/movimientos.py

"""
Cargas y descargas manuales de stock, por fuera de las órdenes de producción.
Cada movimiento ajusta la existencia y deja una fila en el historial dentro
de la misma transacción.
"""

import logging
from decimal import Decimal, InvalidOperation

from django.db import transaction

from manufactura.errores import ClienteRequerido, NoEncontrado, StockInsuficiente, ValidacionFallida, con_resultado
from manufactura.models import AccionHistorial, Cliente, Historial, Proveedor
from manufactura.services.historial import registrar_historial
from manufactura.services.productos import a_decimal, ajustar_stock, obtener_producto

logger = logging.getLogger(__name__)

ACCIONES_CARGA = (AccionHistorial.INGRESO, AccionHistorial.VARIOS)
ACCIONES_DESCARGA = (AccionHistorial.EGRESO, AccionHistorial.VENTA, AccionHistorial.VARIOS)

DESCRIPCION_MIN = 20
DESCRIPCION_MAX = 300


def acciones_validas(acciones) -> list[dict]:
    """[{"valor": "INGRESO", "nombre": "Ingreso"}, ...] para poblar selectores."""
    return [{"valor": accion.value, "nombre": accion.label} for accion in acciones]


def _validar_movimiento(*, cantidad, accion: str, descripcion: str, permitidas, verbo: str) -> tuple[Decimal, str]:
    try:
        cantidad = a_decimal(cantidad)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidacionFallida("La cantidad debe ser un número")
    if not cantidad.is_finite() or cantidad <= 0:
        raise ValidacionFallida("La cantidad debe ser mayor a 0")

    if accion not in permitidas:
        raise ValidacionFallida(
            f"Los valores para {verbo} deben ser " + ", ".join(str(a) for a in permitidas)
        )

    descripcion = (descripcion or "").strip()
    if not DESCRIPCION_MIN <= len(descripcion) <= DESCRIPCION_MAX:
        raise ValidacionFallida(
            f"La descripción debe tener entre {DESCRIPCION_MIN} y {DESCRIPCION_MAX} caracteres"
        )
    return cantidad, descripcion


@con_resultado
@transaction.atomic
def cargar_producto(
    *,
    producto_id: int,
    cantidad,
    accion: str,
    descripcion: str,
    proveedor_id: int | None = None,
) -> Historial:
    """
    Ingresa stock de un producto (INGRESO o VARIOS), opcionalmente
    asociado a un proveedor. Devuelve la fila de historial creada.
    """
    cantidad, descripcion = _validar_movimiento(
        cantidad=cantidad,
        accion=accion,
        descripcion=descripcion,
        permitidas=ACCIONES_CARGA,
        verbo="cargar",
    )

    proveedor = None
    if proveedor_id is not None:
        proveedor = Proveedor.objects.filter(pk=proveedor_id).first()
        if proveedor is None:
            raise NoEncontrado("Proveedor no encontrado")

    producto = ajustar_stock(obtener_producto(producto_id).pk, delta_existencia=cantidad)
    registro = registrar_historial(
        accion=accion,
        cantidad=cantidad,
        descripcion=descripcion,
        producto=producto,
        proveedor=proveedor,
    )
    logger.info("Carga %s de %s %s (%s)", accion, cantidad, producto.codigo, registro.pk)
    return registro


@con_resultado
@transaction.atomic
def descargar_producto(
    *,
    producto_id: int,
    cantidad,
    accion: str,
    descripcion: str,
    cliente_id: int | None = None,
) -> Historial:
    """
    Egresa stock de un producto (EGRESO, VENTA o VARIOS).
    Una VENTA exige cliente. Nunca deja la existencia por debajo de cero.
    """
    cantidad, descripcion = _validar_movimiento(
        cantidad=cantidad,
        accion=accion,
        descripcion=descripcion,
        permitidas=ACCIONES_DESCARGA,
        verbo="descargar",
    )

    producto = obtener_producto(producto_id, bloquear=True)
    if producto.existencia - cantidad < 0:
        raise StockInsuficiente(
            f"No hay suficiente stock para descargar {producto.codigo} - {producto.nombre}. "
            f"Existencia {producto.existencia}, solicitado {cantidad}."
        )

    if accion == AccionHistorial.VENTA and cliente_id is None:
        raise ClienteRequerido("No se puede registrar una venta sin un cliente")

    cliente = None
    if cliente_id is not None:
        cliente = Cliente.objects.filter(pk=cliente_id).first()
        if cliente is None:
            raise NoEncontrado("Cliente no encontrado")

    producto = ajustar_stock(producto.pk, delta_existencia=-cantidad)
    registro = registrar_historial(
        accion=accion,
        cantidad=cantidad,
        descripcion=descripcion,
        producto=producto,
        cliente=cliente,
    )
    logger.info("Descarga %s de %s %s (%s)", accion, cantidad, producto.codigo, registro.pk)
    return registro
