# manufactura/services/ordenes.py

"""
Ciclo de vida de las órdenes de producción.

    PorIniciar ──► EnProceso ──► Ejecutada
        │
        └────────► Cancelada

- Crear: reserva los materiales (existencia_reservada de cada componente).
- Actualizar (solo PorIniciar): re-reserva por diferencia de cantidad.
- EnProceso: marca fecha_inicio, sin efecto en stock.
- Cancelada: libera la reserva.
- Ejecutada: consume materiales, ingresa el producto fabricado y deja
  constancia en el historial.

Cada operación corre en un único transaction.atomic.
"""

import logging
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

from django.db import transaction
from django.utils import timezone
from django.utils.dateparse import parse_date

from manufactura.errores import (
    NoEncontrado,
    OrdenNoEditable,
    TransicionInvalida,
    ValidacionFallida,
    con_resultado,
)
from manufactura.models import AccionHistorial, EstadoOrden, OrdenProduccion
from manufactura.services.historial import registrar_historial
from manufactura.services.productos import ajustar_stock, bloquear_con_materiales
from manufactura.services.reservas import (
    aplicar_ajustes,
    calcular_consumo,
    calcular_liberacion,
    calcular_reserva,
)

logger = logging.getLogger(__name__)

TRANSICIONES: dict[str, frozenset[str]] = {
    EstadoOrden.POR_INICIAR: frozenset({EstadoOrden.EN_PROCESO, EstadoOrden.CANCELADA}),
    EstadoOrden.EN_PROCESO: frozenset({EstadoOrden.EJECUTADA}),
    EstadoOrden.EJECUTADA: frozenset(),
    EstadoOrden.CANCELADA: frozenset(),
}

RESPONSABLES_MIN = 10
RESPONSABLES_MAX = 400


def _ahora(ahora: datetime | None) -> datetime:
    return ahora or timezone.now()


def _hoy(ahora: datetime | None) -> date:
    momento = _ahora(ahora)
    if timezone.is_naive(momento):
        return momento.date()
    return timezone.localdate(momento)


def obtener_orden(orden_id: int, *, bloquear: bool = False) -> OrdenProduccion:
    qs = OrdenProduccion.objects.select_related("producto")
    if bloquear:
        qs = qs.select_for_update()
    try:
        return qs.get(pk=orden_id)
    except OrdenProduccion.DoesNotExist:
        raise NoEncontrado("Orden de producción no encontrada")


def validar_datos_orden(
    *,
    cantidad_producto_fabricado,
    fecha_fin,
    responsables: str,
    ahora: datetime | None = None,
) -> tuple[int, date, str]:
    """
    Validación previa a crear/actualizar. Devuelve los valores normalizados
    (cantidad entera, fecha sin hora, responsables sin espacios sobrantes).
    """
    try:
        cantidad = int(cantidad_producto_fabricado)
        exacta = Decimal(str(cantidad_producto_fabricado)) == cantidad
    except (TypeError, ValueError, OverflowError, InvalidOperation):
        exacta = False
    if isinstance(cantidad_producto_fabricado, bool) or not exacta:
        raise ValidacionFallida("La cantidad a fabricar debe ser un número entero")
    if cantidad <= 0:
        raise ValidacionFallida("La cantidad a fabricar debe ser mayor a 0")

    if isinstance(fecha_fin, str):
        try:
            fecha_fin = parse_date(fecha_fin)
        except ValueError:
            fecha_fin = None
    if isinstance(fecha_fin, datetime):
        fecha_fin = fecha_fin.date()
    if not isinstance(fecha_fin, date):
        raise ValidacionFallida("La fecha de finalización es obligatoria")
    # Solo cuenta el día: terminar "hoy" no es válido
    if fecha_fin <= _hoy(ahora):
        raise ValidacionFallida("La fecha de finalización debe ser posterior a la fecha actual")

    responsables = (responsables or "").strip()
    if not RESPONSABLES_MIN <= len(responsables) <= RESPONSABLES_MAX:
        raise ValidacionFallida(
            f"Los responsables deben tener entre {RESPONSABLES_MIN} y {RESPONSABLES_MAX} caracteres"
        )
    return cantidad, fecha_fin, responsables


def validar_transicion(orden: OrdenProduccion, destino: str) -> None:
    if destino not in EstadoOrden.values:
        raise ValidacionFallida(
            "Estado de orden inválido. Los valores válidos son: " + ", ".join(EstadoOrden.values)
        )
    if destino not in TRANSICIONES[orden.estado]:
        raise TransicionInvalida(
            f"No se puede cambiar el estado de la orden {orden.pk} "
            f"de {orden.estado} a {destino}"
        )


def consultar_ordenes(
    *,
    producto: str | None = None,
    producto_id: int | None = None,
    estado: str | None = None,
    fecha_fin: date | None = None,
):
    """Órdenes filtradas, las más recientes primero."""
    qs = OrdenProduccion.objects.select_related("producto")
    if producto:
        qs = qs.filter(producto__nombre__icontains=producto)
    if producto_id:
        qs = qs.filter(producto_id=producto_id)
    if estado:
        if estado not in EstadoOrden.values:
            raise ValidacionFallida(
                "Estado de orden inválido. Los valores válidos son: " + ", ".join(EstadoOrden.values)
            )
        qs = qs.filter(estado=estado)
    if fecha_fin:
        qs = qs.filter(fecha_fin=fecha_fin)
    return qs.order_by("-created_at", "-id")


@con_resultado
@transaction.atomic
def crear_orden(
    *,
    producto_id: int,
    cantidad_producto_fabricado,
    fecha_fin,
    responsables: str,
    ahora: datetime | None = None,
) -> OrdenProduccion:
    """
    Crea la orden en PorIniciar y reserva sus materiales.
    Si algún componente no alcanza, no se reserva nada.
    """
    cantidad, fecha_fin, responsables = validar_datos_orden(
        cantidad_producto_fabricado=cantidad_producto_fabricado,
        fecha_fin=fecha_fin,
        responsables=responsables,
        ahora=ahora,
    )
    # Compuesto y materiales bloqueados juntos, en orden de id
    producto = bloquear_con_materiales(producto_id)
    ajustes = calcular_reserva(producto, cantidad)

    orden = OrdenProduccion.objects.create(
        producto=producto,
        cantidad_producto_fabricado=cantidad,
        fecha_fin=fecha_fin,
        responsables=responsables,
        estado=EstadoOrden.POR_INICIAR,
    )
    aplicar_ajustes(ajustes, orden=orden)

    logger.info(
        "Orden %s creada: %s x %s (%s materiales reservados)",
        orden.pk,
        producto.codigo,
        cantidad,
        len(ajustes),
    )
    return orden


@con_resultado
@transaction.atomic
def actualizar_orden(
    *,
    orden_id: int,
    cantidad_producto_fabricado,
    fecha_fin,
    responsables: str,
    ahora: datetime | None = None,
) -> OrdenProduccion:
    """
    Edita una orden por iniciar. Si cambia la cantidad, la reserva se
    recalcula por diferencia (no se suma a la anterior).
    """
    orden = obtener_orden(orden_id, bloquear=True)
    if not orden.es_editable:
        raise OrdenNoEditable(
            f"No se puede actualizar la orden {orden.pk} en estado {orden.estado}: "
            "solo se editan órdenes por iniciar"
        )

    cantidad, fecha_fin, responsables = validar_datos_orden(
        cantidad_producto_fabricado=cantidad_producto_fabricado,
        fecha_fin=fecha_fin,
        responsables=responsables,
        ahora=ahora,
    )

    if cantidad != orden.cantidad_producto_fabricado:
        producto = bloquear_con_materiales(orden.producto_id)
        ajustes = calcular_reserva(
            producto,
            cantidad,
            cantidad_anterior=orden.cantidad_producto_fabricado,
        )
        aplicar_ajustes(ajustes, orden=orden)
        logger.info(
            "Orden %s: cantidad %s -> %s, reserva recalculada",
            orden.pk,
            orden.cantidad_producto_fabricado,
            cantidad,
        )

    orden.cantidad_producto_fabricado = cantidad
    orden.fecha_fin = fecha_fin
    orden.responsables = responsables
    orden.save(update_fields=["cantidad_producto_fabricado", "fecha_fin", "responsables", "updated_at"])
    return orden


def _iniciar(orden: OrdenProduccion, ahora: datetime | None) -> None:
    orden.fecha_inicio = _ahora(ahora)


def _cancelar(orden: OrdenProduccion, ahora: datetime | None) -> None:
    producto = bloquear_con_materiales(orden.producto_id, incluir_inactivos=True)
    ajustes = calcular_liberacion(producto, orden.cantidad_producto_fabricado)
    aplicar_ajustes(ajustes, orden=orden)
    registrar_historial(
        accion=AccionHistorial.ORDENPRODUCCION,
        cantidad=Decimal("0"),
        descripcion=f"Orden de producción número {orden.pk} cancelada",
        orden_produccion=orden,
    )


def _ejecutar(orden: OrdenProduccion, ahora: datetime | None) -> None:
    producto = bloquear_con_materiales(orden.producto_id, incluir_inactivos=True)
    cantidad = orden.cantidad_producto_fabricado

    aplicar_ajustes(calcular_consumo(producto, cantidad, orden=orden), orden=orden)

    producto = ajustar_stock(producto.pk, delta_existencia=Decimal(cantidad))
    registrar_historial(
        accion=AccionHistorial.INGRESOPORPRODUCCION,
        cantidad=Decimal(cantidad),
        descripcion=f"Ingreso por orden de producción {orden.pk}",
        producto=producto,
        orden_produccion=orden,
    )
    registrar_historial(
        accion=AccionHistorial.ORDENPRODUCCION,
        cantidad=Decimal("0"),
        descripcion=f"Orden de producción número {orden.pk} culminada",
        orden_produccion=orden,
    )
    orden.fecha_fin_real = _ahora(ahora)


_EFECTOS = {
    EstadoOrden.EN_PROCESO: _iniciar,
    EstadoOrden.CANCELADA: _cancelar,
    EstadoOrden.EJECUTADA: _ejecutar,
}


def _transicionar(orden_id: int, destino: str, ahora: datetime | None) -> OrdenProduccion:
    # El lock de la orden serializa dos transiciones simultáneas sobre ella
    orden = obtener_orden(orden_id, bloquear=True)
    validar_transicion(orden, destino)

    anterior = orden.estado
    _EFECTOS[destino](orden, ahora)
    orden.estado = destino
    orden.save(update_fields=["estado", "fecha_inicio", "fecha_fin_real", "updated_at"])

    logger.info("Orden %s: %s -> %s", orden.pk, anterior, destino)
    return orden


@con_resultado
@transaction.atomic
def cambiar_estado_orden(
    *,
    orden_id: int,
    estado: str,
    ahora: datetime | None = None,
) -> OrdenProduccion:
    return _transicionar(orden_id, estado, ahora)


@con_resultado
@transaction.atomic
def iniciar_orden(*, orden_id: int, ahora: datetime | None = None) -> OrdenProduccion:
    """PorIniciar → EnProceso."""
    return _transicionar(orden_id, EstadoOrden.EN_PROCESO, ahora)


@con_resultado
@transaction.atomic
def cancelar_orden(*, orden_id: int, ahora: datetime | None = None) -> OrdenProduccion:
    """PorIniciar → Cancelada. Libera la reserva de materiales."""
    return _transicionar(orden_id, EstadoOrden.CANCELADA, ahora)


@con_resultado
@transaction.atomic
def ejecutar_orden(*, orden_id: int, ahora: datetime | None = None) -> OrdenProduccion:
    """EnProceso → Ejecutada. Consume materiales e ingresa el producto fabricado."""
    return _transicionar(orden_id, EstadoOrden.EJECUTADA, ahora)
