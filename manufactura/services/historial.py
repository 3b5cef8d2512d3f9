import logging
from datetime import date, datetime
from decimal import Decimal

from manufactura.errores import ValidacionFallida
from manufactura.models import AccionHistorial, Cliente, Historial, OrdenProduccion, Producto, Proveedor

logger = logging.getLogger(__name__)


def registrar_historial(
    *,
    accion: str,
    cantidad: Decimal,
    descripcion: str,
    producto: Producto | None = None,
    cliente: Cliente | None = None,
    proveedor: Proveedor | None = None,
    orden_produccion: OrdenProduccion | None = None,
) -> Historial:
    """
    Inserta una fila en el historial. Debe llamarse dentro de la misma
    transacción que el cambio de stock que documenta.
    """
    if accion not in AccionHistorial.values:
        raise ValidacionFallida(f"Acción de historial inválida: {accion}")

    registro = Historial.objects.create(
        accion=accion,
        cantidad=cantidad,
        descripcion=descripcion[:300],
        producto=producto,
        cliente=cliente,
        proveedor=proveedor,
        orden_produccion=orden_produccion,
    )
    logger.info(
        "Historial %s: %s %s (producto=%s, orden=%s)",
        registro.pk,
        accion,
        cantidad,
        producto.codigo if producto else None,
        orden_produccion.pk if orden_produccion else None,
    )
    return registro


def consultar_historial(
    *,
    accion: str | None = None,
    producto: str | None = None,
    producto_id: int | None = None,
    proveedor_id: int | None = None,
    cliente_id: int | None = None,
    fecha_desde: date | datetime | None = None,
    fecha_hasta: date | datetime | None = None,
):
    """
    Historial filtrado, del más reciente al más antiguo.

    - producto: búsqueda parcial por nombre.
    - fecha_desde / fecha_hasta: rango inclusivo sobre la fecha de registro.
    """
    qs = Historial.objects.select_related("producto", "cliente", "proveedor", "orden_produccion")

    if accion:
        if accion not in AccionHistorial.values:
            raise ValidacionFallida(
                "Acción inválida. Los valores válidos son: " + ", ".join(AccionHistorial.values)
            )
        qs = qs.filter(accion=accion)
    if producto:
        qs = qs.filter(producto__nombre__icontains=producto)
    if producto_id:
        qs = qs.filter(producto_id=producto_id)
    if proveedor_id:
        qs = qs.filter(proveedor_id=proveedor_id)
    if cliente_id:
        qs = qs.filter(cliente_id=cliente_id)

    if fecha_desde:
        if isinstance(fecha_desde, datetime):
            qs = qs.filter(created_at__gte=fecha_desde)
        else:
            qs = qs.filter(created_at__date__gte=fecha_desde)
    if fecha_hasta:
        if isinstance(fecha_hasta, datetime):
            qs = qs.filter(created_at__lte=fecha_hasta)
        else:
            qs = qs.filter(created_at__date__lte=fecha_hasta)

    return qs.order_by("-created_at", "-id")
