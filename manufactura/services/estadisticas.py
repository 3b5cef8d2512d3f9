# manufactura/services/estadisticas.py

import logging
from datetime import datetime

from django.conf import settings
from django.db.models import Count, Sum
from django.db.models.functions import ExtractMonth
from django.utils import timezone

from manufactura.models import AccionHistorial, EstadoOrden, Historial, OrdenProduccion

logger = logging.getLogger(__name__)

MESES = ("Ene", "Feb", "Mar", "Abr", "May", "Jun", "Jul", "Ago", "Sep", "Oct", "Nov", "Dic")


def _limite(limite: int | None) -> int:
    if limite is None:
        return getattr(settings, "MANUFACTURA_TOP_ESTADISTICAS", 6)
    return limite


def ordenes_ejecutadas_por_mes(anio: int | None = None, ahora: datetime | None = None) -> list[dict]:
    """
    Órdenes ejecutadas por mes de culminación (fecha_fin_real, hora local)
    dentro de un año calendario. Siempre devuelve los 12 meses.
    """
    if anio is None:
        anio = timezone.localtime(ahora or timezone.now()).year

    conteo = dict(
        OrdenProduccion.objects.filter(
            estado=EstadoOrden.EJECUTADA,
            fecha_fin_real__year=anio,
        )
        .annotate(mes=ExtractMonth("fecha_fin_real"))
        .values("mes")
        .annotate(total=Count("id"))
        .order_by("mes")
        .values_list("mes", "total")
    )
    return [{"mes": nombre, "valor": conteo.get(numero, 0)} for numero, nombre in enumerate(MESES, start=1)]


def _ranking_historial(accion: str, limite: int | None) -> list[dict]:
    filas = (
        Historial.objects.filter(accion=accion, producto__isnull=False)
        .values("producto_id", "producto__codigo", "producto__nombre")
        .annotate(total=Sum("cantidad"))
        .order_by("-total", "producto__nombre")[: _limite(limite)]
    )
    return [
        {
            "producto_id": fila["producto_id"],
            "codigo": fila["producto__codigo"],
            "nombre": fila["producto__nombre"],
            "cantidad": fila["total"],
        }
        for fila in filas
    ]


def materiales_mas_usados(limite: int | None = None) -> list[dict]:
    """
    Materiales más consumidos por órdenes ejecutadas: suma de los gastos de
    producción registrados (cantidad por unidad x cantidad fabricada).
    """
    return _ranking_historial(AccionHistorial.GASTODEPRODUCCION, limite)


def productos_mas_vendidos(limite: int | None = None) -> list[dict]:
    """Productos con más unidades vendidas (descargas VENTA)."""
    return _ranking_historial(AccionHistorial.VENTA, limite)


def obtener_estadisticas(*, anio: int | None = None, limite: int | None = None, ahora: datetime | None = None) -> dict:
    estadisticas = {
        "ordenes_por_mes": ordenes_ejecutadas_por_mes(anio, ahora),
        "materiales_mas_usados": materiales_mas_usados(limite),
        "productos_mas_vendidos": productos_mas_vendidos(limite),
    }
    logger.debug("Estadísticas calculadas para %s", anio or "el año actual")
    return estadisticas
