# manufactura/services/reservas.py

"""
Motor de reservas de materiales.

Calcula, a partir de la lista de materiales de un producto compuesto y una
cantidad a fabricar, cómo cambian existencia y existencia_reservada de cada
componente. Los cálculos (calcular_*) no modifican nada: validan y devuelven
una lista de AjusteComponente; aplicar_ajustes los persiste junto con sus
filas de historial. La transacción la abre quien llama (services.ordenes).
"""

import logging
from dataclasses import dataclass
from decimal import Decimal

from manufactura.errores import StockInsuficiente, con_resultado
from manufactura.models import AccionHistorial, ListaMateriales, OrdenProduccion, Producto
from manufactura.services.historial import registrar_historial
from manufactura.services.productos import CERO, a_decimal, ajustar_stock, obtener_producto, obtener_productos

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AjusteComponente:
    producto: Producto
    cantidad: Decimal
    delta_existencia: Decimal = CERO
    delta_reservada: Decimal = CERO
    accion: str | None = None
    descripcion: str = ""

    @property
    def producto_id(self) -> int:
        return self.producto.pk


def lineas_con_componentes(
    compuesto: Producto,
    *,
    bloquear: bool = False,
    incluir_inactivos: bool = False,
) -> list[tuple[ListaMateriales, Producto]]:
    """
    Resuelve la lista de materiales a pares (línea, componente).
    Lanza MaterialesNoEncontrados si algún componente no existe o está eliminado.
    Con incluir_inactivos=True los componentes eliminados se resuelven igual:
    lo usan la liberación y el consumo de reservas ya concedidas.
    """
    lineas = list(ListaMateriales.objects.filter(compuesto=compuesto).order_by("id"))
    componentes = {
        p.pk: p
        for p in obtener_productos(
            [linea.componente_id for linea in lineas],
            bloquear=bloquear,
            incluir_inactivos=incluir_inactivos,
        )
    }
    return [(linea, componentes[linea.componente_id]) for linea in lineas]


def calcular_reserva(
    compuesto: Producto,
    cantidad,
    *,
    cantidad_anterior=0,
    bloquear: bool = True,
) -> list[AjusteComponente]:
    """
    Reserva (o re-reserva) materiales para fabricar `cantidad` unidades.

    Con cantidad_anterior > 0 calcula solo la diferencia:
        nueva_reservada = reservada - por_unidad * anterior + por_unidad * cantidad
    Si para algún componente nueva_reservada > existencia, falla todo el cálculo.
    """
    cantidad = a_decimal(cantidad)
    cantidad_anterior = a_decimal(cantidad_anterior)
    ajustes: list[AjusteComponente] = []

    for linea, componente in lineas_con_componentes(compuesto, bloquear=bloquear):
        requerido = linea.cantidad * cantidad
        requerido_anterior = linea.cantidad * cantidad_anterior
        delta = requerido - requerido_anterior

        nueva_reservada = componente.existencia_reservada + delta
        if nueva_reservada > componente.existencia:
            raise StockInsuficiente(
                f"El material {componente.codigo} - {componente.nombre} no tiene suficiente "
                f"existencia disponible para fabricar {compuesto.codigo} - {compuesto.nombre}. "
                f"Requerido {requerido}, existencia {componente.existencia}, "
                f"reservada {componente.existencia_reservada - requerido_anterior}."
            )
        if nueva_reservada < 0:
            raise StockInsuficiente(
                f"La existencia reservada del material {componente.codigo} - {componente.nombre} "
                "es menor que la reserva de la orden. Revisa las órdenes en producción."
            )

        ajustes.append(
            AjusteComponente(
                producto=componente,
                cantidad=requerido,
                delta_reservada=delta,
                descripcion=f"Reserva para {compuesto.codigo} x {cantidad}",
            )
        )
    return ajustes


def calcular_liberacion(
    compuesto: Producto,
    cantidad,
    *,
    bloquear: bool = True,
) -> list[AjusteComponente]:
    """
    Libera la reserva hecha para `cantidad` unidades. No valida existencia:
    se asume que la reserva fue concedida antes.
    """
    cantidad = a_decimal(cantidad)
    return [
        AjusteComponente(
            producto=componente,
            cantidad=linea.cantidad * cantidad,
            delta_reservada=-(linea.cantidad * cantidad),
            descripcion=f"Liberación de reserva de {compuesto.codigo} x {cantidad}",
        )
        for linea, componente in lineas_con_componentes(
            compuesto, bloquear=bloquear, incluir_inactivos=True
        )
    ]


def calcular_consumo(
    compuesto: Producto,
    cantidad,
    *,
    orden: OrdenProduccion | None = None,
    bloquear: bool = True,
) -> list[AjusteComponente]:
    """
    Convierte la reserva en consumo real: baja existencia y existencia_reservada
    de cada componente en por_unidad * cantidad. Cada ajuste lleva su fila
    GASTODEPRODUCCION.
    """
    cantidad = a_decimal(cantidad)
    descripcion = (
        f"Gasto por orden de producción número {orden.pk}"
        if orden is not None
        else f"Gasto por producción de {compuesto.codigo} x {cantidad}"
    )
    ajustes: list[AjusteComponente] = []

    for linea, componente in lineas_con_componentes(compuesto, bloquear=bloquear, incluir_inactivos=True):
        requerido = linea.cantidad * cantidad

        # Por la reserva previa no debería ocurrir, salvo descargas externas concurrentes
        if componente.existencia < requerido:
            raise StockInsuficiente(
                f"No se puede reducir la existencia del producto {componente.codigo} - "
                f"{componente.nombre} a menos de cero. Requerido {requerido}, "
                f"existencia {componente.existencia}. Revisa el inventario."
            )
        if componente.existencia_reservada < requerido:
            raise StockInsuficiente(
                f"La existencia reservada del producto {componente.codigo} - {componente.nombre} "
                f"({componente.existencia_reservada}) no cubre el consumo de {requerido}."
            )

        ajustes.append(
            AjusteComponente(
                producto=componente,
                cantidad=requerido,
                delta_existencia=-requerido,
                delta_reservada=-requerido,
                accion=AccionHistorial.GASTODEPRODUCCION,
                descripcion=descripcion,
            )
        )
    return ajustes


def aplicar_ajustes(
    ajustes: list[AjusteComponente],
    *,
    orden: OrdenProduccion | None = None,
) -> list[Producto]:
    """
    Persiste los ajustes (stock + historial). Se debe llamar dentro de
    transaction.atomic: un fallo a mitad de camino revierte todo.
    """
    actualizados: list[Producto] = []
    for ajuste in ajustes:
        if ajuste.delta_existencia == 0 and ajuste.delta_reservada == 0 and not ajuste.accion:
            continue

        producto = ajustar_stock(
            ajuste.producto_id,
            delta_existencia=ajuste.delta_existencia,
            delta_reservada=ajuste.delta_reservada,
        )
        if ajuste.accion:
            registrar_historial(
                accion=ajuste.accion,
                cantidad=ajuste.cantidad,
                descripcion=ajuste.descripcion,
                producto=producto,
                orden_produccion=orden,
            )
        actualizados.append(producto)
    if actualizados:
        logger.info(
            "%s ajustes de materiales aplicados (orden=%s)",
            len(actualizados),
            orden.pk if orden else None,
        )
    return actualizados


# --- Operaciones públicas de solo cálculo (no persisten nada) ---

@con_resultado
def reservar(compuesto_id: int, cantidad) -> list[AjusteComponente]:
    compuesto = obtener_producto(compuesto_id)
    return calcular_reserva(compuesto, cantidad, bloquear=False)


@con_resultado
def liberar(compuesto_id: int, cantidad) -> list[AjusteComponente]:
    compuesto = obtener_producto(compuesto_id, incluir_inactivos=True)
    return calcular_liberacion(compuesto, cantidad, bloquear=False)


@con_resultado
def consumir(compuesto_id: int, cantidad) -> list[AjusteComponente]:
    compuesto = obtener_producto(compuesto_id, incluir_inactivos=True)
    return calcular_consumo(compuesto, cantidad, bloquear=False)
