# manufactura/services/terceros.py

"""Clientes y proveedores. El CI/RIF es único en cada tabla."""

import logging

from django.db import IntegrityError, transaction

from manufactura.errores import Conflicto, NoEncontrado, con_resultado
from manufactura.models import Cliente, Proveedor

logger = logging.getLogger(__name__)


def _guardar(instancia, mensaje_conflicto: str):
    # El savepoint deja usable la transacción externa si el INSERT falla
    try:
        with transaction.atomic():
            instancia.save()
    except IntegrityError:
        raise Conflicto(mensaje_conflicto)
    return instancia


def _crear(modelo, mensaje_conflicto: str, datos: dict):
    if modelo.objects.filter(ci_rif=datos.get("ci_rif")).exists():
        raise Conflicto(mensaje_conflicto)
    instancia = _guardar(modelo(**datos), mensaje_conflicto)
    logger.info("%s creado: %s", modelo.__name__, instancia)
    return instancia


def _actualizar(modelo, pk: int, mensaje_no_encontrado: str, mensaje_conflicto: str, datos: dict):
    try:
        instancia = modelo.objects.select_for_update().get(pk=pk)
    except modelo.DoesNotExist:
        raise NoEncontrado(mensaje_no_encontrado)

    ci_rif = datos.get("ci_rif", instancia.ci_rif)
    if modelo.objects.filter(ci_rif=ci_rif).exclude(pk=pk).exists():
        raise Conflicto(mensaje_conflicto)

    for campo, valor in datos.items():
        setattr(instancia, campo, valor)
    return _guardar(instancia, mensaje_conflicto)


@con_resultado
@transaction.atomic
def crear_cliente(**datos) -> Cliente:
    return _crear(Cliente, "Ya existe un cliente con el mismo CI/RIF", datos)


@con_resultado
@transaction.atomic
def actualizar_cliente(*, cliente_id: int, **datos) -> Cliente:
    return _actualizar(
        Cliente,
        cliente_id,
        "Cliente no encontrado",
        "Ya existe un cliente con el mismo CI/RIF",
        datos,
    )


@con_resultado
@transaction.atomic
def crear_proveedor(**datos) -> Proveedor:
    return _crear(Proveedor, "Ya existe un proveedor con el mismo CI/RIF", datos)


@con_resultado
@transaction.atomic
def actualizar_proveedor(*, proveedor_id: int, **datos) -> Proveedor:
    return _actualizar(
        Proveedor,
        proveedor_id,
        "Proveedor no encontrado",
        "Ya existe un proveedor con el mismo CI/RIF",
        datos,
    )
