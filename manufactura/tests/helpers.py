from datetime import datetime, timedelta
from decimal import Decimal

from django.utils import timezone

from manufactura.models import Cliente, ListaMateriales, Producto, Proveedor, TipoProducto

# Reloj fijo para las pruebas de servicios
AHORA = timezone.make_aware(datetime(2025, 3, 10, 9, 30))
FECHA_FIN = AHORA.date() + timedelta(days=30)
RESPONSABLES = "Ana Pérez y Luis Gómez"


def crear_producto(
    codigo,
    nombre=None,
    *,
    existencia="0",
    reservada="0",
    tipo=TipoProducto.INSUMOS,
    unidad="unidad",
):
    return Producto.objects.create(
        codigo=codigo,
        nombre=nombre or codigo.title(),
        tipo_producto=tipo,
        unidad_medida=unidad,
        existencia=Decimal(existencia),
        existencia_reservada=Decimal(reservada),
        planos=f"https://planos.example.com/{codigo.lower()}.pdf",
    )


def agregar_material(compuesto, componente, cantidad):
    return ListaMateriales.objects.create(
        compuesto=compuesto,
        componente=componente,
        cantidad=Decimal(cantidad),
    )


def crear_cliente(ci_rif="V12345678", **campos):
    datos = {
        "nombre_contacto": "María Rodríguez",
        "nombre_empresa": "Ferretería El Tornillo",
        "empresa_telefono": "02125551234",
        "email_empresa": "ventas@eltornillo.com",
        "email_contacto": "maria@eltornillo.com",
        "ci_rif": ci_rif,
        "direccion_fiscal": "Av. Principal, Caracas",
    }
    datos.update(campos)
    return Cliente.objects.create(**datos)


def crear_proveedor(ci_rif="J30123456", **campos):
    datos = {
        "nombre_empresa": "Aceros del Centro",
        "persona_contacto": "Pedro Salas",
        "telefono": "02415559876",
        "descripcion": "Proveedor de tornillería y perfiles",
        "email": "compras@aceroscentro.com",
        "ci_rif": ci_rif,
    }
    datos.update(campos)
    return Proveedor.objects.create(**datos)
