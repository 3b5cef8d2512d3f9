from datetime import timedelta
from decimal import Decimal

from django.test import TestCase
from django.utils import timezone

from manufactura.errores import ValidacionFallida
from manufactura.models import AccionHistorial, Historial
from manufactura.services.historial import consultar_historial, registrar_historial
from manufactura.tests.helpers import crear_cliente, crear_producto, crear_proveedor


class RegistrarHistorialTests(TestCase):
    def test_registra_y_recorta_descripcion(self):
        producto = crear_producto("HIL", "Hilo")

        fila = registrar_historial(
            accion=AccionHistorial.VARIOS,
            cantidad=Decimal("2"),
            descripcion="a" * 350,
            producto=producto,
        )

        self.assertEqual(len(fila.descripcion), 300)
        self.assertEqual(fila.producto, producto)

    def test_accion_invalida(self):
        with self.assertRaises(ValidacionFallida):
            registrar_historial(accion="REGALO", cantidad=Decimal("1"), descripcion="Sin acción válida")


class ConsultarHistorialTests(TestCase):
    def setUp(self):
        self.hilo = crear_producto("HIL", "Hilo de algodón")
        self.boton = crear_producto("BOT", "Botón de nácar")
        self.cliente = crear_cliente()
        self.proveedor = crear_proveedor()

        self.ingreso = registrar_historial(
            accion=AccionHistorial.INGRESO,
            cantidad=Decimal("10"),
            descripcion="Compra de hilo",
            producto=self.hilo,
            proveedor=self.proveedor,
        )
        self.venta = registrar_historial(
            accion=AccionHistorial.VENTA,
            cantidad=Decimal("3"),
            descripcion="Venta de botones",
            producto=self.boton,
            cliente=self.cliente,
        )

    def test_sin_filtros_del_mas_reciente_al_mas_antiguo(self):
        self.assertEqual(list(consultar_historial()), [self.venta, self.ingreso])

    def test_filtros(self):
        self.assertEqual(list(consultar_historial(accion=AccionHistorial.VENTA)), [self.venta])
        self.assertEqual(list(consultar_historial(producto="algodón")), [self.ingreso])
        self.assertEqual(list(consultar_historial(producto_id=self.boton.pk)), [self.venta])
        self.assertEqual(list(consultar_historial(proveedor_id=self.proveedor.pk)), [self.ingreso])
        self.assertEqual(list(consultar_historial(cliente_id=self.cliente.pk)), [self.venta])

    def test_rango_de_fechas(self):
        hoy = timezone.localdate()

        self.assertEqual(consultar_historial(fecha_desde=hoy, fecha_hasta=hoy).count(), 2)
        self.assertEqual(consultar_historial(fecha_desde=hoy + timedelta(days=1)).count(), 0)
        self.assertEqual(consultar_historial(fecha_hasta=hoy - timedelta(days=1)).count(), 0)

    def test_accion_invalida(self):
        with self.assertRaises(ValidacionFallida):
            consultar_historial(accion="REGALO")

    def test_es_de_solo_insercion(self):
        with self.assertRaises(ValueError):
            self.venta.save()
        with self.assertRaises(ValueError):
            self.venta.delete()
        self.assertEqual(Historial.objects.count(), 2)
