from datetime import timedelta
from decimal import Decimal
from unittest import mock

from django.test import TestCase

from manufactura.models import AccionHistorial, EstadoOrden, Historial, OrdenProduccion, Producto, TipoProducto
from manufactura.services import productos
from manufactura.services.ordenes import (
    actualizar_orden,
    cambiar_estado_orden,
    cancelar_orden,
    crear_orden,
    ejecutar_orden,
    iniciar_orden,
)
from manufactura.tests.helpers import AHORA, FECHA_FIN, RESPONSABLES, agregar_material, crear_producto


class OrdenesBaseTestCase(TestCase):
    def setUp(self):
        # Bolt: 100 en existencia; el ensamble usa 2 por unidad
        self.bolt = crear_producto("BOLT", "Tornillo", existencia="100")
        self.ensamble = crear_producto("ENS-1", "Ensamble", tipo=TipoProducto.SENCILLOS)
        agregar_material(self.ensamble, self.bolt, "2")

    def crear(self, cantidad, producto=None, **kwargs):
        datos = {
            "producto_id": (producto or self.ensamble).pk,
            "cantidad_producto_fabricado": cantidad,
            "fecha_fin": FECHA_FIN,
            "responsables": RESPONSABLES,
            "ahora": AHORA,
        }
        datos.update(kwargs)
        return crear_orden(**datos)

    def actualizar(self, orden, cantidad, **kwargs):
        datos = {
            "orden_id": orden.pk,
            "cantidad_producto_fabricado": cantidad,
            "fecha_fin": FECHA_FIN,
            "responsables": RESPONSABLES,
            "ahora": AHORA,
        }
        datos.update(kwargs)
        return actualizar_orden(**datos)

    def stock(self, producto):
        producto.refresh_from_db()
        return producto.existencia, producto.existencia_reservada


class CrearOrdenTests(OrdenesBaseTestCase):
    def test_crear_orden_reserva_materiales(self):
        resultado = self.crear(40)

        self.assertTrue(resultado.ok)
        orden = resultado.valor
        self.assertEqual(orden.estado, EstadoOrden.POR_INICIAR)
        self.assertEqual(orden.cantidad_producto_fabricado, 40)
        self.assertIsNone(orden.fecha_inicio)
        self.assertEqual(self.stock(self.bolt), (Decimal("100"), Decimal("80")))
        # Reservar no escribe historial
        self.assertEqual(Historial.objects.count(), 0)

    def test_segunda_orden_sin_stock_falla_y_no_reserva(self):
        self.assertTrue(self.crear(40).ok)

        resultado = self.crear(15)

        self.assertFalse(resultado.ok)
        self.assertEqual(resultado.error, "stock_insuficiente")
        self.assertIn("BOLT", resultado.detalle)
        self.assertIn("Tornillo", resultado.detalle)
        self.assertEqual(self.stock(self.bolt), (Decimal("100"), Decimal("80")))
        self.assertEqual(OrdenProduccion.objects.count(), 1)

    def test_reservar_exactamente_la_existencia(self):
        resultado = self.crear(50)

        self.assertTrue(resultado.ok)
        self.assertEqual(self.stock(self.bolt), (Decimal("100"), Decimal("100")))

    def test_exceder_la_existencia_por_una_fraccion_falla(self):
        tuerca = crear_producto("TUERCA", existencia="100")
        pieza = crear_producto("PIEZA", tipo=TipoProducto.SENCILLOS)
        agregar_material(pieza, tuerca, "2.001")

        resultado = self.crear(50, producto=pieza)

        self.assertEqual(resultado.error, "stock_insuficiente")
        self.assertEqual(self.stock(tuerca), (Decimal("100"), Decimal("0")))

    def test_falla_en_un_componente_no_reserva_ninguno(self):
        arandela = crear_producto("ARANDELA", existencia="5")
        agregar_material(self.ensamble, arandela, "1")

        resultado = self.crear(10)

        self.assertEqual(resultado.error, "stock_insuficiente")
        self.assertIn("ARANDELA", resultado.detalle)
        self.assertEqual(self.stock(self.bolt), (Decimal("100"), Decimal("0")))
        self.assertEqual(self.stock(arandela), (Decimal("5"), Decimal("0")))
        self.assertFalse(OrdenProduccion.objects.exists())

    def test_cantidad_debe_ser_entero_positivo(self):
        for cantidad in (0, -3, 2.5, "abc", float("inf"), float("nan")):
            with self.subTest(cantidad=cantidad):
                resultado = self.crear(cantidad)
                self.assertEqual(resultado.error, "validacion")
        self.assertFalse(OrdenProduccion.objects.exists())

    def test_fecha_fin_debe_ser_posterior_a_hoy(self):
        hoy = self.crear(1, fecha_fin=AHORA.date())
        ayer = self.crear(1, fecha_fin=AHORA.date() - timedelta(days=1))
        manana = self.crear(1, fecha_fin=AHORA.date() + timedelta(days=1))

        self.assertEqual(hoy.error, "validacion")
        self.assertEqual(ayer.error, "validacion")
        self.assertTrue(manana.ok)

    def test_responsables_entre_10_y_400_caracteres(self):
        self.assertEqual(self.crear(1, responsables="Ana").error, "validacion")
        self.assertEqual(self.crear(1, responsables="x" * 401).error, "validacion")
        self.assertTrue(self.crear(1, responsables="x" * 10).ok)

    def test_producto_inexistente_o_eliminado(self):
        self.assertEqual(self.crear(1, producto_id=999999).error, "no_encontrado")

        Producto.objects.filter(pk=self.ensamble.pk).update(activo=False)
        self.assertEqual(self.crear(1).error, "no_encontrado")

    def test_componente_eliminado_falla_con_materiales_no_encontrados(self):
        Producto.objects.filter(pk=self.bolt.pk).update(activo=False)

        resultado = self.crear(1)

        self.assertEqual(resultado.error, "materiales_no_encontrados")
        self.assertIn(str(self.bolt.pk), resultado.detalle)


    def test_bloquea_compuesto_y_materiales_juntos_en_orden_de_id(self):
        # MUEBLE tiene un id mayor que ENS-1, uno de sus materiales
        mueble = crear_producto("MUEBLE", tipo=TipoProducto.COMPUESTOS)
        tabla = crear_producto("TABLA", existencia="50")
        agregar_material(mueble, self.ensamble, "1")
        agregar_material(mueble, tabla, "2")
        Producto.objects.filter(pk=self.ensamble.pk).update(existencia=Decimal("10"))

        with mock.patch(
            "manufactura.services.productos.obtener_productos",
            wraps=productos.obtener_productos,
        ) as espia:
            resultado = self.crear(3, producto=mueble)

        self.assertTrue(resultado.ok)
        args, kwargs = espia.call_args_list[0]
        self.assertEqual(sorted(args[0]), sorted([mueble.pk, self.ensamble.pk, tabla.pk]))
        self.assertTrue(kwargs["bloquear"])


class ActualizarOrdenTests(OrdenesBaseTestCase):
    def test_bajar_cantidad_recalcula_la_reserva(self):
        orden = self.crear(40).valor

        resultado = self.actualizar(orden, 10)

        self.assertTrue(resultado.ok)
        self.assertEqual(resultado.valor.cantidad_producto_fabricado, 10)
        # 2 x 10, no 80 + 20
        self.assertEqual(self.stock(self.bolt), (Decimal("100"), Decimal("20")))

    def test_subir_cantidad_hasta_la_existencia(self):
        orden = self.crear(40).valor

        self.assertTrue(self.actualizar(orden, 50).ok)
        self.assertEqual(self.stock(self.bolt), (Decimal("100"), Decimal("100")))

        resultado = self.actualizar(orden, 51)
        self.assertEqual(resultado.error, "stock_insuficiente")
        self.assertEqual(self.stock(self.bolt), (Decimal("100"), Decimal("100")))
        orden.refresh_from_db()
        self.assertEqual(orden.cantidad_producto_fabricado, 50)

    def test_actualizar_sin_cambiar_cantidad_no_toca_stock(self):
        orden = self.crear(40).valor

        resultado = self.actualizar(orden, 40, responsables="Equipo de ensamblaje B")

        self.assertTrue(resultado.ok)
        self.assertEqual(resultado.valor.responsables, "Equipo de ensamblaje B")
        self.assertEqual(self.stock(self.bolt), (Decimal("100"), Decimal("80")))

    def test_solo_se_edita_por_iniciar(self):
        orden = self.crear(40).valor
        iniciar_orden(orden_id=orden.pk, ahora=AHORA)

        resultado = self.actualizar(orden, 10)

        self.assertEqual(resultado.error, "orden_no_editable")
        self.assertEqual(self.stock(self.bolt), (Decimal("100"), Decimal("80")))

    def test_orden_inexistente(self):
        resultado = actualizar_orden(
            orden_id=999999,
            cantidad_producto_fabricado=1,
            fecha_fin=FECHA_FIN,
            responsables=RESPONSABLES,
            ahora=AHORA,
        )
        self.assertEqual(resultado.error, "no_encontrado")


class TransicionesTests(OrdenesBaseTestCase):
    def test_ciclo_completo_consume_e_ingresa(self):
        orden = self.crear(40).valor

        iniciada = iniciar_orden(orden_id=orden.pk, ahora=AHORA)
        self.assertTrue(iniciada.ok)
        self.assertEqual(iniciada.valor.estado, EstadoOrden.EN_PROCESO)
        self.assertEqual(iniciada.valor.fecha_inicio, AHORA)
        # Iniciar no mueve stock
        self.assertEqual(self.stock(self.bolt), (Decimal("100"), Decimal("80")))

        ejecutada = ejecutar_orden(orden_id=orden.pk, ahora=AHORA + timedelta(days=2))
        self.assertTrue(ejecutada.ok)
        self.assertEqual(ejecutada.valor.estado, EstadoOrden.EJECUTADA)
        self.assertEqual(ejecutada.valor.fecha_fin_real, AHORA + timedelta(days=2))

        self.assertEqual(self.stock(self.bolt), (Decimal("20"), Decimal("0")))
        self.assertEqual(self.stock(self.ensamble), (Decimal("40"), Decimal("0")))

        gasto = Historial.objects.get(accion=AccionHistorial.GASTODEPRODUCCION)
        self.assertEqual(gasto.producto, self.bolt)
        self.assertEqual(gasto.cantidad, Decimal("80"))
        self.assertEqual(gasto.orden_produccion_id, orden.pk)
        self.assertEqual(gasto.descripcion, f"Gasto por orden de producción número {orden.pk}")

        ingreso = Historial.objects.get(accion=AccionHistorial.INGRESOPORPRODUCCION)
        self.assertEqual(ingreso.producto, self.ensamble)
        self.assertEqual(ingreso.cantidad, Decimal("40"))

        marca = Historial.objects.get(accion=AccionHistorial.ORDENPRODUCCION)
        self.assertEqual(marca.cantidad, Decimal("0"))
        self.assertEqual(marca.orden_produccion_id, orden.pk)
        self.assertEqual(Historial.objects.count(), 3)

    def test_ejecutar_con_varios_materiales_una_fila_por_componente(self):
        arandela = crear_producto("ARANDELA", existencia="50")
        placa = crear_producto("PLACA", existencia="10")
        agregar_material(self.ensamble, arandela, "1")
        agregar_material(self.ensamble, placa, "0.5")
        orden = self.crear(10).valor
        iniciar_orden(orden_id=orden.pk, ahora=AHORA)

        self.assertTrue(ejecutar_orden(orden_id=orden.pk, ahora=AHORA).ok)

        gastos = Historial.objects.filter(accion=AccionHistorial.GASTODEPRODUCCION, orden_produccion=orden)
        self.assertEqual(gastos.count(), 3)
        self.assertEqual(
            {g.producto.codigo: g.cantidad for g in gastos},
            {"BOLT": Decimal("20"), "ARANDELA": Decimal("10"), "PLACA": Decimal("5")},
        )
        self.assertEqual(Historial.objects.filter(accion=AccionHistorial.INGRESOPORPRODUCCION).count(), 1)
        self.assertEqual(Historial.objects.filter(accion=AccionHistorial.ORDENPRODUCCION).count(), 1)
        self.assertEqual(self.stock(placa), (Decimal("5"), Decimal("0")))

    def test_cancelar_libera_la_reserva(self):
        orden = self.crear(40).valor

        resultado = cancelar_orden(orden_id=orden.pk, ahora=AHORA)

        self.assertTrue(resultado.ok)
        self.assertEqual(resultado.valor.estado, EstadoOrden.CANCELADA)
        self.assertEqual(self.stock(self.bolt), (Decimal("100"), Decimal("0")))
        self.assertEqual(self.stock(self.ensamble), (Decimal("0"), Decimal("0")))
        # Solo la marca de ciclo de vida, sin filas por componente
        marca = Historial.objects.get()
        self.assertEqual(marca.accion, AccionHistorial.ORDENPRODUCCION)
        self.assertEqual(marca.cantidad, Decimal("0"))
        self.assertIsNone(marca.producto)

    def test_cancelar_con_material_eliminado_libera_la_reserva(self):
        orden = self.crear(40).valor
        Producto.objects.filter(pk=self.bolt.pk).update(activo=False)

        resultado = cancelar_orden(orden_id=orden.pk, ahora=AHORA)

        self.assertTrue(resultado.ok)
        self.assertEqual(self.stock(self.bolt), (Decimal("100"), Decimal("0")))

    def test_ejecutar_con_material_y_compuesto_eliminados(self):
        orden = self.crear(10).valor
        iniciar_orden(orden_id=orden.pk, ahora=AHORA)
        Producto.objects.filter(pk__in=[self.bolt.pk, self.ensamble.pk]).update(activo=False)

        resultado = ejecutar_orden(orden_id=orden.pk, ahora=AHORA)

        self.assertTrue(resultado.ok)
        self.assertEqual(self.stock(self.bolt), (Decimal("80"), Decimal("0")))
        self.assertEqual(self.stock(self.ensamble), (Decimal("10"), Decimal("0")))

    def test_material_eliminado_no_admite_nuevas_reservas(self):
        orden = self.crear(10).valor
        Producto.objects.filter(pk=self.bolt.pk).update(activo=False)

        self.assertEqual(self.actualizar(orden, 20).error, "materiales_no_encontrados")
        self.assertEqual(self.stock(self.bolt), (Decimal("100"), Decimal("20")))

    def test_crear_actualizar_y_cancelar_vuelve_al_estado_inicial(self):
        orden = self.crear(40).valor
        self.actualizar(orden, 25)
        self.actualizar(orden, 35)

        self.assertEqual(self.stock(self.bolt), (Decimal("100"), Decimal("70")))
        cancelar_orden(orden_id=orden.pk, ahora=AHORA)
        self.assertEqual(self.stock(self.bolt), (Decimal("100"), Decimal("0")))

    def test_reserva_igual_a_la_suma_de_ordenes_abiertas(self):
        primera = self.crear(10).valor
        segunda = self.crear(20).valor
        tercera = self.crear(5).valor
        cancelar_orden(orden_id=primera.pk, ahora=AHORA)
        iniciar_orden(orden_id=segunda.pk, ahora=AHORA)

        abiertas = OrdenProduccion.objects.filter(estado__in=[EstadoOrden.POR_INICIAR, EstadoOrden.EN_PROCESO])
        esperado = sum(Decimal("2") * o.cantidad_producto_fabricado for o in abiertas)
        self.assertEqual(esperado, Decimal("50"))
        self.assertEqual(self.stock(self.bolt)[1], esperado)
        self.assertEqual({o.pk for o in abiertas}, {segunda.pk, tercera.pk})

    def test_transiciones_invalidas(self):
        orden = self.crear(10).valor

        # PorIniciar → Ejecutada no está permitido
        resultado = ejecutar_orden(orden_id=orden.pk, ahora=AHORA)
        self.assertEqual(resultado.error, "transicion_invalida")
        self.assertIn("PorIniciar", resultado.detalle)
        self.assertIn("Ejecutada", resultado.detalle)

        resultado = cambiar_estado_orden(orden_id=orden.pk, estado=EstadoOrden.POR_INICIAR, ahora=AHORA)
        self.assertEqual(resultado.error, "transicion_invalida")

        iniciar_orden(orden_id=orden.pk, ahora=AHORA)
        self.assertEqual(iniciar_orden(orden_id=orden.pk, ahora=AHORA).error, "transicion_invalida")
        self.assertEqual(cancelar_orden(orden_id=orden.pk, ahora=AHORA).error, "transicion_invalida")

    def test_reintentar_ejecucion_no_duplica_efectos(self):
        orden = self.crear(40).valor
        iniciar_orden(orden_id=orden.pk, ahora=AHORA)
        ejecutar_orden(orden_id=orden.pk, ahora=AHORA)

        resultado = ejecutar_orden(orden_id=orden.pk, ahora=AHORA)

        self.assertEqual(resultado.error, "transicion_invalida")
        self.assertEqual(self.stock(self.bolt), (Decimal("20"), Decimal("0")))
        self.assertEqual(self.stock(self.ensamble), (Decimal("40"), Decimal("0")))
        self.assertEqual(Historial.objects.count(), 3)

    def test_orden_cancelada_es_terminal(self):
        orden = self.crear(10).valor
        cancelar_orden(orden_id=orden.pk, ahora=AHORA)

        for estado in (EstadoOrden.EN_PROCESO, EstadoOrden.EJECUTADA, EstadoOrden.CANCELADA):
            with self.subTest(estado=estado):
                resultado = cambiar_estado_orden(orden_id=orden.pk, estado=estado, ahora=AHORA)
                self.assertEqual(resultado.error, "transicion_invalida")
        self.assertEqual(self.stock(self.bolt), (Decimal("100"), Decimal("0")))

    def test_estado_desconocido(self):
        orden = self.crear(10).valor

        resultado = cambiar_estado_orden(orden_id=orden.pk, estado="Pausada", ahora=AHORA)

        self.assertEqual(resultado.error, "validacion")

    def test_cambiar_estado_despacha_a_la_transicion(self):
        orden = self.crear(10).valor

        resultado = cambiar_estado_orden(orden_id=orden.pk, estado=EstadoOrden.EN_PROCESO, ahora=AHORA)

        self.assertTrue(resultado.ok)
        self.assertEqual(resultado.valor.fecha_inicio, AHORA)


class AtomicidadEjecucionTests(OrdenesBaseTestCase):
    def test_existencia_agotada_externamente_revierte_todo(self):
        placa = crear_producto("PLACA", existencia="10")
        agregar_material(self.ensamble, placa, "1")
        orden = self.crear(10).valor
        iniciar_orden(orden_id=orden.pk, ahora=AHORA)
        # Se simula un agotamiento por fuera del motor
        Producto.objects.filter(pk=placa.pk).update(existencia=Decimal("4"), existencia_reservada=Decimal("4"))

        resultado = ejecutar_orden(orden_id=orden.pk, ahora=AHORA)

        self.assertEqual(resultado.error, "stock_insuficiente")
        self.assertIn("PLACA", resultado.detalle)
        self.assertEqual(self.stock(self.bolt), (Decimal("100"), Decimal("20")))
        self.assertEqual(self.stock(self.ensamble), (Decimal("0"), Decimal("0")))
        orden.refresh_from_db()
        self.assertEqual(orden.estado, EstadoOrden.EN_PROCESO)
        self.assertIsNone(orden.fecha_fin_real)
        self.assertFalse(Historial.objects.exists())

    def test_error_inesperado_se_reporta_como_interno_y_revierte(self):
        orden = self.crear(40).valor
        iniciar_orden(orden_id=orden.pk, ahora=AHORA)

        with mock.patch(
            "manufactura.services.ordenes.registrar_historial",
            side_effect=RuntimeError("fallo de base de datos"),
        ), self.assertLogs("manufactura.errores", level="ERROR"):
            resultado = ejecutar_orden(orden_id=orden.pk, ahora=AHORA)

        self.assertFalse(resultado.ok)
        self.assertEqual(resultado.error, "error_interno")
        self.assertNotIn("fallo de base de datos", resultado.detalle)
        self.assertEqual(self.stock(self.bolt), (Decimal("100"), Decimal("80")))
        self.assertEqual(self.stock(self.ensamble), (Decimal("0"), Decimal("0")))
        self.assertFalse(Historial.objects.exists())
        orden.refresh_from_db()
        self.assertEqual(orden.estado, EstadoOrden.EN_PROCESO)
