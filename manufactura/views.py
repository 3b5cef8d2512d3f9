from rest_framework import permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import ValidationError
from rest_framework.response import Response
from rest_framework.views import APIView

from .errores import ErrorManufactura, Resultado
from .models import Cliente, Historial, OrdenProduccion, Producto, Proveedor
from .serializers import (
    CambioEstadoSerializer,
    ClienteSerializer,
    HistorialFiltroSerializer,
    HistorialSerializer,
    MovimientoSerializer,
    OrdenFiltroSerializer,
    OrdenProduccionEntradaSerializer,
    OrdenProduccionSerializer,
    ProductoEntradaSerializer,
    ProductoSerializer,
    ProveedorSerializer,
    SimulacionReservaSerializer,
)
from .services import estadisticas, movimientos, ordenes, productos, reservas, terceros
from .services.historial import consultar_historial

STATUS_POR_ERROR = {
    "no_encontrado": status.HTTP_404_NOT_FOUND,
    "materiales_no_encontrados": status.HTTP_404_NOT_FOUND,
    "stock_insuficiente": status.HTTP_400_BAD_REQUEST,
    "transicion_invalida": status.HTTP_400_BAD_REQUEST,
    "orden_no_editable": status.HTTP_400_BAD_REQUEST,
    "cliente_requerido": status.HTTP_400_BAD_REQUEST,
    "conflicto": status.HTTP_409_CONFLICT,
    "validacion": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "error_interno": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def respuesta_error(resultado: Resultado) -> Response:
    return Response(
        {"status": False, "error": resultado.error, "message": resultado.detalle},
        status=STATUS_POR_ERROR.get(resultado.error, status.HTTP_400_BAD_REQUEST),
    )


def respuesta(resultado: Resultado, serializer_class, *, status_exito=status.HTTP_200_OK) -> Response:
    """Traduce el Resultado de un servicio a una respuesta HTTP."""
    if not resultado.ok:
        return respuesta_error(resultado)
    return Response(serializer_class(resultado.valor).data, status=status_exito)


def validar(serializer_class, data):
    serializer = serializer_class(data=data)
    serializer.is_valid(raise_exception=True)
    return serializer.validated_data


class IsAuthenticatedOrReadOnly(permissions.IsAuthenticatedOrReadOnly):
    """
    Lectura libre, escritura para usuarios autenticados.
    """
    pass


class ClienteViewSet(viewsets.ModelViewSet):
    queryset = Cliente.objects.all()
    serializer_class = ClienteSerializer
    permission_classes = [IsAuthenticatedOrReadOnly]
    lookup_value_regex = r"\d+"
    http_method_names = ["get", "post", "put", "head", "options"]

    def get_queryset(self):
        qs = super().get_queryset()
        busqueda = self.request.query_params.get("nombre_empresa")
        if busqueda:
            qs = qs.filter(nombre_empresa__icontains=busqueda)
        return qs

    def create(self, request, *args, **kwargs):
        datos = validar(ClienteSerializer, request.data)
        return respuesta(terceros.crear_cliente(**datos), ClienteSerializer, status_exito=status.HTTP_201_CREATED)

    def update(self, request, *args, **kwargs):
        datos = validar(ClienteSerializer, request.data)
        return respuesta(terceros.actualizar_cliente(cliente_id=kwargs["pk"], **datos), ClienteSerializer)


class ProveedorViewSet(viewsets.ModelViewSet):
    queryset = Proveedor.objects.all()
    serializer_class = ProveedorSerializer
    permission_classes = [IsAuthenticatedOrReadOnly]
    lookup_value_regex = r"\d+"
    http_method_names = ["get", "post", "put", "head", "options"]

    def get_queryset(self):
        qs = super().get_queryset()
        busqueda = self.request.query_params.get("nombre_empresa")
        if busqueda:
            qs = qs.filter(nombre_empresa__icontains=busqueda)
        return qs

    def create(self, request, *args, **kwargs):
        datos = validar(ProveedorSerializer, request.data)
        return respuesta(terceros.crear_proveedor(**datos), ProveedorSerializer, status_exito=status.HTTP_201_CREATED)

    def update(self, request, *args, **kwargs):
        datos = validar(ProveedorSerializer, request.data)
        return respuesta(terceros.actualizar_proveedor(proveedor_id=kwargs["pk"], **datos), ProveedorSerializer)


class ProductoViewSet(viewsets.ModelViewSet):
    queryset = Producto.objects.activos().prefetch_related("materiales__componente", "proveedores")
    serializer_class = ProductoSerializer
    permission_classes = [IsAuthenticatedOrReadOnly]
    lookup_value_regex = r"\d+"
    http_method_names = ["get", "post", "put", "delete", "head", "options"]

    def get_queryset(self):
        qs = super().get_queryset()
        params = self.request.query_params
        if params.get("nombre"):
            qs = qs.filter(nombre__icontains=params["nombre"])
        if params.get("codigo"):
            qs = qs.filter(codigo__icontains=params["codigo"])
        if params.get("tipo_producto"):
            qs = qs.filter(tipo_producto=params["tipo_producto"])
        return qs

    def _releer(self, resultado: Resultado) -> Resultado:
        # Recarga con materiales y proveedores ya prefetch
        if resultado.ok:
            return Resultado.exito(self.get_queryset().get(pk=resultado.valor.pk))
        return resultado

    def create(self, request, *args, **kwargs):
        datos = validar(ProductoEntradaSerializer, request.data)
        resultado = productos.crear_producto(**datos)
        return respuesta(self._releer(resultado), ProductoSerializer, status_exito=status.HTTP_201_CREATED)

    def update(self, request, *args, **kwargs):
        datos = validar(ProductoEntradaSerializer, request.data)
        datos.pop("tipo_sin_materiales", None)
        resultado = productos.actualizar_producto(producto_id=kwargs["pk"], **datos)
        return respuesta(self._releer(resultado), ProductoSerializer)

    def destroy(self, request, *args, **kwargs):
        resultado = productos.eliminar_producto(producto_id=kwargs["pk"])
        if not resultado.ok:
            return respuesta_error(resultado)
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=True, methods=["post"], url_path="cargar")
    def cargar(self, request, pk=None):
        """
        Ingreso manual de stock.
        POST /api/productos/<id>/cargar/
        """
        datos = validar(MovimientoSerializer, request.data)
        resultado = movimientos.cargar_producto(
            producto_id=pk,
            cantidad=datos["cantidad"],
            accion=datos["accion"],
            descripcion=datos["descripcion"],
            proveedor_id=datos.get("proveedor"),
        )
        return respuesta(resultado, HistorialSerializer, status_exito=status.HTTP_201_CREATED)

    @action(detail=True, methods=["post"], url_path="descargar")
    def descargar(self, request, pk=None):
        """
        Egreso manual de stock (EGRESO, VENTA o VARIOS).
        POST /api/productos/<id>/descargar/
        """
        datos = validar(MovimientoSerializer, request.data)
        resultado = movimientos.descargar_producto(
            producto_id=pk,
            cantidad=datos["cantidad"],
            accion=datos["accion"],
            descripcion=datos["descripcion"],
            cliente_id=datos.get("cliente"),
        )
        return respuesta(resultado, HistorialSerializer, status_exito=status.HTTP_201_CREATED)

    @action(detail=False, methods=["get"], url_path="acciones-carga")
    def acciones_carga(self, request):
        return Response(movimientos.acciones_validas(movimientos.ACCIONES_CARGA))

    @action(detail=False, methods=["get"], url_path="acciones-descarga")
    def acciones_descarga(self, request):
        return Response(movimientos.acciones_validas(movimientos.ACCIONES_DESCARGA))

    @action(detail=True, methods=["get"], url_path="simular-reserva")
    def simular_reserva(self, request, pk=None):
        """
        Calcula la reserva de materiales para fabricar ?cantidad=N sin aplicarla.
        GET /api/productos/<id>/simular-reserva/?cantidad=N
        """
        datos = validar(SimulacionReservaSerializer, request.query_params)
        resultado = reservas.reservar(pk, datos["cantidad"])
        if not resultado.ok:
            return respuesta_error(resultado)
        return Response(
            [
                {
                    "producto_id": ajuste.producto_id,
                    "codigo": ajuste.producto.codigo,
                    "nombre": ajuste.producto.nombre,
                    "requerido": str(ajuste.cantidad),
                    "existencia": str(ajuste.producto.existencia),
                    "existencia_reservada": str(ajuste.producto.existencia_reservada + ajuste.delta_reservada),
                }
                for ajuste in resultado.valor
            ]
        )


class OrdenProduccionViewSet(viewsets.ModelViewSet):
    queryset = OrdenProduccion.objects.all().select_related("producto")
    serializer_class = OrdenProduccionSerializer
    permission_classes = [IsAuthenticatedOrReadOnly]
    lookup_value_regex = r"\d+"
    http_method_names = ["get", "post", "put", "head", "options"]

    def get_queryset(self):
        if self.action != "list":
            return super().get_queryset()
        filtros = validar(OrdenFiltroSerializer, self.request.query_params)
        return ordenes.consultar_ordenes(**filtros)

    def create(self, request, *args, **kwargs):
        datos = validar(OrdenProduccionEntradaSerializer, request.data)
        if "producto" not in datos:
            raise ValidationError({"producto": "Este campo es requerido."})
        resultado = ordenes.crear_orden(
            producto_id=datos["producto"],
            cantidad_producto_fabricado=datos["cantidad_producto_fabricado"],
            fecha_fin=datos["fecha_fin"],
            responsables=datos["responsables"],
        )
        return respuesta(resultado, OrdenProduccionSerializer, status_exito=status.HTTP_201_CREATED)

    def update(self, request, *args, **kwargs):
        datos = validar(OrdenProduccionEntradaSerializer, request.data)
        resultado = ordenes.actualizar_orden(
            orden_id=kwargs["pk"],
            cantidad_producto_fabricado=datos["cantidad_producto_fabricado"],
            fecha_fin=datos["fecha_fin"],
            responsables=datos["responsables"],
        )
        return respuesta(resultado, OrdenProduccionSerializer)

    @action(detail=True, methods=["post"], url_path="estado")
    def estado(self, request, pk=None):
        """
        Cambia el estado de la orden: EnProceso, Ejecutada o Cancelada.
        POST /api/ordenes-produccion/<id>/estado/
        """
        datos = validar(CambioEstadoSerializer, request.data)
        resultado = ordenes.cambiar_estado_orden(orden_id=pk, estado=datos["estado"])
        return respuesta(resultado, OrdenProduccionSerializer)


class HistorialViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = Historial.objects.all()
    serializer_class = HistorialSerializer
    permission_classes = [IsAuthenticatedOrReadOnly]
    lookup_value_regex = r"\d+"

    def get_queryset(self):
        if self.action != "list":
            return super().get_queryset().select_related("producto")
        filtros = validar(HistorialFiltroSerializer, self.request.query_params)
        try:
            return consultar_historial(**filtros)
        except ErrorManufactura as exc:
            raise ValidationError({"detail": exc.mensaje})


class EstadisticasView(APIView):
    """
    Tablero: órdenes ejecutadas por mes, materiales más usados y
    productos más vendidos.
    GET /api/estadisticas/?anio=2025&limite=6
    """

    permission_classes = [IsAuthenticatedOrReadOnly]

    def get(self, request):
        try:
            anio = int(request.query_params["anio"]) if request.query_params.get("anio") else None
            limite = int(request.query_params["limite"]) if request.query_params.get("limite") else None
        except ValueError:
            raise ValidationError({"detail": "anio y limite deben ser números enteros."})
        return Response(estadisticas.obtener_estadisticas(anio=anio, limite=limite))
