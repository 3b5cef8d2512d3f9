from django.core.validators import RegexValidator
from rest_framework import serializers

from .models import (
    AccionHistorial,
    Cliente,
    EstadoOrden,
    Historial,
    ListaMateriales,
    OrdenProduccion,
    Producto,
    Proveedor,
    TipoProducto,
)

ci_rif_validator = RegexValidator(
    regex=r"^[VEJPGvejpg][0-9]{5,10}$",
    message="El CI/RIF debe iniciar con V, E, J, P o G seguido de 5 a 10 dígitos.",
)


class ClienteSerializer(serializers.ModelSerializer):
    class Meta:
        model = Cliente
        fields = [
            "id",
            "nombre_contacto",
            "nombre_empresa",
            "empresa_telefono",
            "email_empresa",
            "email_contacto",
            "ci_rif",
            "direccion_fiscal",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "created_at", "updated_at"]
        # La unicidad la resuelve el servicio (409), aquí solo el formato
        extra_kwargs = {"ci_rif": {"validators": [ci_rif_validator]}}

    def validate_nombre_contacto(self, value):
        if len(value.strip()) < 3:
            raise serializers.ValidationError("El nombre de contacto debe tener al menos 3 caracteres.")
        return value.strip()

    def validate_empresa_telefono(self, value):
        if len(value.strip()) < 7:
            raise serializers.ValidationError("El teléfono debe tener al menos 7 caracteres.")
        return value.strip()


class ProveedorSerializer(serializers.ModelSerializer):
    class Meta:
        model = Proveedor
        fields = [
            "id",
            "nombre_empresa",
            "persona_contacto",
            "telefono",
            "descripcion",
            "email",
            "ci_rif",
            "direccion_fiscal",
            "direccion",
            "sitio_web",
            "instagram",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "created_at", "updated_at"]
        extra_kwargs = {"ci_rif": {"validators": [ci_rif_validator]}}


class MaterialSerializer(serializers.ModelSerializer):
    """Línea de la lista de materiales, con los datos del componente."""

    id = serializers.IntegerField(source="componente_id", read_only=True)
    codigo = serializers.CharField(source="componente.codigo", read_only=True)
    nombre = serializers.CharField(source="componente.nombre", read_only=True)
    unidad_medida = serializers.CharField(source="componente.unidad_medida", read_only=True)

    class Meta:
        model = ListaMateriales
        fields = ["id", "codigo", "nombre", "unidad_medida", "cantidad"]


class ProductoSerializer(serializers.ModelSerializer):
    """
    Solo lectura. Las escrituras pasan por ProductoEntradaSerializer y
    services.productos; existencia y existencia_reservada nunca se escriben
    desde la API.
    """

    existencia_disponible = serializers.DecimalField(max_digits=14, decimal_places=3, read_only=True)
    materiales = MaterialSerializer(many=True, read_only=True)

    class Meta:
        model = Producto
        fields = [
            "id",
            "codigo",
            "nombre",
            "tipo_producto",
            "unidad_medida",
            "existencia",
            "existencia_reservada",
            "existencia_disponible",
            "planos",
            "imagen",
            "proveedores",
            "materiales",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class MaterialEntradaSerializer(serializers.Serializer):
    id = serializers.IntegerField()
    cantidad = serializers.DecimalField(max_digits=14, decimal_places=3)

    def validate_cantidad(self, value):
        if value <= 0:
            raise serializers.ValidationError("La cantidad de cada material debe ser mayor a 0.")
        return value


class ProductoEntradaSerializer(serializers.Serializer):
    codigo = serializers.CharField(max_length=50)
    nombre = serializers.CharField(max_length=100)
    unidad_medida = serializers.CharField(max_length=50)
    planos = serializers.URLField(max_length=500)
    imagen = serializers.JSONField(required=False, allow_null=True)
    materiales = MaterialEntradaSerializer(many=True, required=False)
    proveedores = serializers.ListField(child=serializers.IntegerField(), required=False)
    tipo_sin_materiales = serializers.ChoiceField(
        choices=[TipoProducto.INSUMOS, TipoProducto.SENCILLOS],
        required=False,
        default=TipoProducto.INSUMOS,
    )


class MovimientoSerializer(serializers.Serializer):
    """
    Carga o descarga manual. Rangos y acciones válidas los verifica
    services.movimientos.
    """

    cantidad = serializers.DecimalField(max_digits=14, decimal_places=3)
    accion = serializers.ChoiceField(choices=AccionHistorial.choices)
    descripcion = serializers.CharField(max_length=300)
    proveedor = serializers.IntegerField(required=False, allow_null=True)
    cliente = serializers.IntegerField(required=False, allow_null=True)


class HistorialSerializer(serializers.ModelSerializer):
    producto_codigo = serializers.CharField(source="producto.codigo", read_only=True, default=None)
    producto_nombre = serializers.CharField(source="producto.nombre", read_only=True, default=None)

    class Meta:
        model = Historial
        fields = [
            "id",
            "accion",
            "cantidad",
            "descripcion",
            "producto",
            "producto_codigo",
            "producto_nombre",
            "cliente",
            "proveedor",
            "orden_produccion",
            "created_at",
        ]
        read_only_fields = fields


class HistorialFiltroSerializer(serializers.Serializer):
    accion = serializers.ChoiceField(choices=AccionHistorial.choices, required=False)
    producto = serializers.CharField(required=False)
    producto_id = serializers.IntegerField(required=False)
    proveedor_id = serializers.IntegerField(required=False)
    cliente_id = serializers.IntegerField(required=False)
    fecha_desde = serializers.DateField(required=False)
    fecha_hasta = serializers.DateField(required=False)


class OrdenProduccionSerializer(serializers.ModelSerializer):
    producto_codigo = serializers.CharField(source="producto.codigo", read_only=True)
    producto_nombre = serializers.CharField(source="producto.nombre", read_only=True)

    class Meta:
        model = OrdenProduccion
        fields = [
            "id",
            "producto",
            "producto_codigo",
            "producto_nombre",
            "cantidad_producto_fabricado",
            "estado",
            "fecha_inicio",
            "fecha_fin",
            "fecha_fin_real",
            "responsables",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class OrdenProduccionEntradaSerializer(serializers.Serializer):
    producto = serializers.IntegerField(required=False)
    cantidad_producto_fabricado = serializers.IntegerField()
    fecha_fin = serializers.DateField()
    responsables = serializers.CharField(max_length=400)


class OrdenFiltroSerializer(serializers.Serializer):
    producto = serializers.CharField(required=False)
    producto_id = serializers.IntegerField(required=False)
    estado = serializers.ChoiceField(choices=EstadoOrden.choices, required=False)
    fecha_fin = serializers.DateField(required=False)


class CambioEstadoSerializer(serializers.Serializer):
    estado = serializers.ChoiceField(choices=EstadoOrden.choices)


class SimulacionReservaSerializer(serializers.Serializer):
    cantidad = serializers.IntegerField(min_value=1)
