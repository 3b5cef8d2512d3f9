from django import forms
from django.contrib import admin, messages
from django.core.exceptions import ValidationError

from .errores import ErrorManufactura
from .models import Cliente, EstadoOrden, Historial, ListaMateriales, OrdenProduccion, Producto, Proveedor, TipoProducto
from .services import ordenes, productos


admin.site.site_header = "Administración de Manufactura"
admin.site.site_title = "Manufactura"


def _aplicar_a_ordenes(modeladmin, request, queryset, operacion, verbo):
    """
    Ejecuta una transición sobre cada orden seleccionada. Cada orden va en
    su propia transacción: una que falla no revierte las demás.
    """
    exitosas = 0
    for orden in queryset.order_by("pk"):
        resultado = operacion(orden_id=orden.pk)
        if resultado.ok:
            exitosas += 1
        else:
            messages.error(request, f"Orden #{orden.pk}: {resultado.detalle}")

    if exitosas:
        messages.success(request, f"{exitosas} órdenes {verbo} correctamente.")


@admin.action(description="Iniciar órdenes seleccionadas")
def iniciar_ordenes(modeladmin, request, queryset):
    _aplicar_a_ordenes(modeladmin, request, queryset, ordenes.iniciar_orden, "iniciadas")


@admin.action(description="Marcar órdenes seleccionadas como ejecutadas")
def ejecutar_ordenes(modeladmin, request, queryset):
    _aplicar_a_ordenes(modeladmin, request, queryset, ordenes.ejecutar_orden, "ejecutadas")


@admin.action(description="Cancelar órdenes seleccionadas")
def cancelar_ordenes(modeladmin, request, queryset):
    _aplicar_a_ordenes(modeladmin, request, queryset, ordenes.cancelar_orden, "canceladas")


@admin.action(description="Eliminar productos seleccionados")
def eliminar_productos(modeladmin, request, queryset):
    """
    Eliminación lógica a través del servicio: se rechaza para productos con
    stock reservado u órdenes abiertas.
    """
    eliminados = 0
    for producto in queryset.filter(activo=True).order_by("pk"):
        resultado = productos.eliminar_producto(producto_id=producto.pk)
        if resultado.ok:
            eliminados += 1
        else:
            messages.error(request, f"{producto}: {resultado.detalle}")

    if eliminados:
        messages.success(request, f"{eliminados} productos eliminados correctamente.")


@admin.register(Cliente)
class ClienteAdmin(admin.ModelAdmin):
    list_display = ("nombre_empresa", "nombre_contacto", "ci_rif", "empresa_telefono", "created_at")
    search_fields = ("nombre_empresa", "nombre_contacto", "ci_rif")


@admin.register(Proveedor)
class ProveedorAdmin(admin.ModelAdmin):
    list_display = ("nombre_empresa", "persona_contacto", "ci_rif", "telefono", "email")
    search_fields = ("nombre_empresa", "persona_contacto", "ci_rif")


class ListaMaterialesFormSet(forms.BaseInlineFormSet):
    def clean(self):
        super().clean()
        componentes = [
            form.cleaned_data["componente"].pk
            for form in self.forms
            if form.cleaned_data.get("componente") and not form.cleaned_data.get("DELETE")
        ]
        try:
            productos.validar_sin_ciclos(self.instance, componentes)
        except ErrorManufactura as exc:
            raise ValidationError(exc.mensaje)


class ListaMaterialesInline(admin.TabularInline):
    model = ListaMateriales
    formset = ListaMaterialesFormSet
    fk_name = "compuesto"
    extra = 1
    autocomplete_fields = ("componente",)

    def has_change_permission(self, request, obj=None):
        # Las reservas de órdenes abiertas dependen de la lista actual
        if obj is not None and obj.ordenes_produccion.filter(
            estado__in=[EstadoOrden.POR_INICIAR, EstadoOrden.EN_PROCESO]
        ).exists():
            return False
        return super().has_change_permission(request, obj)

    has_add_permission = has_change_permission
    has_delete_permission = has_change_permission


@admin.register(Producto)
class ProductoAdmin(admin.ModelAdmin):
    list_display = (
        "codigo",
        "nombre",
        "tipo_producto",
        "unidad_medida",
        "existencia",
        "existencia_reservada",
        "existencia_disponible",
        "activo",
    )
    list_filter = ("tipo_producto", "activo")
    search_fields = ("codigo", "nombre")
    filter_horizontal = ("proveedores",)
    inlines = [ListaMaterialesInline]
    actions = [eliminar_productos]

    # El stock solo cambia por órdenes y movimientos; la baja, por eliminar_productos
    readonly_fields = (
        "tipo_producto",
        "existencia",
        "existencia_reservada",
        "activo",
        "created_at",
        "updated_at",
    )

    def has_delete_permission(self, request, obj=None):
        return False

    def existencia_disponible(self, obj):
        return obj.existencia_disponible

    def save_related(self, request, form, formsets, change):
        super().save_related(request, form, formsets, change)
        # Recalcula el tipo según la lista de materiales guardada en el inline
        producto = form.instance
        componentes = [linea.componente for linea in producto.materiales.select_related("componente")]
        tipo_base = (
            producto.tipo_producto
            if producto.tipo_producto != TipoProducto.COMPUESTOS
            else TipoProducto.INSUMOS
        )
        producto.tipo_producto = productos.derivar_tipo_producto(componentes, tipo_sin_materiales=tipo_base)
        producto.save(update_fields=["tipo_producto", "updated_at"])


@admin.register(OrdenProduccion)
class OrdenProduccionAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "producto",
        "cantidad_producto_fabricado",
        "estado",
        "fecha_fin",
        "fecha_inicio",
        "fecha_fin_real",
    )
    list_filter = ("estado", "fecha_fin")
    search_fields = ("id", "producto__nombre", "producto__codigo", "responsables")
    date_hierarchy = "created_at"
    actions = [iniciar_ordenes, ejecutar_ordenes, cancelar_ordenes]

    # Crear y editar pasa por la API / servicios, que reservan materiales
    readonly_fields = (
        "producto",
        "cantidad_producto_fabricado",
        "estado",
        "fecha_inicio",
        "fecha_fin",
        "fecha_fin_real",
        "responsables",
        "created_at",
        "updated_at",
    )

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Historial)
class HistorialAdmin(admin.ModelAdmin):
    list_display = ("created_at", "accion", "producto", "cantidad", "orden_produccion", "cliente", "proveedor")
    list_filter = ("accion", "created_at")
    search_fields = ("descripcion", "producto__nombre", "producto__codigo")
    date_hierarchy = "created_at"

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
