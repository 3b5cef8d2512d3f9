from decimal import Decimal

from django.core.validators import MinValueValidator
from django.db import models


class TimeStampedModel(models.Model):
    """
    Modelo base abstracto con timestamps estándar.
    """
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


class TipoProducto(models.TextChoices):
    INSUMOS = "INSUMOS", "Insumos"
    SENCILLOS = "SENCILLOS", "Sencillos"
    COMPUESTOS = "COMPUESTOS", "Compuestos"


class EstadoOrden(models.TextChoices):
    POR_INICIAR = "PorIniciar", "Por iniciar"
    EN_PROCESO = "EnProceso", "En proceso"
    EJECUTADA = "Ejecutada", "Ejecutada"
    CANCELADA = "Cancelada", "Cancelada"


class AccionHistorial(models.TextChoices):
    INGRESO = "INGRESO", "Ingreso"
    EGRESO = "EGRESO", "Egreso"
    VENTA = "VENTA", "Venta"
    VARIOS = "VARIOS", "Varios"
    ORDENPRODUCCION = "ORDENPRODUCCION", "Orden de producción"
    GASTODEPRODUCCION = "GASTODEPRODUCCION", "Gasto por orden de producción"
    INGRESOPORPRODUCCION = "INGRESOPORPRODUCCION", "Ingreso por producción"


class Cliente(TimeStampedModel):
    nombre_contacto = models.CharField(max_length=70)
    nombre_empresa = models.CharField(max_length=70)
    empresa_telefono = models.CharField(max_length=22)
    email_empresa = models.EmailField(max_length=150, blank=True)
    email_contacto = models.EmailField(max_length=150, blank=True)
    ci_rif = models.CharField(max_length=30, unique=True)
    direccion_fiscal = models.CharField(max_length=350)

    class Meta:
        ordering = ["nombre_empresa"]

    def __str__(self):
        return f"{self.nombre_empresa} ({self.ci_rif})"


class Proveedor(TimeStampedModel):
    nombre_empresa = models.CharField(max_length=100)
    persona_contacto = models.CharField(max_length=100)
    telefono = models.CharField(max_length=22)
    descripcion = models.CharField(max_length=400)
    email = models.EmailField(max_length=100)
    ci_rif = models.CharField(max_length=30, unique=True)
    direccion_fiscal = models.CharField(max_length=200, blank=True)
    direccion = models.CharField(max_length=200, blank=True)
    sitio_web = models.URLField(max_length=300, blank=True)
    instagram = models.CharField(max_length=200, blank=True)

    class Meta:
        verbose_name = "Proveedor"
        verbose_name_plural = "Proveedores"
        ordering = ["nombre_empresa"]

    def __str__(self):
        return self.nombre_empresa


class ProductoQuerySet(models.QuerySet):
    def activos(self):
        return self.filter(activo=True)


class Producto(TimeStampedModel):
    """
    Producto del inventario: insumo, producto sencillo o compuesto.

    - existencia: stock total en mano.
    - existencia_reservada: parte del stock comprometida por órdenes de
      producción abiertas (por iniciar / en proceso).

    Siempre se cumple 0 <= existencia_reservada <= existencia. Estos dos campos
    solo se modifican a través de services.productos.ajustar_stock.
    """
    codigo = models.CharField(max_length=50, unique=True)
    nombre = models.CharField(max_length=100)
    tipo_producto = models.CharField(
        max_length=20,
        choices=TipoProducto.choices,
        default=TipoProducto.INSUMOS,
        help_text="Se deriva de la lista de materiales, no lo elige el usuario.",
    )
    unidad_medida = models.CharField(max_length=50)
    existencia = models.DecimalField(
        max_digits=14,
        decimal_places=3,
        default=Decimal("0"),
        validators=[MinValueValidator(Decimal("0"))],
    )
    existencia_reservada = models.DecimalField(
        max_digits=14,
        decimal_places=3,
        default=Decimal("0"),
        validators=[MinValueValidator(Decimal("0"))],
    )
    planos = models.URLField(max_length=500)
    imagen = models.JSONField(
        null=True,
        blank=True,
        help_text='Imagen del producto: {"uri": ..., "width": ..., "height": ...}',
    )
    proveedores = models.ManyToManyField(
        Proveedor,
        related_name="productos",
        blank=True,
    )
    activo = models.BooleanField(
        default=True,
        help_text="Eliminación lógica: un producto inactivo no se puede usar.",
    )

    objects = ProductoQuerySet.as_manager()

    class Meta:
        ordering = ["codigo"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(existencia__gte=0),
                name="producto_existencia_no_negativa",
            ),
            models.CheckConstraint(
                condition=models.Q(existencia_reservada__gte=0)
                & models.Q(existencia_reservada__lte=models.F("existencia")),
                name="producto_reserva_dentro_de_existencia",
            ),
        ]

    def __str__(self):
        return f"{self.codigo} - {self.nombre}"

    @property
    def existencia_disponible(self) -> Decimal:
        """Stock libre: existencia que no está reservada por órdenes abiertas."""
        return (self.existencia or Decimal("0")) - (self.existencia_reservada or Decimal("0"))


class ListaMateriales(TimeStampedModel):
    """
    Línea de la lista de materiales: cuánto del producto componente se consume
    por cada unidad fabricada del producto compuesto.
    """
    compuesto = models.ForeignKey(
        Producto,
        on_delete=models.CASCADE,
        related_name="materiales",
    )
    componente = models.ForeignKey(
        Producto,
        on_delete=models.PROTECT,
        related_name="usado_en",
    )
    cantidad = models.DecimalField(
        max_digits=14,
        decimal_places=3,
        validators=[MinValueValidator(Decimal("0.001"))],
        help_text="Cantidad por unidad de producto compuesto, en la unidad del componente.",
    )

    class Meta:
        verbose_name = "Material"
        verbose_name_plural = "Lista de materiales"
        ordering = ["compuesto", "id"]
        unique_together = ("compuesto", "componente")
        constraints = [
            models.CheckConstraint(
                condition=models.Q(cantidad__gt=0),
                name="lista_materiales_cantidad_positiva",
            ),
        ]

    def __str__(self):
        return f"{self.cantidad} {self.componente.unidad_medida} de {self.componente} para {self.compuesto}"


class OrdenProduccion(TimeStampedModel):
    """
    Orden para fabricar N unidades de un producto compuesto.
    El ciclo de vida lo controla services.ordenes.
    """
    cantidad_producto_fabricado = models.PositiveIntegerField(
        validators=[MinValueValidator(1)],
    )
    estado = models.CharField(
        max_length=20,
        choices=EstadoOrden.choices,
        default=EstadoOrden.POR_INICIAR,
    )
    fecha_inicio = models.DateTimeField(null=True, blank=True)
    fecha_fin = models.DateField(help_text="Fecha planificada de finalización.")
    fecha_fin_real = models.DateTimeField(null=True, blank=True)
    responsables = models.CharField(max_length=400)
    producto = models.ForeignKey(
        Producto,
        on_delete=models.PROTECT,
        related_name="ordenes_produccion",
    )

    class Meta:
        verbose_name = "Orden de producción"
        verbose_name_plural = "Órdenes de producción"
        ordering = ["-created_at", "-id"]

    def __str__(self):
        return f"Orden #{self.pk} - {self.producto} x {self.cantidad_producto_fabricado} ({self.estado})"

    @property
    def es_editable(self) -> bool:
        """Solo se puede editar mientras está por iniciar."""
        return self.estado == EstadoOrden.POR_INICIAR

    @property
    def esta_abierta(self) -> bool:
        """Abierta = mantiene reserva de materiales."""
        return self.estado in (EstadoOrden.POR_INICIAR, EstadoOrden.EN_PROCESO)


class Historial(TimeStampedModel):
    """
    Registro inmutable de cada movimiento de stock.
    Solo se insertan filas; actualizar o borrar lanza un error.
    """
    accion = models.CharField(max_length=30, choices=AccionHistorial.choices)
    cantidad = models.DecimalField(max_digits=14, decimal_places=3)
    descripcion = models.CharField(max_length=300)
    producto = models.ForeignKey(
        Producto,
        on_delete=models.PROTECT,
        related_name="historial",
        null=True,
        blank=True,
    )
    cliente = models.ForeignKey(
        Cliente,
        on_delete=models.PROTECT,
        related_name="historial",
        null=True,
        blank=True,
    )
    proveedor = models.ForeignKey(
        Proveedor,
        on_delete=models.PROTECT,
        related_name="historial",
        null=True,
        blank=True,
    )
    orden_produccion = models.ForeignKey(
        OrdenProduccion,
        on_delete=models.PROTECT,
        related_name="historial",
        null=True,
        blank=True,
    )

    class Meta:
        verbose_name = "Historial"
        verbose_name_plural = "Historial"
        ordering = ["-created_at", "-id"]

    def __str__(self):
        return f"{self.get_accion_display()} ({self.cantidad}) - {self.descripcion}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("El historial es de solo inserción; no se puede modificar.")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError("El historial es de solo inserción; no se puede eliminar.")
