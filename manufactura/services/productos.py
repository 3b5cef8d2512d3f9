# manufactura/services/productos.py

import logging
from decimal import Decimal

from django.db import IntegrityError, transaction

from manufactura.errores import (
    Conflicto,
    MaterialesNoEncontrados,
    NoEncontrado,
    StockInsuficiente,
    ValidacionFallida,
    con_resultado,
)
from manufactura.models import EstadoOrden, ListaMateriales, Producto, Proveedor, TipoProducto

logger = logging.getLogger(__name__)

CERO = Decimal("0")


def a_decimal(valor) -> Decimal:
    """Convierte int/float/str/Decimal a Decimal sin arrastrar errores binarios."""
    if isinstance(valor, Decimal):
        return valor
    return Decimal(str(valor))


def obtener_producto(
    producto_id: int,
    *,
    bloquear: bool = False,
    incluir_inactivos: bool = False,
) -> Producto:
    """
    Devuelve un producto activo por id.
    Con bloquear=True toma el lock de fila (SELECT ... FOR UPDATE); solo tiene
    sentido dentro de transaction.atomic.
    incluir_inactivos=True también resuelve productos eliminados (lógicamente),
    para liberar o consumir reservas que ya existían.
    """
    qs = Producto.objects.all() if incluir_inactivos else Producto.objects.activos()
    if bloquear:
        qs = qs.select_for_update()
    try:
        return qs.get(pk=producto_id)
    except Producto.DoesNotExist:
        raise NoEncontrado(f"Producto {producto_id} no encontrado")


def obtener_productos(
    ids,
    *,
    bloquear: bool = False,
    incluir_inactivos: bool = False,
) -> list[Producto]:
    """
    Devuelve los productos activos con esos ids, en orden de id.

    Si alguno no existe (o está eliminado) lanza MaterialesNoEncontrados:
    es la verificación que protege todas las operaciones masivas.
    Los locks se toman en orden de id para evitar deadlocks entre órdenes.
    """
    ids = sorted(set(ids))
    qs = Producto.objects.all() if incluir_inactivos else Producto.objects.activos()
    qs = qs.filter(pk__in=ids).order_by("pk")
    if bloquear:
        qs = qs.select_for_update()
    productos = list(qs)
    if len(productos) != len(ids):
        encontrados = {p.pk for p in productos}
        faltantes = [i for i in ids if i not in encontrados]
        raise MaterialesNoEncontrados(
            "Algunos materiales para la producción no existen en la base de datos: "
            f"{', '.join(str(i) for i in faltantes)}"
        )
    return productos


def bloquear_con_materiales(producto_id: int, *, incluir_inactivos: bool = False) -> Producto:
    """
    Bloquea un producto compuesto junto con todos sus componentes en una sola
    consulta, en orden de id. Así dos órdenes que comparten materiales (o
    donde un compuesto es componente del otro) toman los locks en el mismo
    orden.

    La lista de materiales se vuelve a leer con el compuesto ya bloqueado; si
    cambió entre la lectura y el lock, se bloquean también los componentes
    nuevos.
    """
    producto = obtener_producto(producto_id, incluir_inactivos=incluir_inactivos)
    bloqueados: set[int] = set()
    while True:
        ids = {producto.pk}
        ids.update(
            ListaMateriales.objects.filter(compuesto_id=producto.pk).values_list("componente_id", flat=True)
        )
        if ids <= bloqueados:
            return producto
        filas = obtener_productos(ids | bloqueados, bloquear=True, incluir_inactivos=incluir_inactivos)
        bloqueados = {p.pk for p in filas}
        producto = next(p for p in filas if p.pk == producto.pk)


def materiales_de(producto: Producto) -> list[tuple[int, Decimal]]:
    """
    Lista de materiales de un producto compuesto:
        [(componente_id, cantidad_por_unidad), ...]
    """
    return [
        (linea.componente_id, linea.cantidad)
        for linea in ListaMateriales.objects.filter(compuesto=producto).order_by("id")
    ]


@transaction.atomic
def ajustar_stock(
    producto_id: int,
    *,
    delta_existencia: Decimal = CERO,
    delta_reservada: Decimal = CERO,
) -> Producto:
    """
    Lectura-modificación-escritura atómica del stock de un producto.

    - Bloquea la fila antes de leer.
    - No filtra por activo: quien llama ya resolvió el producto, y una reserva
      de un producto eliminado igual debe poder liberarse o consumirse.
    - Rechaza (StockInsuficiente) cualquier ajuste que deje existencia < 0,
      existencia_reservada < 0 o existencia_reservada > existencia.
    """
    producto = obtener_producto(producto_id, bloquear=True, incluir_inactivos=True)

    nueva_existencia = producto.existencia + a_decimal(delta_existencia)
    nueva_reservada = producto.existencia_reservada + a_decimal(delta_reservada)

    if nueva_existencia < 0:
        raise StockInsuficiente(
            f"No se puede reducir la existencia del producto {producto} a menos de cero. "
            f"Existencia {producto.existencia}, ajuste {delta_existencia}."
        )
    if nueva_reservada < 0:
        raise StockInsuficiente(
            f"La existencia reservada del producto {producto} no puede quedar negativa. "
            f"Reservada {producto.existencia_reservada}, ajuste {delta_reservada}."
        )
    if nueva_reservada > nueva_existencia:
        raise StockInsuficiente(
            f"El producto {producto} no tiene suficiente existencia disponible: "
            f"reservada {nueva_reservada} superaría la existencia {nueva_existencia}."
        )

    producto.existencia = nueva_existencia
    producto.existencia_reservada = nueva_reservada
    producto.save(update_fields=["existencia", "existencia_reservada", "updated_at"])

    logger.info(
        "Stock ajustado %s: existencia %s (%+f), reservada %s (%+f)",
        producto.codigo,
        producto.existencia,
        a_decimal(delta_existencia),
        producto.existencia_reservada,
        a_decimal(delta_reservada),
    )
    return producto


# --- Lista de materiales ---

def derivar_tipo_producto(
    componentes: list[Producto],
    *,
    tipo_sin_materiales: str = TipoProducto.INSUMOS,
) -> str:
    """
    El tipo de producto se deriva de sus materiales:
    - sin materiales → tipo_sin_materiales (INSUMOS o SENCILLOS)
    - algún componente COMPUESTOS o SENCILLOS → COMPUESTOS
    - solo componentes INSUMOS → SENCILLOS
    """
    if not componentes:
        return tipo_sin_materiales
    for componente in componentes:
        if componente.tipo_producto in (TipoProducto.COMPUESTOS, TipoProducto.SENCILLOS):
            return TipoProducto.COMPUESTOS
    return TipoProducto.SENCILLOS


def _alcanzables_desde(producto_ids) -> set[int]:
    """Todos los productos a los que se llega bajando por listas de materiales."""
    visitados: set[int] = set()
    pendientes = list(producto_ids)
    while pendientes:
        actual = pendientes.pop()
        if actual in visitados:
            continue
        visitados.add(actual)
        pendientes.extend(
            ListaMateriales.objects.filter(compuesto_id=actual).values_list("componente_id", flat=True)
        )
    return visitados


def validar_sin_ciclos(producto: Producto, componente_ids) -> None:
    """
    Un componente no puede ser el propio producto ni contenerlo (directa o
    indirectamente) en su lista de materiales.
    """
    if producto.pk is None:
        return
    if producto.pk in _alcanzables_desde(componente_ids):
        raise ValidacionFallida(
            f"La lista de materiales de {producto} generaría un ciclo: "
            "un componente no puede contener al producto que lo usa."
        )


def _normalizar_materiales(materiales: list[dict]) -> dict[int, Decimal]:
    """
    materiales: [{"id": <componente_id>, "cantidad": <Decimal | str | float>}, ...]
    """
    normalizados: dict[int, Decimal] = {}
    for item in materiales:
        componente_id = int(item["id"])
        cantidad = a_decimal(item["cantidad"])
        if cantidad <= 0:
            raise ValidacionFallida("La cantidad de cada material debe ser mayor a 0")
        if componente_id in normalizados:
            raise ValidacionFallida(f"El material {componente_id} está repetido en la lista")
        normalizados[componente_id] = cantidad
    return normalizados


@transaction.atomic
def definir_materiales(
    *,
    producto: Producto,
    materiales: list[dict],
    tipo_sin_materiales: str | None = None,
) -> Producto:
    """
    Reemplaza la lista de materiales de un producto:
    - crea las líneas nuevas, actualiza cantidades y borra las que ya no vienen.
    - valida que todos los componentes existan y que no se formen ciclos.
    - recalcula tipo_producto.
    """
    cantidades = _normalizar_materiales(materiales)
    componentes = obtener_productos(cantidades.keys()) if cantidades else []
    validar_sin_ciclos(producto, cantidades.keys())

    actuales = {linea.componente_id: linea for linea in producto.materiales.all()}

    cambia = set(actuales) != set(cantidades) or any(
        actuales[c].cantidad != q for c, q in cantidades.items()
    )
    # Las reservas de las órdenes abiertas se calcularon con la lista actual
    if cambia and producto.ordenes_produccion.filter(
        estado__in=[EstadoOrden.POR_INICIAR, EstadoOrden.EN_PROCESO]
    ).exists():
        raise ValidacionFallida(
            f"No se puede modificar la lista de materiales de {producto} "
            "mientras tenga órdenes de producción abiertas."
        )

    for componente_id, linea in actuales.items():
        if componente_id not in cantidades:
            linea.delete()

    for componente_id, cantidad in cantidades.items():
        linea = actuales.get(componente_id)
        if linea is None:
            ListaMateriales.objects.create(
                compuesto=producto,
                componente_id=componente_id,
                cantidad=cantidad,
            )
        elif linea.cantidad != cantidad:
            linea.cantidad = cantidad
            linea.save(update_fields=["cantidad", "updated_at"])

    if tipo_sin_materiales is None:
        tipo_sin_materiales = (
            producto.tipo_producto
            if producto.tipo_producto in (TipoProducto.INSUMOS, TipoProducto.SENCILLOS)
            else TipoProducto.INSUMOS
        )
    producto.tipo_producto = derivar_tipo_producto(
        componentes,
        tipo_sin_materiales=tipo_sin_materiales,
    )
    producto.save(update_fields=["tipo_producto", "updated_at"])
    return producto


def _asignar_proveedores(producto: Producto, proveedor_ids) -> None:
    proveedor_ids = sorted(set(proveedor_ids or []))
    proveedores = list(Proveedor.objects.filter(pk__in=proveedor_ids))
    if len(proveedores) != len(proveedor_ids):
        raise NoEncontrado("Algunos proveedores no existen")
    producto.proveedores.set(proveedores)


# --- Gestión de productos ---

@con_resultado
@transaction.atomic
def crear_producto(
    *,
    codigo: str,
    nombre: str,
    unidad_medida: str,
    planos: str,
    materiales: list[dict] | None = None,
    proveedores: list[int] | None = None,
    imagen: dict | None = None,
    tipo_sin_materiales: str = TipoProducto.INSUMOS,
) -> Producto:
    """
    Crea un producto con existencia 0 y su lista de materiales.
    El tipo se deriva de los materiales; tipo_sin_materiales solo aplica si no tiene.
    """
    if tipo_sin_materiales not in (TipoProducto.INSUMOS, TipoProducto.SENCILLOS):
        raise ValidacionFallida("Un producto sin materiales solo puede ser INSUMOS o SENCILLOS")

    if Producto.objects.filter(codigo=codigo).exists():
        raise Conflicto("Ya existe un producto con el mismo codigo")

    try:
        producto = Producto.objects.create(
            codigo=codigo,
            nombre=nombre,
            unidad_medida=unidad_medida,
            planos=planos,
            imagen=imagen,
            tipo_producto=tipo_sin_materiales,
            existencia=CERO,
            existencia_reservada=CERO,
        )
    except IntegrityError:
        raise Conflicto("Ya existe un producto con el mismo codigo")

    _asignar_proveedores(producto, proveedores)
    definir_materiales(
        producto=producto,
        materiales=materiales or [],
        tipo_sin_materiales=tipo_sin_materiales,
    )
    logger.info("Producto creado %s (%s)", producto.codigo, producto.tipo_producto)
    return producto


@con_resultado
@transaction.atomic
def actualizar_producto(
    *,
    producto_id: int,
    codigo: str,
    nombre: str,
    unidad_medida: str,
    planos: str,
    materiales: list[dict] | None = None,
    proveedores: list[int] | None = None,
    imagen: dict | None = None,
) -> Producto:
    """
    Actualiza datos descriptivos, proveedores y lista de materiales.
    materiales o proveedores en None los deja como están; una lista vacía
    los borra. Nunca toca existencia ni existencia_reservada.
    """
    producto = obtener_producto(producto_id, bloquear=True)

    if Producto.objects.filter(codigo=codigo).exclude(pk=producto.pk).exists():
        raise Conflicto("Ya existe un producto con el mismo codigo")

    producto.codigo = codigo
    producto.nombre = nombre
    producto.unidad_medida = unidad_medida
    producto.planos = planos
    if imagen is not None:
        producto.imagen = imagen
    producto.save(update_fields=["codigo", "nombre", "unidad_medida", "planos", "imagen", "updated_at"])

    if proveedores is not None:
        _asignar_proveedores(producto, proveedores)
    if materiales is not None:
        definir_materiales(producto=producto, materiales=materiales)
    return producto


@con_resultado
@transaction.atomic
def eliminar_producto(*, producto_id: int) -> Producto:
    """Eliminación lógica: el producto deja de resolverse en el inventario."""
    producto = obtener_producto(producto_id, bloquear=True)
    abiertas = producto.ordenes_produccion.filter(
        estado__in=[EstadoOrden.POR_INICIAR, EstadoOrden.EN_PROCESO]
    )
    if producto.existencia_reservada > 0 or abiertas.exists():
        raise ValidacionFallida(
            f"No se puede eliminar {producto}: está comprometido en órdenes de producción abiertas."
        )
    producto.activo = False
    producto.save(update_fields=["activo", "updated_at"])
    logger.info("Producto %s eliminado (lógico)", producto.codigo)
    return producto
