from django.urls import path, include
from rest_framework.routers import DefaultRouter

from .views import (
    ClienteViewSet,
    EstadisticasView,
    HistorialViewSet,
    OrdenProduccionViewSet,
    ProductoViewSet,
    ProveedorViewSet,
)

router = DefaultRouter()
router.register(r"productos", ProductoViewSet, basename="producto")
router.register(r"ordenes-produccion", OrdenProduccionViewSet, basename="orden-produccion")
router.register(r"historial", HistorialViewSet, basename="historial")
router.register(r"clientes", ClienteViewSet, basename="cliente")
router.register(r"proveedores", ProveedorViewSet, basename="proveedor")


urlpatterns = [
    path("estadisticas/", EstadisticasView.as_view(), name="estadisticas"),
    path("", include(router.urls)),
]
