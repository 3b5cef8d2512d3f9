from django.apps import AppConfig


class ManufacturaConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "manufactura"
    verbose_name = "Manufactura"
