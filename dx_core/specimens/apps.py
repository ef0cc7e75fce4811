from django.apps import AppConfig


class SpecimensConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "dx_core.specimens"
    label = "specimens"
