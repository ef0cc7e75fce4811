from django.apps import AppConfig


class CatalogConfig(AppConfig):
    name = "dx_core.catalog"
    label = "catalog"
    verbose_name = "Test Catalog"
