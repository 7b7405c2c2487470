from django.apps import AppConfig


class InvoiceEngineConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "invoice_engine"
    verbose_name = "Invoice composition engine"
