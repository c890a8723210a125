from django.apps import AppConfig


class ServicemarketConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'servicemarket'
    verbose_name = 'Service marketplace'

    def ready(self):
        # Registers outbox handlers.
        from . import escrow  # noqa: F401
