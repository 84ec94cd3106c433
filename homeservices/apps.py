from django.apps import AppConfig


class HomeServicesConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'homeservices'
    verbose_name = 'Home services marketplace'
