from django.apps import AppConfig


class ReducerConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.reducer'
    verbose_name = 'Reducer'
