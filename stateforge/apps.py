from django.apps import AppConfig


class StateforgeConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'stateforge'
    verbose_name = 'StateForge automata core'
