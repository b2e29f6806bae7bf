from apps.api import main

from apps.api.main import (app, create_app, health_check, lifespan, router,)

__all__ = ['app', 'create_app', 'health_check', 'lifespan', 'main', 'router']
