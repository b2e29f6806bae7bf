from apps import api

from apps.api import (app, create_app, health_check, lifespan, router,)

__all__ = ['api', 'app', 'create_app', 'health_check', 'lifespan', 'router']
