from admin import customer_routes
from admin import models
from admin import settings_routes
from admin import user_routes

from admin.models import (Customer, Settings,)

__all__ = ['Customer', 'Settings', 'customer_routes', 'models',
           'settings_routes', 'user_routes']
