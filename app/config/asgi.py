"""
ASGI config for the payflow service.

Plain HTTP only; payment webhooks and the REST API are request/response.
"""

import os

from django.core.asgi import get_asgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

application = get_asgi_application()
