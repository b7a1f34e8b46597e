"""ASGI config for the Tikiti project."""

import os

from django.core.asgi import get_asgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "tikiti.settings")

application = get_asgi_application()
