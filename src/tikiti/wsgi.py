"""WSGI config for the Tikiti project."""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "tikiti.settings")

application = get_wsgi_application()
