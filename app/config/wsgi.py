"""
WSGI config for the billing service.

Webhook deliveries are short synchronous request/response cycles, so the
service is normally run under a WSGI server (gunicorn). ASGI is available
in config.asgi for deployments that prefer Uvicorn.

This file exposes the WSGI callable as a module-level variable named `application`.

For more information on this file, see:
https://docs.djangoproject.com/en/5.2/howto/deployment/wsgi/
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

application = get_wsgi_application()
