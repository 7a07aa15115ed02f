"""
Root pytest configuration for the Django project.

This module makes the Django settings module available before collection.
Project-wide hooks live in app/conftest.py; app-specific fixtures are
defined in each app's tests/conftest.py.
"""

import os

# Ensure Django settings are configured before any tests run
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")
