"""
Celery configuration for the billing service.

Celery runs the work that must not happen inside a webhook request:
- Subscription notification emails (queued after the state change commits)
- The hourly subscription maintenance sweep
- Retention cleanup of processed webhook deliveries

This configuration uses Redis as both the message broker and result backend.
Tasks are auto-discovered from all installed Django apps, and periodic
schedules live in django-celery-beat's database tables (see the billing
data migrations).

Usage:
    # Queue a maintenance sweep by hand:
    from billing.tasks import run_subscription_maintenance

    run_subscription_maintenance.delay()

For more information, see:
https://docs.celeryq.dev/en/stable/django/first-steps-with-django.html
"""

import os

from celery import Celery

# Set the default Django settings module for the Celery worker
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

# Create Celery application instance
# The name should match the Django project name
app = Celery("config")

# Load configuration from Django settings
# All Celery settings should be prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

# Auto-discover tasks from all registered Django apps
# Celery will look for a tasks.py module in each installed app
app.autodiscover_tasks()
