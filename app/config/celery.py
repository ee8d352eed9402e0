"""
Celery application for the settlement workers.

Redis is both broker and result backend. Tasks are auto-discovered from
each installed app's ``tasks.py``; periodic schedules live in the
django_celery_beat database tables (seeded by payments migrations).

Run:
    celery -A config worker -l info
    celery -A config beat -l info

https://docs.celeryq.dev/en/stable/django/first-steps-with-django.html
"""

import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

app.autodiscover_tasks()

