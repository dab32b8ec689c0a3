"""Reminder scheduler module (API, delivery agent, Celery worker, reconciler).

This module can run inside the API process or as a separate worker
container. The API reconciles each owner's reminder set from their
settings; the agent scans the store for due reminders and delivers them.
"""
