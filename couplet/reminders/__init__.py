"""Reminder notification engine (dispatch jobs, fan-out, recurrence, API).

The server side runs as a Celery worker + beat pair scanning the reminder
store every minute; the FastAPI router exposes a small admin surface for
manual runs and user actions. The client job keeps a signed-in user's local
notifications in step with the same store.
"""
