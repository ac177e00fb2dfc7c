"""Couplet reminder notification engine.

Schedules and delivers push notifications for personal and couple reminders,
rolls recurring reminders forward, and keeps the dedup bookkeeping that lets
the server dispatcher and the client polling job run independently.
"""

__version__ = "0.1.0"
