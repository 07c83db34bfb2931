"""Organizer backend: Google sign-in, server-side sessions and per-user notes/reminders/contacts."""

__version__ = "0.1.0"
