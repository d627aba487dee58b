"""Notification rendering and the queue dispatcher."""
