"""Periodic job wiring: Dramatiq actors and service factories."""
