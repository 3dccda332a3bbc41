"""Realtime change notifications for the UserFlow backend.

Row changes on tracked PostgreSQL tables are published by triggers, picked up
by a background listener, fanned out through a websocket hub and reconciled
into client-side collections.
"""
