"""Celery entry points for the escrow engine."""
