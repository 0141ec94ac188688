"""Celery task plumbing: logging base class and the sync-to-async bridge."""
from .base_task import BaseTask, run_with_services

__all__ = ["BaseTask", "run_with_services"]
