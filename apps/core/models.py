"""
Core models for ScrapeQueue.
Base classes and shared functionality.
"""

from django.db import models
from django.utils import timezone


class BaseModel(models.Model):
    """
    Abstract base model with timestamp tracking.

    Primary keys stay integer auto-increment so the crawler tables keep
    the SERIAL ids external tooling relies on.
    """
    id = models.AutoField(
        primary_key=True,
        verbose_name='ID',
    )

    created_at = models.DateTimeField(
        default=timezone.now,
        editable=False,
        verbose_name='Created At',
        help_text='Timestamp when record was created'
    )

    updated_at = models.DateTimeField(
        auto_now=True,
        verbose_name='Updated At',
        help_text='Timestamp when record was last updated'
    )

    class Meta:
        abstract = True
        ordering = ['-created_at']

    def __str__(self):
        """
        Default string representation.
        Should be overridden in child classes.
        """
        return f"{self.__class__.__name__} ({self.id})"
