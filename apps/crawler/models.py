"""
Crawler models: runs, queue items and run logs.

Table and column names are a stable contract for dashboards and external
resumers, so db_table is pinned on every model.
"""

from django.db import models

from apps.core.models import BaseModel


class CrawlRun(BaseModel):
    """
    One crawl session started from a single seed URL.

    Status transitions are owned by apps.crawler.state_machine; terminal
    states (completed, failed, canceled) are never left once reached.
    """

    STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('running', 'Running'),
        ('paused', 'Paused'),
        ('completed', 'Completed'),
        ('failed', 'Failed'),
        ('canceled', 'Canceled'),
    ]

    TERMINAL_STATUSES = ('completed', 'failed', 'canceled')

    start_url = models.TextField(
        verbose_name='Start URL',
        help_text='Normalized seed URL'
    )

    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default='pending',
        db_index=True,
        verbose_name='Status',
    )

    max_depth = models.PositiveIntegerField(
        default=1,
        verbose_name='Max Depth',
        help_text='Links are only followed from pages shallower than this'
    )

    max_pages = models.PositiveIntegerField(
        default=10,
        verbose_name='Max Pages',
    )

    concurrency = models.PositiveSmallIntegerField(
        default=1,
        verbose_name='Concurrency',
        help_text='Number of parallel workers (1-5)'
    )

    include_patterns = models.JSONField(
        default=list,
        blank=True,
        verbose_name='Include Patterns',
        help_text='Ordered glob patterns; empty means include everything'
    )

    exclude_patterns = models.JSONField(
        default=list,
        blank=True,
        verbose_name='Exclude Patterns',
    )

    crawl_external = models.BooleanField(
        default=False,
        verbose_name='Crawl External',
        help_text='Follow links to other hosts'
    )

    settings = models.JSONField(
        default=dict,
        blank=True,
        verbose_name='Fetch Settings',
        help_text='Opaque fetch adapter configuration'
    )

    completed_at = models.DateTimeField(
        null=True,
        blank=True,
        verbose_name='Completed At',
        help_text='When the run reached a terminal state'
    )

    class Meta:
        db_table = 'crawler_runs'
        verbose_name = 'Crawl Run'
        verbose_name_plural = 'Crawl Runs'
        ordering = ['-created_at']

    def __str__(self):
        return f"Run {self.id} ({self.status}) {self.start_url}"

    @property
    def is_terminal(self) -> bool:
        return self.status in self.TERMINAL_STATUSES

    @property
    def duration_seconds(self):
        """Seconds from creation to completion, None while still active."""
        if not self.completed_at:
            return None
        return (self.completed_at - self.created_at).total_seconds()


class QueueItem(BaseModel):
    """
    One discovered URL within a run.

    Only apps.crawler.queue.QueueStore changes ``status``. An item stuck in
    ``processing`` with an old ``updated_at`` is a stale claim.
    """

    STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('processing', 'Processing'),
        ('completed', 'Completed'),
        ('failed', 'Failed'),
        ('canceled', 'Canceled'),
    ]

    FINAL_STATUSES = ('completed', 'failed', 'canceled')
    TITLE_MAX_LENGTH = 250

    run = models.ForeignKey(
        CrawlRun,
        on_delete=models.CASCADE,
        related_name='queue_items',
        db_index=True,
        verbose_name='Run',
    )

    url = models.TextField(
        verbose_name='URL',
        help_text='Normalized URL, unique per run'
    )

    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default='pending',
        db_index=True,
        verbose_name='Status',
    )

    parent_url = models.TextField(
        null=True,
        blank=True,
        verbose_name='Parent URL',
        help_text='Page the link was discovered on; null for the seed'
    )

    depth = models.PositiveIntegerField(
        default=0,
        verbose_name='Depth',
    )

    error = models.JSONField(
        null=True,
        blank=True,
        verbose_name='Error',
        help_text='Structured failure or cancellation detail'
    )

    response_html = models.TextField(
        null=True,
        blank=True,
        verbose_name='Response HTML',
    )

    response_status_code = models.IntegerField(
        null=True,
        blank=True,
        verbose_name='Response Status Code',
    )

    response_final_url = models.TextField(
        null=True,
        blank=True,
        verbose_name='Response Final URL',
    )

    page_title = models.CharField(
        max_length=TITLE_MAX_LENGTH,
        null=True,
        blank=True,
        verbose_name='Page Title',
    )

    class Meta:
        db_table = 'crawler_queue'
        verbose_name = 'Queue Item'
        verbose_name_plural = 'Queue Items'
        ordering = ['depth', 'created_at', 'id']
        constraints = [
            models.UniqueConstraint(fields=['run', 'url'], name='crawler_queue_run_url_uniq'),
        ]
        indexes = [
            models.Index(fields=['run', 'url'], name='idx_crawler_queue_run_url'),
            models.Index(fields=['run', 'status', 'depth', 'created_at'], name='idx_crawler_queue_claim'),
            models.Index(fields=['status', 'updated_at'], name='idx_crawler_queue_stale'),
        ]

    def __str__(self):
        return f"{self.url} [{self.status}] depth={self.depth}"


class LogEntry(models.Model):
    """Append-only observation attached to a run."""

    LEVEL_CHOICES = [
        ('debug', 'Debug'),
        ('info', 'Info'),
        ('warn', 'Warning'),
        ('error', 'Error'),
    ]

    run = models.ForeignKey(
        CrawlRun,
        on_delete=models.CASCADE,
        related_name='logs',
        db_index=True,
        verbose_name='Run',
    )

    level = models.CharField(
        max_length=10,
        choices=LEVEL_CHOICES,
        default='info',
        verbose_name='Level',
    )

    message = models.TextField(verbose_name='Message')

    metadata = models.JSONField(
        null=True,
        blank=True,
        verbose_name='Metadata',
    )

    created_at = models.DateTimeField(
        auto_now_add=True,
        db_index=True,
        verbose_name='Created At',
    )

    class Meta:
        db_table = 'crawler_logs'
        verbose_name = 'Log Entry'
        verbose_name_plural = 'Log Entries'
        ordering = ['id']

    def __str__(self):
        return f"[{self.level}] {self.message}"
