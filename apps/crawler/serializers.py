"""
Serializers for crawl runs, queue items and run logs.
"""

from django.conf import settings as django_settings
from rest_framework import serializers

from .models import CrawlRun, LogEntry, QueueItem


class CrawlRunSerializer(serializers.ModelSerializer):
    """Full run record including its wall-clock duration."""

    duration_seconds = serializers.SerializerMethodField()

    class Meta:
        model = CrawlRun
        fields = [
            'id',
            'start_url',
            'status',
            'max_depth',
            'max_pages',
            'concurrency',
            'include_patterns',
            'exclude_patterns',
            'crawl_external',
            'settings',
            'created_at',
            'updated_at',
            'completed_at',
            'duration_seconds',
        ]
        read_only_fields = fields

    def get_duration_seconds(self, obj):
        duration = obj.duration_seconds
        return round(duration) if duration is not None else None


class QueueItemSerializer(serializers.ModelSerializer):
    """Queue item without the stored response body."""

    run_id = serializers.IntegerField(read_only=True)

    class Meta:
        model = QueueItem
        fields = [
            'id',
            'run_id',
            'url',
            'status',
            'parent_url',
            'depth',
            'error',
            'response_status_code',
            'response_final_url',
            'page_title',
            'created_at',
            'updated_at',
        ]
        read_only_fields = fields


class QueueItemWithHtmlSerializer(QueueItemSerializer):
    """Queue item including response_html."""

    class Meta(QueueItemSerializer.Meta):
        fields = QueueItemSerializer.Meta.fields + ['response_html']
        read_only_fields = fields


class LogEntrySerializer(serializers.ModelSerializer):

    class Meta:
        model = LogEntry
        fields = ['id', 'level', 'message', 'metadata', 'created_at']
        read_only_fields = fields


class ScrapeSettingsSerializer(serializers.Serializer):
    """Fetch settings accepted when starting a run."""

    engine = serializers.ChoiceField(choices=['scrape', 'scrape-js'], default='scrape')
    headers = serializers.ListField(child=serializers.CharField(), default=list)
    retry_num = serializers.IntegerField(min_value=0, default=1)
    geo = serializers.CharField(default='us')
    proxy = serializers.CharField(default='', allow_blank=True)
    text_not_expected = serializers.ListField(child=serializers.CharField(), default=list)
    status_not_expected = serializers.ListField(
        child=serializers.IntegerField(min_value=100, max_value=599),
        default=list,
    )
    follow_redirects = serializers.BooleanField(default=True)
    timeout = serializers.IntegerField(min_value=1, default=10)
    timeout_js = serializers.IntegerField(min_value=1, default=16)
    wait_for_selector = serializers.CharField(default='', allow_blank=True)
    block_images = serializers.BooleanField(default=False)
    block_media = serializers.BooleanField(default=False)
    post_wait_time = serializers.IntegerField(min_value=0, max_value=12, default=0)
    viewport = serializers.DictField(required=False, allow_null=True)


class RunStartSerializer(serializers.Serializer):
    """Serializer for starting a new crawl run."""

    start_url = serializers.URLField(
        max_length=2048,
        help_text='Seed URL (http or https)'
    )

    max_depth = serializers.IntegerField(min_value=0, default=1)

    max_pages = serializers.IntegerField(min_value=1, default=10)

    concurrency = serializers.IntegerField(
        min_value=1,
        default=lambda: getattr(django_settings, 'CRAWLER_DEFAULT_CONCURRENCY', 1),
        help_text='Parallel workers'
    )

    include_patterns = serializers.ListField(
        child=serializers.CharField(),
        default=list,
        help_text='Glob patterns matched against the URL without scheme'
    )

    exclude_patterns = serializers.ListField(
        child=serializers.CharField(),
        default=list,
    )

    crawl_external = serializers.BooleanField(default=False)

    settings = ScrapeSettingsSerializer(required=False)

    def validate_concurrency(self, value):
        limit = getattr(django_settings, 'CRAWLER_MAX_CONCURRENCY', 5)
        if value > limit:
            raise serializers.ValidationError(f"Concurrency must be between 1 and {limit}")
        return value


class RunResultsQuerySerializer(serializers.Serializer):
    include_html = serializers.BooleanField(default=False)


class ScrapeRequestSerializer(serializers.Serializer):
    """Serializer for a one-shot scrape."""

    url = serializers.URLField(max_length=2048)

    settings = ScrapeSettingsSerializer(required=False)
