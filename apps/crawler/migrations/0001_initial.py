# Initial schema for crawler_runs, crawler_queue and crawler_logs

import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='CrawlRun',
            fields=[
                ('id', models.AutoField(primary_key=True, serialize=False, verbose_name='ID')),
                ('created_at', models.DateTimeField(default=django.utils.timezone.now, editable=False, help_text='Timestamp when record was created', verbose_name='Created At')),
                ('updated_at', models.DateTimeField(auto_now=True, help_text='Timestamp when record was last updated', verbose_name='Updated At')),
                ('start_url', models.TextField(help_text='Normalized seed URL', verbose_name='Start URL')),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('running', 'Running'), ('paused', 'Paused'), ('completed', 'Completed'), ('failed', 'Failed'), ('canceled', 'Canceled')], db_index=True, default='pending', max_length=20, verbose_name='Status')),
                ('max_depth', models.PositiveIntegerField(default=1, help_text='Links are only followed from pages shallower than this', verbose_name='Max Depth')),
                ('max_pages', models.PositiveIntegerField(default=10, verbose_name='Max Pages')),
                ('concurrency', models.PositiveSmallIntegerField(default=1, help_text='Number of parallel workers (1-5)', verbose_name='Concurrency')),
                ('include_patterns', models.JSONField(blank=True, default=list, help_text='Ordered glob patterns; empty means include everything', verbose_name='Include Patterns')),
                ('exclude_patterns', models.JSONField(blank=True, default=list, verbose_name='Exclude Patterns')),
                ('crawl_external', models.BooleanField(default=False, help_text='Follow links to other hosts', verbose_name='Crawl External')),
                ('settings', models.JSONField(blank=True, default=dict, help_text='Opaque fetch adapter configuration', verbose_name='Fetch Settings')),
                ('completed_at', models.DateTimeField(blank=True, help_text='When the run reached a terminal state', null=True, verbose_name='Completed At')),
            ],
            options={
                'verbose_name': 'Crawl Run',
                'verbose_name_plural': 'Crawl Runs',
                'db_table': 'crawler_runs',
                'ordering': ['-created_at'],
            },
        ),
        migrations.CreateModel(
            name='QueueItem',
            fields=[
                ('id', models.AutoField(primary_key=True, serialize=False, verbose_name='ID')),
                ('created_at', models.DateTimeField(default=django.utils.timezone.now, editable=False, help_text='Timestamp when record was created', verbose_name='Created At')),
                ('updated_at', models.DateTimeField(auto_now=True, help_text='Timestamp when record was last updated', verbose_name='Updated At')),
                ('url', models.TextField(help_text='Normalized URL, unique per run', verbose_name='URL')),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('processing', 'Processing'), ('completed', 'Completed'), ('failed', 'Failed'), ('canceled', 'Canceled')], db_index=True, default='pending', max_length=20, verbose_name='Status')),
                ('parent_url', models.TextField(blank=True, help_text='Page the link was discovered on; null for the seed', null=True, verbose_name='Parent URL')),
                ('depth', models.PositiveIntegerField(default=0, verbose_name='Depth')),
                ('error', models.JSONField(blank=True, help_text='Structured failure or cancellation detail', null=True, verbose_name='Error')),
                ('response_html', models.TextField(blank=True, null=True, verbose_name='Response HTML')),
                ('response_status_code', models.IntegerField(blank=True, null=True, verbose_name='Response Status Code')),
                ('response_final_url', models.TextField(blank=True, null=True, verbose_name='Response Final URL')),
                ('page_title', models.CharField(blank=True, max_length=250, null=True, verbose_name='Page Title')),
                ('run', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='queue_items', to='crawler.crawlrun', verbose_name='Run')),
            ],
            options={
                'verbose_name': 'Queue Item',
                'verbose_name_plural': 'Queue Items',
                'db_table': 'crawler_queue',
                'ordering': ['depth', 'created_at', 'id'],
            },
        ),
        migrations.CreateModel(
            name='LogEntry',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('level', models.CharField(choices=[('debug', 'Debug'), ('info', 'Info'), ('warn', 'Warning'), ('error', 'Error')], default='info', max_length=10, verbose_name='Level')),
                ('message', models.TextField(verbose_name='Message')),
                ('metadata', models.JSONField(blank=True, null=True, verbose_name='Metadata')),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True, verbose_name='Created At')),
                ('run', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='logs', to='crawler.crawlrun', verbose_name='Run')),
            ],
            options={
                'verbose_name': 'Log Entry',
                'verbose_name_plural': 'Log Entries',
                'db_table': 'crawler_logs',
                'ordering': ['id'],
            },
        ),
        migrations.AddConstraint(
            model_name='queueitem',
            constraint=models.UniqueConstraint(fields=('run', 'url'), name='crawler_queue_run_url_uniq'),
        ),
        migrations.AddIndex(
            model_name='queueitem',
            index=models.Index(fields=['run', 'url'], name='idx_crawler_queue_run_url'),
        ),
        migrations.AddIndex(
            model_name='queueitem',
            index=models.Index(fields=['run', 'status', 'depth', 'created_at'], name='idx_crawler_queue_claim'),
        ),
        migrations.AddIndex(
            model_name='queueitem',
            index=models.Index(fields=['status', 'updated_at'], name='idx_crawler_queue_stale'),
        ),
    ]
