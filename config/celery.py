"""
Celery configuration for ScrapeQueue project.
"""

import os
from celery import Celery

# Set default Django settings module
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings.development')

app = Celery('scrapequeue')

# Load configuration from Django settings with CELERY namespace
app.config_from_object('django.conf:settings', namespace='CELERY')

# Auto-discover tasks from all installed apps
app.autodiscover_tasks()

# Crawl runs are long-lived; keep them off the default queue
app.conf.task_routes = {
    'apps.crawler.tasks.run_crawl': {'queue': 'crawl'},
}

# Default queue if not specified
app.conf.task_default_queue = 'default'

