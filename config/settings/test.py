"""
Test settings for ScrapeQueue project.
"""

from .base import *

DEBUG = False

ALLOWED_HOSTS = ['testserver', 'localhost']

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': BASE_DIR / 'test_db.sqlite3',
        'OPTIONS': {
            'timeout': 20,
            # Worker threads write concurrently; take the write lock up front
            'transaction_mode': 'IMMEDIATE',
        },
        'TEST': {
            'NAME': BASE_DIR / 'test_db.sqlite3',
        },
    }
}

PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']

CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True
CELERY_BROKER_URL = 'memory://'
CELERY_RESULT_BACKEND = 'cache+memory://'

CRAWLER_POLL_DELAY = 0.01
SCRAPENINJA_API_KEY = 'test-key'

LOGGING['handlers'] = {
    'console': {
        'class': 'logging.StreamHandler',
        'formatter': 'simple',
    },
}
LOGGING['root']['level'] = 'WARNING'
LOGGING['loggers'] = {
    'apps': {
        'handlers': ['console'],
        'level': 'WARNING',
        'propagate': False,
    },
}
