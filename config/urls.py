"""
URL configuration for ScrapeQueue project.
"""

from django.urls import path, include

urlpatterns = [
    path('api/', include('rest_framework.urls')),
    path('api/crawler/', include('apps.crawler.urls')),
    path('api/reducer/', include('apps.reducer.urls')),
]
