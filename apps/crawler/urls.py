"""
Crawler API URLs.
"""

from django.urls import include, path

from config.routers import SafeDefaultRouter

from .views import CrawlRunViewSet, ScrapeView

app_name = 'crawler'

router = SafeDefaultRouter()
router.register(r'runs', CrawlRunViewSet, basename='run')

urlpatterns = [
    path('scrape/', ScrapeView.as_view(), name='scrape'),
    path('', include(router.urls)),
]
