"""
Reducer API URLs.
"""

from django.urls import path

from .views import CleanupView, ReduceView

app_name = 'reducer'

urlpatterns = [
    path('reduce/', ReduceView.as_view(), name='reduce'),
    path('cleanup/', CleanupView.as_view(), name='cleanup'),
]
