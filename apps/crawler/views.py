"""
Crawl run API views.

GET  /api/crawler/runs/                     - List runs
POST /api/crawler/runs/                     - Start a run (dispatched to Celery)
GET  /api/crawler/runs/{id}/                - Run results (pages, logs, stats)
GET  /api/crawler/runs/{id}/?include_html=1 - Same, with stored page HTML
GET  /api/crawler/runs/{id}/status/         - Status and queue counts
POST /api/crawler/runs/{id}/pause/          - Pause a running run
POST /api/crawler/runs/{id}/resume/         - Resume a paused run
POST /api/crawler/scrape/                   - Fetch one page, no run
"""

from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.core.exceptions import NotFoundError, ValidationError, created_response, success_response

from . import services
from .models import CrawlRun
from .serializers import (
    CrawlRunSerializer,
    RunResultsQuerySerializer,
    RunStartSerializer,
    ScrapeRequestSerializer,
)


class CrawlRunViewSet(viewsets.GenericViewSet):
    """Start, inspect and control crawl runs."""

    permission_classes = [IsAuthenticated]
    queryset = CrawlRun.objects.all().order_by('-created_at')
    serializer_class = CrawlRunSerializer

    def get_queryset(self):
        queryset = super().get_queryset()
        status_filter = self.request.query_params.get('status')
        if status_filter:
            queryset = queryset.filter(status=status_filter)
        return queryset

    @staticmethod
    def _run_id(pk) -> int:
        try:
            return int(pk)
        except (TypeError, ValueError):
            raise NotFoundError(f"Crawl run {pk} not found")

    def list(self, request):
        page = self.paginate_queryset(self.get_queryset())
        if page is not None:
            serializer = self.get_serializer(page, many=True)
            return self.get_paginated_response(serializer.data)
        serializer = self.get_serializer(self.get_queryset(), many=True)
        return Response(serializer.data)

    def create(self, request):
        serializer = RunStartSerializer(data=request.data)
        if not serializer.is_valid():
            raise ValidationError("Invalid crawl configuration", details=serializer.errors)

        data = serializer.validated_data
        run_id = services.start_crawl(
            data['start_url'],
            max_depth=data['max_depth'],
            max_pages=data['max_pages'],
            concurrency=data['concurrency'],
            include_patterns=data['include_patterns'],
            exclude_patterns=data['exclude_patterns'],
            crawl_external=data['crawl_external'],
            settings=data.get('settings'),
            background=True,
        )
        run = CrawlRun.objects.get(id=run_id)
        return created_response(CrawlRunSerializer(run).data, message="Crawl run started")

    def retrieve(self, request, pk=None):
        query = RunResultsQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        return Response(services.get_results(self._run_id(pk), include_html=query.validated_data['include_html']))

    @action(detail=True, methods=['get'], url_path='status')
    def run_status(self, request, pk=None):
        return Response(services.get_status(self._run_id(pk)))

    @action(detail=True, methods=['post'])
    def pause(self, request, pk=None):
        services.pause(self._run_id(pk))
        return success_response(services.get_status(self._run_id(pk)), message="Pause requested")

    @action(detail=True, methods=['post'])
    def resume(self, request, pk=None):
        services.resume(self._run_id(pk), background=True)
        return success_response(
            services.get_status(self._run_id(pk)),
            message="Crawl run resumed",
            status_code=status.HTTP_202_ACCEPTED,
        )


class ScrapeView(APIView):
    """Fetch a single page through the scraping backend."""

    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = ScrapeRequestSerializer(data=request.data)
        if not serializer.is_valid():
            raise ValidationError("Invalid scrape request", details=serializer.errors)

        data = serializer.validated_data
        return Response(services.scrape_page(data['url'], settings=data.get('settings')))
