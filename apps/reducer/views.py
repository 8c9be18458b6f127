"""
Reducer API views.

POST /api/reducer/reduce/  - Reduced HTML, outlines and stats
POST /api/reducer/cleanup/ - Cleaned HTML and compression stats
"""

from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.core.exceptions import ValidationError

from . import engine
from .serializers import CleanupRequestSerializer, ReduceRequestSerializer


class ReduceView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = ReduceRequestSerializer(data=request.data)
        if not serializer.is_valid():
            raise ValidationError("Invalid reduce request", details=serializer.errors)

        result = engine.reduce(
            serializer.validated_data['html'],
            selector=serializer.validated_data['selector'] or None,
            config=serializer.to_config(),
        )
        return Response(result.to_dict())


class CleanupView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = CleanupRequestSerializer(data=request.data)
        if not serializer.is_valid():
            raise ValidationError("Invalid cleanup request", details=serializer.errors)

        result = engine.cleanup(serializer.validated_data['html'], serializer.to_config())
        return Response(result.to_dict())
