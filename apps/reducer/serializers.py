"""
Request serializers for the reducer API.
"""

from rest_framework import serializers

from .engine import CleanupConfig, ReduceConfig


class ReduceRequestSerializer(serializers.Serializer):
    """Input for POST /api/reducer/reduce/."""

    html = serializers.CharField(trim_whitespace=False, allow_blank=True)
    selector = serializers.CharField(required=False, allow_blank=True, default='')
    text_limit = serializers.IntegerField(min_value=1, required=False)
    outline_depth = serializers.IntegerField(min_value=0, required=False)
    body_only = serializers.BooleanField(default=False)

    def to_config(self) -> ReduceConfig:
        data = self.validated_data
        overrides = {'body_only': data['body_only']}
        for key in ('text_limit', 'outline_depth'):
            if key in data:
                overrides[key] = data[key]
        return ReduceConfig.from_settings(**overrides)


class CleanupRequestSerializer(serializers.Serializer):
    """Input for POST /api/reducer/cleanup/."""

    html = serializers.CharField(trim_whitespace=False, allow_blank=True)
    max_text_length = serializers.IntegerField(min_value=0, default=0)
    max_url_length = serializers.IntegerField(min_value=0, default=0)
    only_body = serializers.BooleanField(default=False)
    max_output_length = serializers.IntegerField(min_value=0, default=0)

    def to_config(self) -> CleanupConfig:
        data = self.validated_data
        return CleanupConfig(
            max_text_length=data['max_text_length'],
            max_url_length=data['max_url_length'],
            only_body=data['only_body'],
            max_output_length=data['max_output_length'],
        )
