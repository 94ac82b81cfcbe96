"""Core utility functions."""

from core.utils.json_serializers import format_bytes, json_serializer

__all__ = ["json_serializer", "format_bytes"]
