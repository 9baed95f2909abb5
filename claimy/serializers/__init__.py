"""
Serializers package for claimy.

This package contains serializer implementations for converting claim records,
jobs and webhook payloads to and from bytes for storage and transmission.
"""

from .serializer import Serializer
from .json_serializer import JsonSerializer
from .pydantic_serializer import PydanticSerializer

__all__ = [
    'Serializer',
    'JsonSerializer',
    'PydanticSerializer',
]
