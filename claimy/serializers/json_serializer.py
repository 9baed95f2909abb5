import dataclasses
import json
from enum import Enum
from typing import TypeVar, Any

from claimy.serializers.serializer import Serializer

T = TypeVar("T")


class JsonSerializer(Serializer[T]):
    """JSON serializer for webhook payloads and other plain structures"""

    is_json: bool = True

    def __init__(self, ensure_ascii: bool = False, indent: int | None = None):
        """Initialize the JSON serializer

        Args:
            ensure_ascii: If True, escape non-ASCII characters in JSON strings
            indent: Number of spaces for indentation (None for compact output)
        """
        self.ensure_ascii = ensure_ascii
        self.indent = indent

    def serialize(self, obj: T) -> bytes:
        """Serialize an object to JSON bytes

        Raises:
            TypeError: If the object is not JSON-serializable
        """
        json_str = json.dumps(
            obj,
            ensure_ascii=self.ensure_ascii,
            indent=self.indent,
            default=self._default_handler,
        )
        return json_str.encode("utf-8")

    def deserialize(self, data: bytes) -> T:
        """Deserialize JSON bytes (UTF-8 encoded) back to an object"""
        return json.loads(data.decode("utf-8"))

    def _default_handler(self, obj: Any) -> Any:
        """Handle the non-JSON types which show up in alert and message payloads.

        This method can be overridden in subclasses to handle custom types.
        """
        if isinstance(obj, Enum):
            return obj.value
        if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
            return dataclasses.asdict(obj)
        if hasattr(obj, "isoformat"):  # datetime objects
            return obj.isoformat()
        raise TypeError(
            f"Object of type {type(obj).__name__} is not JSON serializable"
        )
