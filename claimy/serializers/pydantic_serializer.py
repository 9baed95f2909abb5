from dataclasses import dataclass
from typing import TypeVar

from pydantic import TypeAdapter
from claimy.serializers.serializer import Serializer

T = TypeVar("T")


@dataclass
class PydanticSerializer(Serializer[T]):
    """Serializer for dataclasses and models, validating on the way back in"""

    type_adapter: TypeAdapter[T]
    is_json: bool = True

    def serialize(self, obj: T) -> bytes:
        return self.type_adapter.dump_json(obj)

    def deserialize(self, data: bytes) -> T:
        return self.type_adapter.validate_json(data)

    @classmethod
    def for_type(cls, type_: type[T]) -> "PydanticSerializer[T]":
        return cls(type_adapter=TypeAdapter(type_))
