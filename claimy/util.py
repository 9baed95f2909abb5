import importlib
import logging
import os
from typing import TypeVar

T = TypeVar("T")
_LOGGER = logging.getLogger(__name__)


def import_from(qual_name: str):
    """Import a value from its fully qualified name.

    This function is a utility to dynamically import any Python value (class, function, variable)
    from its fully qualified name. For example, 'claimy.mem.memory_claim_store.MemoryClaimStore'
    would import the MemoryClaimStore class from the claimy.mem.memory_claim_store module.

    Args:
        qual_name: A fully qualified name in the format 'module.submodule.name'

    Returns:
        The imported value (class, function, or variable)

    Example:
        >>> MemoryClaimStore = import_from('claimy.mem.memory_claim_store.MemoryClaimStore')
        >>> store = MemoryClaimStore()
    """
    parts = qual_name.split(".")
    module_name = ".".join(parts[:-1])
    module = importlib.import_module(module_name)
    result = getattr(module, parts[-1])
    return result


def get_impl(key: str, base_type: type[T], default_type: type | None = None) -> type[T]:
    """Get the implementation type named by the environment variable given.

    Raises:
        ValueError: If the variable is unset and there is no default type
    """
    value = os.getenv(key)
    if not value:
        if default_type is None:
            raise ValueError(f"No implementation configured for {key}")
        assert issubclass(default_type, base_type)
        return default_type
    imported_type = import_from(value)
    assert issubclass(imported_type, base_type)
    _LOGGER.debug(f"Using {imported_type.__name__} for {key}")
    return imported_type


def split_csv(value: str | None) -> list[str]:
    """Split a comma separated environment value, dropping blanks"""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def parse_bool(value: str | None, default: bool = False) -> bool:
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")
