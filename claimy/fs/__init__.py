"""File-based claim store."""

from .filesystem_claim_store import FilesystemClaimStore

__all__ = ["FilesystemClaimStore"]
