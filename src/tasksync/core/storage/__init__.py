"""Snapshot encoding and local persistence."""

from .codec import decode_document, encode_document
from .local_store import LocalStore

__all__ = ["LocalStore", "decode_document", "encode_document"]
