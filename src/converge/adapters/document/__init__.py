"""Public interface for the declaration document adapter."""

from __future__ import annotations

from .loader import DOCUMENT_SUFFIXES, load_document
from .schema import DocumentPayload
from .translator import translate_payload

__all__ = ["DOCUMENT_SUFFIXES", "DocumentPayload", "load_document", "translate_payload"]
