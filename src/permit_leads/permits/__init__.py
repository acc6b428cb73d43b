"""Permit ingestion: source normalizers, stage classification, upstream client.

CI safety: parsers and the classifier are pure and fixture-tested; network
access only happens through ``SocrataClient``.
"""

from .models import ClassifiedPermit, PermitRecord, PipelinePosition
from .sources import SOURCES, get_source, list_sources
from .stages import classify_permit, classify_status

__all__ = [
    "ClassifiedPermit",
    "PermitRecord",
    "PipelinePosition",
    "SOURCES",
    "classify_permit",
    "classify_status",
    "get_source",
    "list_sources",
]
