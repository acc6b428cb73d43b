"""Package initializer for `permit_leads`."""

from .config import IngestConfig
from .store import PipelineStore

__all__ = ["IngestConfig", "PipelineStore"]
