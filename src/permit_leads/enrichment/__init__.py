"""Registry enrichment collaborators (county assessor, Secretary of State).

A failed lookup is counted and skipped; a batch always runs to the end
and reports ``{total, enriched, failed, skipped}``.
"""

from .assessor import AssessorClient, enrich_project_from_registry, run_assessor_enrichment
from .sos import SosClient, enrich_developer_from_sos, run_sos_enrichment

__all__ = [
    "AssessorClient",
    "SosClient",
    "enrich_developer_from_sos",
    "enrich_project_from_registry",
    "run_assessor_enrichment",
    "run_sos_enrichment",
]
