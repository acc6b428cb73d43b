"""County assessor parcel lookups keyed by APN/AIN.

``parse_parcel_detail`` is pure and fixture-tested; ``AssessorClient`` is the
only part that touches the network.
"""
from __future__ import annotations

import logging
import re
from typing import Any, Dict, Mapping, Optional

import httpx

from permit_leads.enrichment.base import PacedClient, finish_batch_run
from permit_leads.permits.fields import clean_str, parse_float, parse_int
from permit_leads.store import PipelineStore, utc_now_iso


logger = logging.getLogger("pl.enrichment.assessor")

ASSESSOR_API = "https://portal.assessor.lacounty.gov/api/parceldetail"
RUN_SOURCE = "assessor"


def normalize_ain(apn: Optional[str]) -> str:
    return re.sub(r"\D", "", apn or "")


class AssessorClient(PacedClient):
    def __init__(self, http: Optional[httpx.Client] = None, *, base_url: str = ASSESSOR_API, **kwargs):
        kwargs.setdefault("headers", {"Accept": "application/json"})
        super().__init__(http, **kwargs)
        self.base_url = base_url

    def fetch_parcel(self, ain: str) -> Optional[Dict[str, Any]]:
        """Parcel detail payload, or None when the lookup fails for any reason."""

        key = normalize_ain(ain)
        if not key:
            return None
        self._pace()
        try:
            resp = self.http.get(self.base_url, params={"ain": key})
        except httpx.HTTPError as e:
            logger.warning("assessor fetch failed", extra={"ain": key, "error": str(e)})
            return None
        if resp.status_code >= 400:
            logger.warning("assessor fetch failed", extra={"ain": key, "status": resp.status_code})
            return None
        try:
            data = resp.json()
        except ValueError:
            logger.warning("assessor returned invalid JSON", extra={"ain": key})
            return None
        if not isinstance(data, dict) or not isinstance(data.get("Parcel"), dict):
            return None
        return data


def _positive(value: Optional[float]) -> Optional[float]:
    # The registry reports unknown numbers as 0.
    return value if value else None


def parse_parcel_detail(payload: Optional[Mapping[str, Any]]) -> Optional[Dict[str, Any]]:
    """Map an assessor payload onto ``assessor_*`` project columns."""

    if not payload:
        return None
    parcel = payload.get("Parcel")
    if not isinstance(parcel, dict):
        return None
    bedrooms = parse_int(parcel.get("NumOfBeds"))
    return {
        "assessor_use_type": clean_str(parcel.get("UseType")),
        "assessor_year_built": clean_str(parcel.get("YearBuilt")),
        "assessor_sqft_main": _positive(parse_float(parcel.get("SqftMain"))),
        "assessor_sqft_lot": _positive(parse_float(parcel.get("SqftLot"))),
        "assessor_bedrooms": bedrooms if bedrooms else None,
        "assessor_bathrooms": _positive(parse_float(parcel.get("NumOfBaths"))),
        "assessor_land_value": _positive(parse_float(parcel.get("CurrentRoll_LandValue"))),
        "assessor_imp_value": _positive(parse_float(parcel.get("CurrentRoll_ImpValue"))),
        "assessor_exemption": clean_str(parcel.get("Exemption")),
        "assessor_legal_desc": clean_str(parcel.get("LegalDescription")),
    }


def enrich_project_from_registry(store: PipelineStore, project_id: int, client: AssessorClient) -> bool:
    project = store.get_project(project_id)
    if project is None or not project.get("apn"):
        return False
    fields = parse_parcel_detail(client.fetch_parcel(project["apn"]))
    if fields is None:
        return False
    fields["assessor_enriched_at"] = utc_now_iso()
    with store.transaction():
        store.update_project(int(project_id), fields)
    return True


def run_assessor_enrichment(
    store: PipelineStore,
    client: Optional[AssessorClient] = None,
    *,
    progress_every: int = 50,
) -> Dict[str, int]:
    """Enrich every project that has an APN and no assessor data yet."""

    own_client = client is None
    client = client or AssessorClient()
    run_id = store.record_run_start(RUN_SOURCE)
    try:
        projects = store.list_projects_for_assessor()
        enriched = failed = skipped = 0
        for i, project in enumerate(projects, start=1):
            if not normalize_ain(project.get("apn")):
                skipped += 1
                continue
            if enrich_project_from_registry(store, int(project["id"]), client):
                enriched += 1
            else:
                failed += 1
            if i % progress_every == 0:
                logger.info(
                    "assessor enrichment progress",
                    extra={"done": i, "total": len(projects), "enriched": enriched, "failed": failed},
                )
        finish_batch_run(store, run_id, total=len(projects), enriched=enriched)
    except Exception as e:
        store.record_run_finish(run_id, status="failed", error_message=str(e))
        logger.exception("assessor enrichment failed")
        raise
    finally:
        if own_client:
            client.close()

    result = {"total": len(projects), "enriched": enriched, "failed": failed, "skipped": skipped}
    logger.info("assessor enrichment completed", extra=result)
    return result
