"""Secretary of State business-entity lookups for non-individual developers.

Only registry columns (``sos_*``) are written; contact fields belong to the
contact-enrichment collaborator.
"""
from __future__ import annotations

import logging
import re
from typing import Any, Dict, Optional

import httpx
from bs4 import BeautifulSoup, NavigableString

from permit_leads.enrichment.base import PacedClient, finish_batch_run
from permit_leads.store import PipelineStore


logger = logging.getLogger("pl.enrichment.sos")

SOS_SEARCH_URL = "https://bizfileonline.sos.ca.gov/search/business"
RUN_SOURCE = "sos"

_LABELS = {
    "entity_number": ("Entity Number", "Entity No", "Entity ID"),
    "status": ("Status", "Entity Status"),
    "registration_date": ("Registration Date", "Formation Date", "Initial Filing Date"),
    "agent_name": ("Agent for Service of Process", "Agent Name"),
    "agent_address": ("Agent Address",),
}

_ENTITY_ID_RE = re.compile(r"EntityId=([A-Z0-9]+)", re.IGNORECASE)

SOS_COLUMNS = {
    "entity_number": "sos_entity_number",
    "status": "sos_status",
    "registration_date": "sos_registration_date",
    "agent_name": "sos_agent_name",
    "agent_address": "sos_agent_address",
}


class SosClient(PacedClient):
    def __init__(self, http: Optional[httpx.Client] = None, *, search_url: str = SOS_SEARCH_URL, **kwargs):
        super().__init__(http, **kwargs)
        self.search_url = search_url

    def search(self, name: str) -> Optional[str]:
        """Result page HTML for a keyword search, or None on failure."""

        query = " ".join((name or "").split())
        if not query:
            return None
        self._pace()
        try:
            resp = self.http.post(
                self.search_url,
                data={"SearchType": "CORP", "SearchCriteria": query, "SearchSubType": "Keyword"},
            )
        except httpx.HTTPError as e:
            logger.warning("sos search failed", extra={"query": query, "error": str(e)})
            return None
        if resp.status_code >= 400:
            logger.warning("sos search failed", extra={"query": query, "status": resp.status_code})
            return None
        return resp.text


def _text(node) -> str:
    return " ".join(node.get_text(" ", strip=True).split())


def _labelled_value(soup: BeautifulSoup, labels) -> Optional[str]:
    for label in labels:
        pattern = re.compile(rf"^\s*{re.escape(label)}\s*:?\s*$", re.IGNORECASE)
        node = soup.find(string=pattern)
        if node is None:
            continue
        sibling = node.parent.find_next_sibling(True) if node.parent is not None else None
        if sibling is not None and _text(sibling):
            return _text(sibling)
        for following in node.next_elements:
            if isinstance(following, NavigableString) and following.strip():
                return " ".join(following.split())
    return None


def parse_sos_results(html: Optional[str]) -> Optional[Dict[str, Any]]:
    """Pull the first entity's registry details from a search result page.

    Returns None unless at least an entity number or a status was found.
    """

    if not html:
        return None
    soup = BeautifulSoup(html, "html.parser")
    info: Dict[str, Any] = {key: _labelled_value(soup, labels) for key, labels in _LABELS.items()}

    if not info["entity_number"]:
        tagged = soup.find(attrs={"data-entity": True})
        if tagged is not None:
            info["entity_number"] = str(tagged["data-entity"]).strip() or None
    if not info["entity_number"]:
        for a in soup.find_all("a", href=True):
            m = _ENTITY_ID_RE.search(a["href"])
            if m:
                info["entity_number"] = m.group(1)
                break

    if not info["entity_number"] and not info["status"]:
        return None
    return info


def enrich_developer_from_sos(store: PipelineStore, developer_id: int, client: SosClient) -> bool:
    developer = store.get_developer(developer_id)
    if developer is None:
        return False
    info = parse_sos_results(client.search(developer["name"]))
    if info is None:
        return False
    updates = {column: info[key] for key, column in SOS_COLUMNS.items() if info.get(key)}
    if not updates:
        return False
    with store.transaction():
        store.update_developer(int(developer_id), updates)
    return True


def run_sos_enrichment(
    store: PipelineStore,
    client: Optional[SosClient] = None,
    *,
    progress_every: int = 50,
) -> Dict[str, int]:
    """Look up every developer not yet matched in the registry; individuals are skipped."""

    own_client = client is None
    client = client or SosClient()
    run_id = store.record_run_start(RUN_SOURCE)
    try:
        developers = store.list_developers_for_sos()
        enriched = failed = skipped = 0
        for i, developer in enumerate(developers, start=1):
            # People are not registered entities.
            if developer.get("entity_type") in (None, "Individual"):
                skipped += 1
                continue
            if enrich_developer_from_sos(store, int(developer["id"]), client):
                enriched += 1
            else:
                failed += 1
            if i % progress_every == 0:
                logger.info(
                    "sos enrichment progress",
                    extra={"done": i, "total": len(developers), "enriched": enriched, "failed": failed},
                )
        finish_batch_run(store, run_id, total=len(developers), enriched=enriched)
    except Exception as e:
        store.record_run_finish(run_id, status="failed", error_message=str(e))
        logger.exception("sos enrichment failed")
        raise
    finally:
        if own_client:
            client.close()

    result = {"total": len(developers), "enriched": enriched, "failed": failed, "skipped": skipped}
    logger.info("sos enrichment completed", extra=result)
    return result
