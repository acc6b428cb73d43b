"""Pipeline API routes: ingestion, duplicate review, lead scoring."""
try:
    from fastapi import APIRouter, HTTPException
    FASTAPI_AVAILABLE = True
except Exception:
    APIRouter = None
    HTTPException = None
    FASTAPI_AVAILABLE = False

import logging
from typing import Any, Dict, Optional

from pydantic import BaseModel

from permit_leads.config import get_db_path
from permit_leads.dedup import find_duplicate_candidates
from permit_leads.ingest import IngestError, ingest, run_full_ingestion
from permit_leads.merge import DeveloperNotFoundError, MergeError, merge_developers
from permit_leads.scoring import recompute_all_scores
from permit_leads.store import PipelineStore


logger = logging.getLogger("pl.api")

router = APIRouter(tags=["pipeline"]) if FASTAPI_AVAILABLE else None


class IngestRequest(BaseModel):
    source: str
    from_date: Optional[str] = None


class FullIngestRequest(BaseModel):
    from_date: Optional[str] = None
    enrich: bool = False


class MergeRequest(BaseModel):
    primary_id: Optional[int] = None
    secondary_id: Optional[int] = None


def _open_store() -> PipelineStore:
    return PipelineStore(get_db_path())


if router:

    @router.get("/health")
    def health() -> Dict[str, Any]:
        return {"status": "ok"}

    @router.post("/ingest")
    def ingest_source(request: IngestRequest) -> Dict[str, Any]:
        """Run one source's ingestion and return its counts."""
        store = _open_store()
        try:
            return ingest(store, request.source, from_date=request.from_date)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except IngestError as e:
            logger.warning("ingest request failed", extra={"source": request.source, "error": str(e)})
            raise HTTPException(status_code=502, detail=str(e))
        finally:
            store.close()

    @router.post("/ingest/full")
    def ingest_full(request: Optional[FullIngestRequest] = None) -> Dict[str, Any]:
        req = request or FullIngestRequest()
        store = _open_store()
        try:
            return run_full_ingestion(store, from_date=req.from_date, enrich=req.enrich)
        finally:
            store.close()

    @router.get("/dedup")
    def list_duplicates() -> Dict[str, Any]:
        store = _open_store()
        try:
            candidates = find_duplicate_candidates(store)
        finally:
            store.close()
        return {
            "count": len(candidates),
            "candidates": [c.to_dict() for c in candidates],
        }

    @router.post("/dedup")
    def merge_duplicates(request: MergeRequest) -> Dict[str, Any]:
        """Merge ``secondary_id`` into ``primary_id``; the operator picks the survivor."""
        if request.primary_id is None or request.secondary_id is None:
            raise HTTPException(status_code=400, detail="primary_id and secondary_id are required")
        store = _open_store()
        try:
            result = merge_developers(store, request.primary_id, request.secondary_id)
        except DeveloperNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except MergeError as e:
            raise HTTPException(status_code=400, detail=str(e))
        finally:
            store.close()
        return {"success": True, "merge": result.to_dict()}

    @router.post("/leads/compute")
    def compute_leads() -> Dict[str, Any]:
        store = _open_store()
        try:
            return recompute_all_scores(store)
        finally:
            store.close()
