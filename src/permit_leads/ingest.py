"""Source ingestion: fetch, normalize, filter, classify, reconcile.

Every page is reconciled before the next one is fetched, so an upstream
failure mid-run leaves the earlier pages committed and a ``failed`` run row
behind.
"""
from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Sequence

from permit_leads.config import IngestConfig, resolve_config
from permit_leads.enrichment.assessor import AssessorClient, run_assessor_enrichment
from permit_leads.enrichment.sos import SosClient, run_sos_enrichment
from permit_leads.linker import auto_link_projects, create_developers_from_unlinked
from permit_leads.permits.models import ClassifiedPermit
from permit_leads.permits.socrata import SocrataClient, SourceFetchError, build_where
from permit_leads.permits.sources import DEFAULT_SOURCE_ORDER, SourceSpec, get_source
from permit_leads.permits.stages import classify_permit
from permit_leads.reconcile import reconcile_permits
from permit_leads.run_result import IngestRunResult
from permit_leads.scoring import recompute_all_scores
from permit_leads.store import PipelineStore


logger = logging.getLogger("pl.ingest")


class IngestError(RuntimeError):
    pass


def _is_cancelled(cancel: Optional[threading.Event]) -> bool:
    return cancel is not None and cancel.is_set()


def _client_for(config: IngestConfig) -> SocrataClient:
    return SocrataClient(
        timeout=config.request_timeout_s,
        delay_s=config.request_delay_s,
        retries=config.retries,
    )


def _prepare_page(
    spec: SourceSpec,
    rows: Sequence[Dict[str, Any]],
    config: IngestConfig,
    result: IngestRunResult,
    cancel: Optional[threading.Event],
) -> List[ClassifiedPermit]:
    batch: List[ClassifiedPermit] = []
    for raw in rows:
        if _is_cancelled(cancel):
            result.cancelled = True
            break
        record = spec.parse(raw)
        if record is None:
            result.dropped += 1
            continue
        if not config.accepts(record):
            result.filtered += 1
            continue
        batch.append(classify_permit(record, pre_issuance=spec.pre_issuance))
    return batch


def _record_failure(store: PipelineStore, result: IngestRunResult, message: str) -> None:
    result.errors.append(message)
    store.record_run_finish(
        result.run_id,
        status="failed",
        records_found=result.found,
        records_new=result.created,
        records_updated=result.updated,
        error_message=message,
    )


def ingest(
    store: PipelineStore,
    source: str,
    *,
    from_date: Optional[str] = None,
    config: Optional[IngestConfig] = None,
    client: Optional[SocrataClient] = None,
    cancel: Optional[threading.Event] = None,
) -> Dict[str, Any]:
    """Run one source end to end and return its counts.

    Raises ``ValueError`` for an unknown source or bad ``from_date`` and
    ``IngestError`` when the upstream fetch fails.
    """

    try:
        spec = get_source(source)
    except KeyError as e:
        raise ValueError(str(e.args[0])) from e
    cfg = resolve_config(config)
    if spec.extra_permit_types:
        cfg = cfg.with_overrides(permit_types=spec.permit_types_for(cfg.permit_types))
    where = build_where(
        permit_types=cfg.permit_types,
        min_valuation=cfg.min_valuation,
        valuation_expr=spec.valuation_expr,
        date_field=spec.date_field,
        from_date=from_date,
    )

    own_client = client is None
    client = client or _client_for(cfg)
    result = IngestRunResult(source=spec.key)
    result.run_id = store.record_run_start(spec.key)
    logger.info("ingest started", extra={"source": spec.key, "from_date": from_date, "run_id": result.run_id})

    try:
        pages = client.iter_pages(
            spec.url,
            where=where,
            order=f"{spec.order_field} DESC",
            page_size=cfg.page_size,
            max_records=cfg.max_records,
        )
        for rows in pages:
            if _is_cancelled(cancel):
                result.cancelled = True
                break
            result.found += len(rows)
            batch = _prepare_page(spec, rows, cfg, result, cancel)
            counts = reconcile_permits(
                store,
                batch,
                source=spec.key,
                status_authoritative=spec.status_authoritative,
            )
            result.created += counts.created
            result.updated += counts.updated
            result.unchanged += counts.unchanged
            if result.cancelled:
                break
    except SourceFetchError as e:
        _record_failure(store, result, str(e))
        logger.error("ingest failed", extra={"source": spec.key, "run_id": result.run_id, "error": str(e)})
        raise IngestError(f"{spec.key}: {e}") from e
    except BaseException as e:
        _record_failure(store, result, f"{type(e).__name__}: {e}")
        logger.exception("ingest aborted", extra={"source": spec.key, "run_id": result.run_id})
        raise
    finally:
        if own_client:
            client.close()

    store.record_run_finish(
        result.run_id,
        status=result.status,
        records_found=result.found,
        records_new=result.created,
        records_updated=result.updated,
    )
    logger.info(
        "ingest finished",
        extra={
            "source": spec.key,
            "run_id": result.run_id,
            "status": result.status,
            "found": result.found,
            "records_new": result.created,
            "records_updated": result.updated,
            "dropped": result.dropped,
            "filtered": result.filtered,
        },
    )
    return result.to_dict()


def run_full_ingestion(
    store: PipelineStore,
    *,
    from_date: Optional[str] = None,
    config: Optional[IngestConfig] = None,
    client: Optional[SocrataClient] = None,
    sources: Optional[Sequence[str]] = None,
    cancel: Optional[threading.Event] = None,
    enrich: bool = False,
    assessor: Optional[AssessorClient] = None,
    sos: Optional[SosClient] = None,
    after_source: Optional[Callable[[str], None]] = None,
) -> Dict[str, Any]:
    """All sources in order, then linking, optional enrichment and scoring.

    A failing source is reported in ``sources`` and the run moves on.
    ``after_source`` is called with each source key once that source is done.
    """

    cfg = resolve_config(config)
    own_client = client is None
    client = client or _client_for(cfg)

    source_results: List[Dict[str, Any]] = []
    try:
        for key in sources or DEFAULT_SOURCE_ORDER:
            if _is_cancelled(cancel):
                break
            try:
                res = ingest(store, key, from_date=from_date, config=cfg, client=client, cancel=cancel)
                source_results.append({"ok": True, **res})
            except Exception as e:
                logger.exception("source failed", extra={"source": key})
                source_results.append({"ok": False, "source": key, "error": str(e)})
            if after_source is not None:
                after_source(key)
    finally:
        if own_client:
            client.close()

    linking = {
        "auto_link": auto_link_projects(store),
        "developers": create_developers_from_unlinked(store),
    }

    enrichment: Optional[Dict[str, Any]] = None
    if enrich and not _is_cancelled(cancel):
        enrichment = {
            "assessor": run_assessor_enrichment(store, assessor),
            "sos": run_sos_enrichment(store, sos),
        }

    scoring = recompute_all_scores(store)
    return {
        "sources": source_results,
        "linking": linking,
        "enrichment": enrichment,
        "scoring": scoring,
    }
