"""Per-source record normalizers.

Each upstream dataset gets its own pure ``parse_*`` function producing a
``PermitRecord`` (or None when the permit number is missing). The
``SOURCES`` registry pairs each parser with the fetch details the ingestion
runner needs.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple

from permit_leads.permits.fields import (
    build_address,
    clean_str,
    join_name,
    parse_date,
    parse_float,
    parse_int,
    parse_money,
)
from permit_leads.permits.models import UNKNOWN_PERMIT_TYPE, PermitRecord


LADBS_ISSUED = "ladbs_issued"
LADBS_SUBMITTED = "ladbs_submitted"
LADBS_LEGACY = "ladbs_legacy"


def _coords(raw: Mapping[str, Any]) -> tuple[Optional[float], Optional[float]]:
    lat = parse_float(raw.get("lat"))
    lon = parse_float(raw.get("lon"))
    if lat is None or lon is None:
        geo = raw.get("geolocation")
        if isinstance(geo, dict):
            coords = geo.get("coordinates")
            if isinstance(coords, (list, tuple)) and len(coords) >= 2:
                # GeoJSON order is [lon, lat].
                lon = parse_float(coords[0])
                lat = parse_float(coords[1])
    if lat is None or lon is None:
        return None, None
    return lat, lon


def parse_issued(raw: Mapping[str, Any]) -> Optional[PermitRecord]:
    """Building Permits Issued (2020-present): coordinates, no names."""

    permit_number = clean_str(raw.get("permit_nbr"))
    if not permit_number:
        return None
    lat, lon = _coords(raw)
    return PermitRecord(
        permit_number=permit_number,
        source=LADBS_ISSUED,
        permit_type=clean_str(raw.get("permit_type")) or UNKNOWN_PERMIT_TYPE,
        status=clean_str(raw.get("status_desc")) or "",
        address=build_address([raw.get("primary_address")], raw.get("zip_code")),
        description=clean_str(raw.get("work_desc")),
        valuation=parse_money(raw.get("valuation")),
        units=parse_int(raw.get("units")),
        stories=parse_int(raw.get("stories")),
        sqft=parse_float(raw.get("sqft")),
        zone_code=clean_str(raw.get("zone")),
        apn=clean_str(raw.get("apn")),
        latitude=lat,
        longitude=lon,
        permit_date=parse_date(raw.get("status_date")) or parse_date(raw.get("submitted_date")),
        issue_date=parse_date(raw.get("issue_date")),
        raw=dict(raw),
    )


def parse_submitted(raw: Mapping[str, Any]) -> Optional[PermitRecord]:
    """Submitted Permits: pre-issuance applications, coordinates, no names."""

    permit_number = clean_str(raw.get("permit_nbr"))
    if not permit_number:
        return None
    lat, lon = _coords(raw)
    return PermitRecord(
        permit_number=permit_number,
        source=LADBS_SUBMITTED,
        permit_type=clean_str(raw.get("permit_type")) or UNKNOWN_PERMIT_TYPE,
        status=clean_str(raw.get("status_desc")) or "Submitted",
        address=build_address([raw.get("primary_address")], raw.get("zip_code")),
        description=clean_str(raw.get("work_desc")),
        valuation=parse_money(raw.get("valuation")),
        zone_code=clean_str(raw.get("zone")),
        apn=clean_str(raw.get("apn")),
        latitude=lat,
        longitude=lon,
        permit_date=parse_date(raw.get("submitted_date")) or parse_date(raw.get("status_date")),
        issue_date=None,
        raw=dict(raw),
    )


def _legacy_owner_name(raw: Mapping[str, Any]) -> Optional[str]:
    business = clean_str(raw.get("applicant_business_name"))
    if business:
        return business
    applicant = join_name(raw.get("applicant_first_name"), raw.get("applicant_last_name"))
    if applicant:
        return applicant
    return join_name(raw.get("principal_first_name"), raw.get("principal_last_name"))


def parse_legacy(raw: Mapping[str, Any]) -> Optional[PermitRecord]:
    """Older LADBS permits dataset: contractor and applicant names, no status."""

    permit_number = clean_str(raw.get("pcis_permit"))
    if not permit_number:
        return None

    issue_date = parse_date(raw.get("issue_date"))

    owner_address = clean_str(raw.get("contractor_address"))
    city = clean_str(raw.get("contractor_city"))
    if owner_address and city:
        owner_address = f"{owner_address}, {city}"

    return PermitRecord(
        permit_number=permit_number,
        source=LADBS_LEGACY,
        permit_type=clean_str(raw.get("permit_type")) or UNKNOWN_PERMIT_TYPE,
        status="Issued" if issue_date else "Unknown",
        address=build_address(
            [raw.get("address_start"), raw.get("street_name"), raw.get("street_suffix")],
            raw.get("zip_code"),
        ),
        description=clean_str(raw.get("work_description")),
        valuation=parse_money(raw.get("valuation")),
        zone_code=clean_str(raw.get("zone")),
        permit_date=issue_date,
        issue_date=issue_date,
        contractor=clean_str(raw.get("contractors_business_name")),
        owner_name=_legacy_owner_name(raw),
        owner_address=owner_address,
        raw=dict(raw),
    )


@dataclass(frozen=True)
class SourceSpec:
    key: str
    url: str
    parse: Callable[[Mapping[str, Any]], Optional[PermitRecord]]
    order_field: str
    date_field: str
    valuation_expr: str = "valuation::number"
    pre_issuance: bool = False
    # False when the dataset has no real status column and one is synthesized.
    status_authoritative: bool = True
    # Types this dataset is also fetched for, on top of the configured ones.
    extra_permit_types: Tuple[str, ...] = ()

    def permit_types_for(self, configured: Sequence[str]) -> Tuple[str, ...]:
        """Configured types plus this source's extras; an empty filter stays empty."""
        base = tuple(configured)
        if not base:
            return base
        return base + tuple(t for t in self.extra_permit_types if t not in base)


SOURCES: Dict[str, SourceSpec] = {
    LADBS_ISSUED: SourceSpec(
        key=LADBS_ISSUED,
        url="https://data.lacity.org/resource/pi9x-tg5x.json",
        parse=parse_issued,
        order_field="status_date",
        date_field="status_date",
    ),
    LADBS_SUBMITTED: SourceSpec(
        key=LADBS_SUBMITTED,
        url="https://data.lacity.org/resource/gwh9-jnip.json",
        parse=parse_submitted,
        order_field="status_date",
        date_field="status_date",
        pre_issuance=True,
    ),
    LADBS_LEGACY: SourceSpec(
        key=LADBS_LEGACY,
        url="https://data.lacity.org/resource/hbkd-qubn.json",
        parse=parse_legacy,
        order_field="issue_date",
        date_field="issue_date",
        valuation_expr="valuation",
        status_authoritative=False,
        extra_permit_types=("Bldg-Addition",),
    ),
}

# Issued first, then the pre-issuance pipeline, then the name-bearing dataset.
DEFAULT_SOURCE_ORDER = (LADBS_ISSUED, LADBS_SUBMITTED, LADBS_LEGACY)


def get_source(key: str) -> SourceSpec:
    spec = SOURCES.get((key or "").strip().lower())
    if spec is None:
        raise KeyError(f"Unknown permit source: {key}")
    return spec


def list_sources() -> list[str]:
    return list(DEFAULT_SOURCE_ORDER)
