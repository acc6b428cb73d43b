"""Permit data models."""
from __future__ import annotations

import json
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


UNKNOWN_ADDRESS = "Unknown Address"
UNKNOWN_PERMIT_TYPE = "Unknown"


class PermitRecord(BaseModel):
    """One source's observation of a permit, before classification."""

    permit_number: str
    source: str
    permit_type: str = UNKNOWN_PERMIT_TYPE
    status: str = ""
    address: str = UNKNOWN_ADDRESS
    description: Optional[str] = None
    valuation: Optional[float] = None
    units: Optional[int] = None
    stories: Optional[int] = None
    sqft: Optional[float] = None
    zone_code: Optional[str] = None
    apn: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    permit_date: Optional[str] = None  # ISO-8601 date: YYYY-MM-DD
    issue_date: Optional[str] = None  # ISO-8601 date: YYYY-MM-DD
    contractor: Optional[str] = None
    owner_name: Optional[str] = None
    owner_address: Optional[str] = None
    raw: Dict[str, Any] = Field(default_factory=dict)

    def raw_json(self) -> str:
        return json.dumps(self.raw or {}, ensure_ascii=True, sort_keys=True, default=str)


class PipelinePosition(BaseModel):
    stage: str
    substage: Optional[str] = None
    financing_type: str

    model_config = {"frozen": True}


class ClassifiedPermit(BaseModel):
    """A permit record paired with the pipeline position read from its status."""

    record: PermitRecord
    position: PipelinePosition

    @property
    def permit_number(self) -> str:
        return self.record.permit_number

    def to_project_fields(self) -> Dict[str, Any]:
        r = self.record
        return {
            "permit_number": r.permit_number,
            "permit_type": r.permit_type,
            "status": r.status,
            "pipeline_stage": self.position.stage,
            "pipeline_substage": self.position.substage,
            "financing_type": self.position.financing_type,
            "address": r.address,
            "description": r.description,
            "valuation": r.valuation,
            "units": r.units,
            "stories": r.stories,
            "sqft": r.sqft,
            "zone_code": r.zone_code,
            "apn": r.apn,
            "latitude": r.latitude,
            "longitude": r.longitude,
            "permit_date": r.permit_date,
            "issue_date": r.issue_date,
            "contractor": r.contractor,
            "owner_name": r.owner_name,
            "owner_address": r.owner_address,
            "raw_data": r.raw_json(),
        }
