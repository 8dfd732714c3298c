"""Pydantic shapes for the ERP sync feed and the JSON request bodies.

ERP records keep the ERP's own column names (``ponum``, ``des``, ``user_5``...) as
aliases so the sync agent can push rows straight out of the ERP tables.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Annotated

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from app.models import PurchaseOrderStatus, StagingStatus


def _quantity(value):
    if value is None or value == '':
        return Decimal('0')
    return value


def _date_only(value):
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, str):
        return value.strip().replace('T', ' ').split(' ', 1)[0]
    return value


def _blank_to_none(value):
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _none_to_list(value):
    return value or []


Quantity = Annotated[Decimal, BeforeValidator(_quantity)]
ErpDate = Annotated[date | None, BeforeValidator(_date_only)]
ErpKey = Annotated[int | None, BeforeValidator(_blank_to_none)]
ErpText = Annotated[str | None, BeforeValidator(_blank_to_none)]


class ErpRecord(BaseModel):
    model_config = ConfigDict(extra='ignore', coerce_numbers_to_str=True, populate_by_name=True)


class ErpDistribution(ErpRecord):
    itemid: ErpKey = None
    jobnum: str | None = None
    job_name: str | None = None
    phasenum: str | None = None
    phase_name: str | None = None
    catnum: str | None = None
    cat_name: str | None = None
    outstanding: Quantity = Decimal('0')
    received: Quantity = Decimal('0')
    unposted: Quantity = Decimal('0')


class ErpPurchaseOrderItem(ErpRecord):
    itemid: int
    order: int | None = None
    itemnum: str | None = None
    des: str | None = None
    venitemnum: str | None = None
    outstanding: Quantity = Decimal('0')
    received: Quantity = Decimal('0')
    unposted: Quantity = Decimal('0')
    distributions: Annotated[list[ErpDistribution], BeforeValidator(_none_to_list)] = Field(default_factory=list)


class ErpPurchaseOrder(ErpRecord):
    ponum: int
    vennum: str | None = None
    vendor_name: str | None = None
    podate: ErpDate = None
    blurb: str | None = None
    user_5: ErpText = None
    attachid: ErpKey = None
    status: PurchaseOrderStatus = PurchaseOrderStatus.OPEN
    items: Annotated[list[ErpPurchaseOrderItem], BeforeValidator(_none_to_list)] = Field(default_factory=list)

    @field_validator('status', mode='before')
    @classmethod
    def _normalize_status(cls, value):
        if value is None or value == '':
            return PurchaseOrderStatus.OPEN
        if isinstance(value, str):
            return value.strip().lower()
        return value


class ErpReceivedItem(ErpRecord):
    serialnum: int
    ponum: ErpKey = None
    itemnum: str | None = None
    jobnum: str | None = None
    received_date: ErpDate = Field(default=None, alias='date')
    quantity: Quantity = Decimal('0')


class ErpLocation(ErpRecord):
    locationnum: int
    name: str = Field(min_length=1)
    location_type: int | None = Field(default=None, alias='type')


class ErpJob(ErpRecord):
    jobnum: str = Field(min_length=1)
    name: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip: str | None = None
    status: str | None = None
    attachid: ErpKey = None


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PurchaseOrderBatch(CamelModel):
    purchase_orders: list[dict]


class ReceivedItemBatch(CamelModel):
    received_items: list[dict]


class LocationBatch(CamelModel):
    locations: list[dict]


class JobBatch(CamelModel):
    jobs: list[dict]


class StageLineIn(CamelModel):
    item_id: int
    quantity: Decimal


class StageRequest(CamelModel):
    po_id: int | None = None
    items: list[StageLineIn] = Field(default_factory=list)
    spot_id: int | None = None
    custom_location: str | None = None
    pack_number: str | None = None
    notes: str | None = None
    request_id: str | None = None


class StatusUpdateRequest(CamelModel):
    status: StagingStatus


class DeliveryRequest(CamelModel):
    staging_record_id: int
    signer_name: str = ''
    signature_data: str = ''
    notes: str | None = None
