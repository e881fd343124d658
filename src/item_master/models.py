"""
Data models for the item master pipeline.
Covers the raw warehouse record, the canonical unified item published to SQS,
the audit log row, the inbound request and the outbound processing response.
"""

import json
import re
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

VALIDATION_STATUS_VALID = "valid"
VALIDATION_STATUS_INVALID = "invalid"


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class RawSourceItem(BaseModel):
    """
    Warehouse record for one SKU, exactly as projected by the warehouse query.

    Accepts the upper-case warehouse column names (``PRODUCT_TITLE``) as well as
    the field names. Null text columns become empty strings and null numeric
    columns become zero, so the mapper only ever checks for blank values.
    Numeric warehouse values in text columns (a NUMBER barcode) are read as
    strings.
    """
    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=str.upper,
        coerce_numbers_to_str=True,
        extra="ignore",
    )

    brand: str = ""
    region: str = ""
    sku: str = ""
    status: str = ""
    barcode: str = ""
    secondary_barcode: str = ""
    third_barcode: str = ""
    product_title: str = ""
    color: str = ""
    size: str = ""
    weight: float = 0.0
    volume: float = 0.0
    height: float = 0.0
    width: float = 0.0
    length: float = 0.0
    product_type: str = ""
    category: str = ""
    gender: str = ""
    fabric_content: str = ""
    fabric_composition: str = ""
    country_of_origin: str = ""
    hts: str = ""
    china_hts: str = ""
    velocity_code: str = ""
    fast_mover: str = ""
    description: str = ""
    product_image_url: str = ""
    product_image_url_pos_1: str = ""
    product_image_url_pos_2: str = ""
    product_image_url_pos_3: str = ""
    landed_cost: float = 0.0
    cost: float = 0.0
    price: float = 0.0
    latest_po_number: str = ""
    latest_po_status: str = ""
    latest_po_created_date: Optional[datetime] = None
    latest_po_expected_date: Optional[datetime] = None
    wh_1_name: str = ""
    wh_1_available_qty: float = 0.0
    wh_2_name: str = ""
    wh_2_available_qty: float = 0.0
    wh_3_name: str = ""
    wh_3_available_qty: float = 0.0
    created_at_shopify: Optional[datetime] = None
    created_at_snowflake: Optional[datetime] = None
    updated_at_snowflake: Optional[datetime] = None
    present_in_xb_flag: str = ""
    inventory_sync_flag: str = ""

    @model_validator(mode="before")
    @classmethod
    def drop_nulls(cls, data: Any) -> Any:
        """Let defaults stand in for NULL warehouse columns."""
        if isinstance(data, dict):
            return {key: value for key, value in data.items() if value is not None}
        return data

    @field_validator(
        "latest_po_created_date",
        "latest_po_expected_date",
        "created_at_shopify",
        "created_at_snowflake",
        "updated_at_snowflake",
    )
    @classmethod
    def normalize_timezone(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value)

    @classmethod
    def column_names(cls) -> list[str]:
        """Warehouse columns in projection order."""
        return [name.upper() for name in cls.model_fields]

    def to_snapshot(self) -> str:
        """Serialize for the audit log."""
        return self.model_dump_json(by_alias=False)


class PriceInfo(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: str = Field(..., alias="Type")
    currency: str = Field("USD", alias="Currency")
    value: float = Field(..., alias="Value")


class CostInfo(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: str = Field(..., alias="Type")
    currency: str = Field("USD", alias="Currency")
    value: float = Field(..., alias="Value")


class CategoryInfo(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    path: str = Field(..., alias="Path")
    source: str = Field(..., alias="Source")


class AttributeInfo(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(..., alias="Id")
    value: str = Field(..., alias="Value")


class LinkInfo(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    url: str = Field(..., alias="Url")
    source: str = Field(..., alias="Source")


class ImageInfo(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    url: str = Field(..., alias="Url")
    size_type: str = Field(..., alias="SizeType")


class DateInfo(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    created_at: Optional[str] = Field(None, alias="CreatedAt")
    last_updated_at: Optional[str] = Field(None, alias="LastUpdatedAt")
    system: str = Field(..., alias="System")


class UnifiedItem(BaseModel):
    """
    Canonical item published downstream.

    Serialized with PascalCase keys. List fields always serialize as arrays,
    never null.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    sku: str = Field(..., alias="Sku", min_length=1)
    name: str = Field(..., alias="Name", min_length=1)
    gs1_barcode: Optional[str] = Field(None, alias="Gs1Barcode")
    alternate_barcodes: list[str] = Field(default_factory=list, alias="AlternateBarcodes")
    description: Optional[str] = Field(None, alias="Description")
    hts_tariff_code: Optional[str] = Field(None, alias="HtsTariffCode")
    hs_commodity_code: Optional[str] = Field(None, alias="HsCommodityCode")
    china_hts_code: Optional[str] = Field(None, alias="ChinaHtsCode")
    country_of_origin_code: str = Field(..., alias="CountryOfOriginCode", min_length=1)
    prices: list[PriceInfo] = Field(default_factory=list, alias="Prices")
    costs: list[CostInfo] = Field(default_factory=list, alias="Costs")
    categories: list[CategoryInfo] = Field(default_factory=list, alias="Categories")
    attributes: list[AttributeInfo] = Field(default_factory=list, alias="Attributes")
    links: list[LinkInfo] = Field(default_factory=list, alias="Links")
    images: list[ImageInfo] = Field(default_factory=list, alias="Images")
    dates: list[DateInfo] = Field(default_factory=list, alias="Dates")

    def to_message_body(self) -> str:
        """Convert to the SQS message body."""
        return self.model_dump_json(by_alias=True)


class AuditRecord(BaseModel):
    """One row of the item master source log."""
    model_config = ConfigDict(frozen=True)

    sku: str
    source_model: str
    validation_status: str
    common_model: Optional[str] = None
    errors: Optional[str] = None
    delivered_to_queue: bool = False
    created_at: datetime
    trace_id: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return self.validation_status == VALIDATION_STATUS_VALID


_SKU_SPLIT = re.compile(r"[,\n]")


class ProcessSkusRequest(BaseModel):
    """
    Inbound request: explicit SKU list, a delimited string, or both.

    ``skusString`` may hold a JSON array or a comma-separated list.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    skus: list[str] = Field(default_factory=list)
    skus_string: Optional[str] = Field(None, alias="skusString")

    @field_validator("skus", mode="before")
    @classmethod
    def coerce_skus(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [part for part in _SKU_SPLIT.split(value)]
        if isinstance(value, (list, tuple, set)):
            return [str(v) for v in value if v is not None]
        return value

    @field_validator("skus_string", mode="before")
    @classmethod
    def coerce_skus_string(cls, value: Any) -> Any:
        if isinstance(value, list):
            return json.dumps(value)
        return value

    def get_all_skus(self) -> list[str]:
        """
        Merge ``skus`` and ``skus_string``; trims, drops blanks and dedupes
        case-insensitively keeping the first spelling seen.
        """
        candidates = list(self.skus) + self._parse_skus_string()
        seen: set[str] = set()
        merged: list[str] = []
        for candidate in candidates:
            sku = candidate.strip()
            if not sku or sku.upper() in seen:
                continue
            seen.add(sku.upper())
            merged.append(sku)
        return merged

    def _parse_skus_string(self) -> list[str]:
        if not self.skus_string or not self.skus_string.strip():
            return []
        text = self.skus_string.strip()
        if text.startswith("["):
            try:
                parsed = json.loads(text)
            except json.JSONDecodeError:
                parsed = None
            if isinstance(parsed, list):
                return [str(v) for v in parsed if v is not None]
            text = text.strip("[]")
        return [part.strip().strip('"').strip("'") for part in _SKU_SPLIT.split(text)]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SkippedItemDetail(_CamelModel):
    sku: str
    reason: str
    validation_failure: str
    all_validation_errors: list[str] = Field(default_factory=list)


class PublishedItemDetail(_CamelModel):
    sku: str
    warnings: list[str] = Field(default_factory=list)


class ProcessingResponse(_CamelModel):
    """Aggregate result of one invocation, returned to the caller."""
    success: bool = True
    items_processed: int = 0
    items_published: int = 0
    failed: int = 0
    skus_not_found: list[str] = Field(default_factory=list)
    skipped_items: list[SkippedItemDetail] = Field(default_factory=list)
    successful_skus: list[str] = Field(default_factory=list)
    published_items: list[PublishedItemDetail] = Field(default_factory=list)
    failed_to_publish_skus: list[str] = Field(default_factory=list)
    publish_error: Optional[str] = None

    def to_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)
