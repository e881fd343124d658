"""
Mapper module for converting raw warehouse records to the unified item model.
Applies mandatory-field and conditional business rules, collecting every
violation for an item before reporting it.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Optional

from item_master.exceptions import ErrorContext, ValidationError
from item_master.logging_config import get_trace_id, log_execution_time
from item_master.models import (
    AttributeInfo,
    CategoryInfo,
    CostInfo,
    DateInfo,
    ImageInfo,
    LinkInfo,
    PriceInfo,
    RawSourceItem,
    UnifiedItem,
)

logger = logging.getLogger(__name__)

UNKNOWN_SKU = "UNKNOWN"
DEFAULT_BARCODE_CUTOVER = datetime(2024, 1, 1, tzinfo=timezone.utc)
DEFAULT_APPAREL_KEYWORDS = ("apparel", "clothing", "textile", "garment")

CURRENCY = "USD"
LINK_SOURCE = "Shopify US"
IMAGE_SIZE_TYPE = "original_size"


@dataclass(frozen=True)
class MappingOutcome:
    """Result of mapping one raw record: a unified item, or the reasons there is none."""
    sku: str
    item: Optional[UnifiedItem] = None
    skipped_fields: tuple[str, ...] = ()
    errors: tuple[str, ...] = ()

    @classmethod
    def success(
        cls,
        item: UnifiedItem,
        sku: str,
        skipped_fields: Iterable[str] = (),
    ) -> "MappingOutcome":
        return cls(sku=sku, item=item, skipped_fields=tuple(skipped_fields))

    @classmethod
    def failure(cls, sku: str, errors: Iterable[str]) -> "MappingOutcome":
        return cls(sku=sku, errors=tuple(errors))

    @property
    def is_success(self) -> bool:
        return self.item is not None

    @property
    def failure_reason(self) -> Optional[str]:
        return self.errors[0] if self.errors else None

    @property
    def validation_error(self) -> Optional[ValidationError]:
        """The violations as a ValidationError, for structured logging; None on success."""
        if self.is_success:
            return None
        return ValidationError(
            message=f"Item {self.sku} failed {len(self.errors)} validation rules",
            sku=self.sku,
            errors=list(self.errors),
            context=ErrorContext(trace_id=get_trace_id() or None),
        )


@dataclass(frozen=True)
class MappingRules:
    """Business constants the mapper is configured with."""
    barcode_cutover: datetime = DEFAULT_BARCODE_CUTOVER
    apparel_keywords: tuple[str, ...] = DEFAULT_APPAREL_KEYWORDS

    def is_apparel(self, raw: RawSourceItem) -> bool:
        haystack = f"{raw.category} {raw.product_type}".lower()
        return any(keyword.lower() in haystack for keyword in self.apparel_keywords if keyword)

    def predates_cutover(self, created_at: Optional[datetime]) -> bool:
        if created_at is None:
            return True
        return created_at < self.barcode_cutover


@dataclass
class MappingBatchResult:
    """Outcomes of a batch mapping, in input order."""
    outcomes: list[MappingOutcome] = field(default_factory=list)

    @property
    def successful(self) -> list[MappingOutcome]:
        return [o for o in self.outcomes if o.is_success]

    @property
    def failed(self) -> list[MappingOutcome]:
        return [o for o in self.outcomes if not o.is_success]

    def to_dict(self) -> dict:
        return {
            "success_count": len(self.successful),
            "failure_count": len(self.failed),
            "total_count": len(self.outcomes),
            "failed_skus": [o.sku for o in self.failed],
        }


def _blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


def _format_timestamp(value: datetime) -> str:
    return value.isoformat(timespec="milliseconds")


class UnifiedItemMapper:
    """
    Maps a RawSourceItem into a UnifiedItem.

    Deterministic: the outcome depends only on the record and the rules, never
    on the current time.
    """

    def __init__(self, rules: Optional[MappingRules] = None):
        self.rules = rules or MappingRules()

    @log_execution_time(logger)
    def map_batch(self, raw_items: Iterable[RawSourceItem]) -> MappingBatchResult:
        result = MappingBatchResult()
        for raw in raw_items:
            result.outcomes.append(self.map(raw))

        logger.info(
            "Mapped batch of warehouse items",
            extra={"metrics": result.to_dict()},
        )
        return result

    def map(self, raw: RawSourceItem) -> MappingOutcome:
        errors = self.validate(raw)
        if errors:
            sku = raw.sku.strip() if not _blank(raw.sku) else UNKNOWN_SKU
            logger.debug(
                f"Item {sku} failed validation with {len(errors)} errors: {'; '.join(errors)}",
                extra={"sku": sku},
            )
            return MappingOutcome.failure(sku, errors)

        skipped: list[str] = []
        hts = self._normalize_hts(raw.hts)

        gs1_barcode, alternates = self._select_barcodes(raw)
        if gs1_barcode is None:
            skipped.append("Gs1Barcode")

        if _blank(raw.description):
            skipped.append("Description")
        if _blank(raw.china_hts):
            skipped.append("ChinaHtsCode")

        item = UnifiedItem(
            sku=raw.sku.strip(),
            name=raw.product_title.strip(),
            gs1_barcode=gs1_barcode,
            alternate_barcodes=alternates,
            description=None if _blank(raw.description) else raw.description,
            hts_tariff_code=hts or None,
            hs_commodity_code=hts[:6] if len(hts) >= 6 else None,
            china_hts_code=None if _blank(raw.china_hts) else raw.china_hts.strip(),
            country_of_origin_code=raw.country_of_origin.strip().upper(),
            prices=self._prices(raw, skipped),
            costs=self._costs(raw, skipped),
            categories=self._categories(raw, skipped),
            attributes=self._attributes(raw, skipped),
            links=self._links(raw, skipped),
            images=self._images(raw, skipped),
            dates=self._dates(raw, skipped),
        )

        if skipped:
            logger.debug(
                f"Item {item.sku} mapped with {len(skipped)} optional properties skipped: "
                f"{', '.join(skipped)}",
                extra={"sku": item.sku},
            )
        return MappingOutcome.success(item, item.sku, skipped)

    def validate(self, raw: RawSourceItem) -> list[str]:
        """Return every rule the record violates, in a stable order."""
        errors: list[str] = []

        if _blank(raw.sku):
            errors.append("Missing SKU")
        if _blank(raw.product_title):
            errors.append("Missing ProductTitle (Name)")

        country = raw.country_of_origin.strip()
        if not country:
            errors.append("Missing CountryOfOrigin")
        elif len(country) != 2:
            errors.append(f"Invalid CountryOfOrigin (must be 2 chars, got: '{country}')")

        if not _blank(raw.hts):
            hts = self._normalize_hts(raw.hts)
            if len(hts) != 10 or not hts.isdigit():
                errors.append(f"Invalid HTS code (must be 10 digits, got: '{raw.hts.strip()}')")

        has_tariff_code = not _blank(raw.hts) or not _blank(raw.china_hts)
        if has_tariff_code and raw.landed_cost <= 0:
            errors.append("Missing required LandedCost (required when HTS code is present)")

        if self.rules.is_apparel(raw):
            if _blank(raw.fabric_content):
                errors.append("Missing required FabricContent (required for apparel items)")
            if _blank(raw.fabric_composition):
                errors.append("Missing required FabricComposition (required for apparel items)")

        return errors

    def _normalize_hts(self, hts: str) -> str:
        return hts.strip().replace(".", "")

    def _select_barcodes(self, raw: RawSourceItem) -> tuple[Optional[str], list[str]]:
        primary = raw.barcode.strip()
        secondary = raw.secondary_barcode.strip()
        third = raw.third_barcode.strip()

        if self.rules.predates_cutover(raw.created_at_snowflake):
            gs1 = primary or secondary or None
        else:
            gs1 = primary or None

        alternates: list[str] = []
        for candidate in (primary, secondary, third):
            if candidate and candidate != gs1 and candidate not in alternates:
                alternates.append(candidate)
        return gs1, alternates

    def _prices(self, raw: RawSourceItem, skipped: list[str]) -> list[PriceInfo]:
        if raw.price > 0:
            return [PriceInfo(type="list", currency=CURRENCY, value=raw.price)]
        skipped.append("Price.list")
        return []

    def _costs(self, raw: RawSourceItem, skipped: list[str]) -> list[CostInfo]:
        if raw.cost <= 0 and raw.landed_cost <= 0:
            skipped.append("Costs")
            return []

        costs: list[CostInfo] = []
        if raw.cost > 0:
            costs.append(CostInfo(type="unit", currency=CURRENCY, value=raw.cost))
        else:
            skipped.append("Cost.unit")
        if raw.landed_cost > 0:
            costs.append(CostInfo(type="landed", currency=CURRENCY, value=raw.landed_cost))
        else:
            skipped.append("Cost.landed")
        return costs

    def _categories(self, raw: RawSourceItem, skipped: list[str]) -> list[CategoryInfo]:
        categories: list[CategoryInfo] = []
        for value, source in ((raw.category, "aka"), (raw.product_type, "brand")):
            if _blank(value):
                skipped.append(f"Category.{source}")
            else:
                categories.append(CategoryInfo(path=value.strip(), source=source))
        return categories

    def _attributes(self, raw: RawSourceItem, skipped: list[str]) -> list[AttributeInfo]:
        attributes: list[AttributeInfo] = []
        candidates = (
            ("size", raw.size),
            ("color", raw.color),
            ("brand_name", raw.brand),
            ("fabric_content", raw.fabric_content),
            ("fabric_composition", raw.fabric_composition),
            ("gender", raw.gender),
            ("velocity_code", raw.velocity_code),
            ("fast_mover", raw.fast_mover),
        )
        for attribute_id, value in candidates:
            if _blank(value):
                skipped.append(f"Attribute.{attribute_id}")
            else:
                attributes.append(AttributeInfo(id=attribute_id, value=value.strip()))

        if not _blank(raw.brand):
            attributes.append(AttributeInfo(id="brand_entity", value=raw.brand.strip()))

        sync_flag = "ON" if _blank(raw.inventory_sync_flag) else raw.inventory_sync_flag.strip()
        attributes.append(AttributeInfo(id="inventory_sync_enabled", value=sync_flag))
        return attributes

    def _links(self, raw: RawSourceItem, skipped: list[str]) -> list[LinkInfo]:
        if _blank(raw.product_image_url):
            skipped.append("Link.ProductImageUrl")
            return []
        return [LinkInfo(url=raw.product_image_url.strip(), source=LINK_SOURCE)]

    def _images(self, raw: RawSourceItem, skipped: list[str]) -> list[ImageInfo]:
        images: list[ImageInfo] = []
        positions = (
            raw.product_image_url_pos_1,
            raw.product_image_url_pos_2,
            raw.product_image_url_pos_3,
        )
        for index, url in enumerate(positions, start=1):
            if _blank(url):
                skipped.append(f"Image.Pos{index}")
            else:
                images.append(ImageInfo(url=url.strip(), size_type=IMAGE_SIZE_TYPE))
        return images

    def _dates(self, raw: RawSourceItem, skipped: list[str]) -> list[DateInfo]:
        dates: list[DateInfo] = []
        if raw.created_at_shopify is not None:
            dates.append(
                DateInfo(
                    created_at=_format_timestamp(raw.created_at_shopify),
                    system="shopify",
                )
            )
        else:
            skipped.append("Date.Shopify")

        if raw.created_at_snowflake is not None:
            dates.append(
                DateInfo(
                    created_at=_format_timestamp(raw.created_at_snowflake),
                    last_updated_at=(
                        _format_timestamp(raw.updated_at_snowflake)
                        if raw.updated_at_snowflake is not None
                        else None
                    ),
                    system="snowflake",
                )
            )
        else:
            skipped.append("Date.Snowflake")
        return dates
