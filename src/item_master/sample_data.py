"""
Demo warehouse catalogue served by the in-memory warehouse in test mode.
Rows use the warehouse column names, as the SQL repository returns them.
"""

from datetime import datetime, timezone

from item_master.models import RawSourceItem


def _at(year: int, month: int, day: int) -> datetime:
    return datetime(year, month, day, 12, 0, tzinfo=timezone.utc)


def _row(sku: str, title: str, barcode: str, hts: str, created: datetime, **columns) -> dict:
    row = {
        "SKU": sku,
        "PRODUCT_TITLE": title,
        "BARCODE": barcode,
        "HTS": hts,
        "COUNTRY_OF_ORIGIN": "SG",
        "PRICE": 49.99,
        "COST": 25.0,
        "LANDED_COST": 30.0,
        "SIZE": "M",
        "COLOR": "Black",
        "BRAND": "Northwind",
        "CATEGORY": "Clothing",
        "PRODUCT_TYPE": "Tops",
        "FABRIC_CONTENT": "Cotton",
        "FABRIC_COMPOSITION": "100% Cotton",
        "CREATED_AT_SNOWFLAKE": created,
        "UPDATED_AT_SNOWFLAKE": created,
    }
    row.update(columns)
    return row


SAMPLE_ROWS = [
    _row("TEST-001", "Test Item 1", "1111111111111", "1111111111", _at(2024, 5, 1), COLOR="Blue"),
    _row("TEST-002", "Test Item 2", "2222222222222", "2222222222", _at(2024, 5, 2), SIZE="L", COLOR="Red"),
    _row("BATCH-001", "Batch Test 1", "1010101010101", "1010101010", _at(2024, 10, 3), FABRIC_CONTENT="Wool", FABRIC_COMPOSITION="100% Wool"),
    _row("BATCH-002", "Batch Test 2", "2020202020202", "2020202020", _at(2024, 10, 4), FABRIC_CONTENT="Silk", FABRIC_COMPOSITION="100% Silk"),
    _row("BATCH-003", "Batch Test 3", "3030303030303", "3030303030", _at(2024, 10, 5), SIZE="S"),
    _row(
        "PRE-2024-SKU", "Pre 2024 Test", "", "6060606060", _at(2023, 12, 15),
        SECONDARY_BARCODE="7070707070707",
    ),
    _row(
        "NO-LANDED-COST", "No Landed Cost Test", "7070707070707", "7070707070", _at(2024, 10, 12),
        LANDED_COST=0.0,
    ),
    _row(
        "NO-FABRIC", "No Fabric Test", "8080808080808", "8080808080", _at(2024, 10, 13),
        CATEGORY="Apparel", FABRIC_CONTENT=None, FABRIC_COMPOSITION=None,
    ),
    _row("INVALID-HTS", "Invalid HTS Test", "6060606060606", "INVALID", _at(2024, 10, 11)),
    _row(
        "ACCESSORY-001", "Leather Wallet", "9191919191919", "", _at(2024, 9, 1),
        CATEGORY="Accessories", PRODUCT_TYPE="Wallets", FABRIC_CONTENT=None,
        FABRIC_COMPOSITION=None, LANDED_COST=0.0, DESCRIPTION="Bifold wallet",
    ),
]


def sample_items() -> list[RawSourceItem]:
    return [RawSourceItem.model_validate(row) for row in SAMPLE_ROWS]
