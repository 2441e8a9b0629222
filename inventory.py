"""
Stock policy shared by checkout, manual inventory updates and product edits.

Every path that changes a variant's quantity ends in `check_low_stock`, so the
threshold and the notification shape live in one place.
"""
import logging
import os
from typing import Iterable, Optional

from bson import ObjectId
from fastapi import HTTPException
from pymongo import ReturnDocument

from database import parse_object_id, utcnow
from notifications import NotificationHub, notify
from schemas import InventoryChangeType, InventoryLog, NotificationType

logger = logging.getLogger(__name__)

LOW_STOCK_THRESHOLD = 20

# true: decrement without checking availability (stock may go negative)
# false: reject orders that ask for more than is on hand
ALLOW_OVERSELL = os.getenv("ALLOW_OVERSELL", "true").lower() in ("1", "true", "yes")


def find_variant(product: dict, variant_name: str) -> Optional[dict]:
    for variant in product.get("variants", []):
        if variant.get("name") == variant_name:
            return variant
    return None


async def check_low_stock(db, hub: Optional[NotificationHub], product: dict, variant_name: str,
                          quantity: int) -> Optional[dict]:
    if quantity > LOW_STOCK_THRESHOLD:
        return None
    return await notify(
        db,
        hub,
        NotificationType.INVENTORY,
        f"Low stock alert: {product.get('name')} ({variant_name}) has {quantity} units left",
        {
            "product_id": product["_id"],
            "product_name": product.get("name"),
            "variant_name": variant_name,
            "stock_quantity": quantity,
            "threshold": LOW_STOCK_THRESHOLD,
        },
    )


async def apply_stock_level(db, hub: Optional[NotificationHub], product: dict, variant_name: str,
                            quantity: int) -> dict:
    """Set a variant's quantity (and the derived in_stock flag) in one write."""
    updated = db["product"].find_one_and_update(
        {"_id": product["_id"], "variants.name": variant_name},
        {"$set": {
            "variants.$.stock_quantity": quantity,
            "variants.$.in_stock": quantity > 0,
            "updated_at": utcnow(),
        }},
        return_document=ReturnDocument.AFTER,
    )
    await check_low_stock(db, hub, updated, variant_name, quantity)
    return updated


def check_availability(db, items: Iterable[dict]) -> None:
    if ALLOW_OVERSELL:
        return
    wanted = {}
    for item in items:
        key = (item["product_id"], item["variant_name"])
        wanted[key] = wanted.get(key, 0) + item["quantity"]
    for (product_id, variant_name), quantity in wanted.items():
        product = db["product"].find_one({"_id": product_id})
        variant = find_variant(product, variant_name) if product else None
        if variant is None:
            continue
        if variant.get("stock_quantity", 0) < quantity:
            raise HTTPException(400, f"Insufficient stock for {product.get('name')} ({variant_name})")


def sync_in_stock(db, product_id, variant_name: str, quantity: int) -> int:
    """Bring a variant's in_stock flag in line with its quantity.

    The flag is written only while the quantity is still the one it was
    derived from, so a concurrent decrement can never leave a stale flag
    behind; on a mismatch the fresh quantity is read and the write retried.
    Returns the quantity the flag was set from.
    """
    while True:
        result = db["product"].update_one(
            {"_id": product_id,
             "variants": {"$elemMatch": {"name": variant_name, "stock_quantity": quantity}}},
            {"$set": {"variants.$.in_stock": quantity > 0, "updated_at": utcnow()}},
        )
        if result.matched_count:
            return quantity
        product = db["product"].find_one({"_id": product_id})
        variant = find_variant(product, variant_name) if product else None
        if variant is None:
            return quantity
        quantity = variant.get("stock_quantity", 0)


async def decrement_for_order(db, hub: Optional[NotificationHub], items: Iterable[dict]) -> None:
    """Take ordered quantities off the shelf.

    Order decrements are not written to the inventory log; only manual
    adjustments are.
    """
    for item in items:
        product = db["product"].find_one_and_update(
            {"_id": item["product_id"], "variants.name": item["variant_name"]},
            {"$inc": {"variants.$.stock_quantity": -item["quantity"]}},
            return_document=ReturnDocument.AFTER,
        )
        if product is None:
            logger.warning("Skipping stock update for missing %s / %s", item["product_id"], item["variant_name"])
            continue
        quantity = sync_in_stock(db, product["_id"], item["variant_name"],
                                 find_variant(product, item["variant_name"])["stock_quantity"])
        await check_low_stock(db, hub, product, item["variant_name"], quantity)


async def set_stock(db, hub: Optional[NotificationHub], product_id, variant_name: str, quantity: int,
                    reason: Optional[str], admin: dict) -> dict:
    product = db["product"].find_one({"_id": parse_object_id(product_id, "product ID")})
    if not product:
        raise HTTPException(404, "Product not found")
    variant = find_variant(product, variant_name)
    if variant is None:
        raise HTTPException(404, "Variant not found")

    log = InventoryLog(
        product_id=product["_id"],
        variant_name=variant_name,
        previous_quantity=variant.get("stock_quantity", 0),
        new_quantity=quantity,
        change_type=InventoryChangeType.MANUAL,
        reason=reason or "Manual stock update",
        updated_by=ObjectId(admin["_id"]),
    ).model_dump()
    log["created_at"] = utcnow()
    db["inventory_log"].insert_one(log)

    return await apply_stock_level(db, hub, product, variant_name, quantity)
