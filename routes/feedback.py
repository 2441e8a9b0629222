import logging
from typing import List, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException
from pydantic import Field

from database import get_db, parse_object_id, to_serializable, utcnow
from notifications import get_hub, notify
from schemas import ApiModel, Feedback, NotificationType, ProductFeedback

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/feedback", tags=["feedback"])

MAX_DISPLAYED_PER_PRODUCT = 3


class FeedbackItemIn(ApiModel):
    product_id: str
    product_name: Optional[str] = None
    variant_name: Optional[str] = None
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None


class FeedbackSubmission(ApiModel):
    order_id: str
    feedback: List[FeedbackItemIn]


def count_displayed(db, product_id: ObjectId) -> int:
    """Number of displayed entries for a product across all feedback documents."""
    total = 0
    query = {"product_feedback": {"$elemMatch": {"product_id": product_id, "is_displayed": True}}}
    for doc in db["feedback"].find(query):
        total += sum(
            1 for entry in doc.get("product_feedback", [])
            if entry.get("product_id") == product_id and entry.get("is_displayed")
        )
    return total


def customer_name(db, order: Optional[dict]) -> str:
    if order and order.get("user"):
        user = db["user"].find_one({"_id": order["user"]}, {"name": 1})
        if user:
            return user["name"]
    if order and order.get("email"):
        return "Guest User"
    return "Anonymous"


def displayed_feedback(db, product_id: ObjectId, limit: Optional[int] = None) -> List[dict]:
    results = []
    query = {"product_feedback": {"$elemMatch": {"product_id": product_id, "is_displayed": True}}}
    for doc in db["feedback"].find(query).sort("created_at", -1):
        order = db["order"].find_one({"_id": doc["order_id"]})
        name = customer_name(db, order)
        for entry in doc.get("product_feedback", []):
            if entry.get("product_id") != product_id or not entry.get("is_displayed"):
                continue
            results.append({
                "_id": doc["_id"],
                "rating": entry["rating"],
                "comment": entry.get("comment", ""),
                "product_name": entry.get("product_name"),
                "variant_name": entry.get("variant_name"),
                "customer_name": name,
                "created_at": doc.get("created_at"),
            })
            if limit and len(results) >= limit:
                return results
    return results


@router.post("", status_code=201)
async def submit_feedback(payload: FeedbackSubmission, db=Depends(get_db), hub=Depends(get_hub)):
    order_id = parse_object_id(payload.order_id, "order ID")
    if not payload.feedback:
        raise HTTPException(400, "Feedback must include at least one product")

    order = db["order"].find_one({"_id": order_id})
    if not order:
        raise HTTPException(404, "Order not found")
    if db["feedback"].find_one({"order_id": order_id}):
        raise HTTPException(400, "Feedback already submitted for this order")

    entries = []
    displayed_now = {}
    for item in payload.feedback:
        product_id = parse_object_id(item.product_id, "product ID")
        if product_id not in displayed_now:
            displayed_now[product_id] = count_displayed(db, product_id)
        # new reviews go live only while the product is under the display cap
        show = displayed_now[product_id] < MAX_DISPLAYED_PER_PRODUCT
        if show:
            displayed_now[product_id] += 1
        entries.append(ProductFeedback(
            product_id=product_id,
            product_name=item.product_name,
            variant_name=item.variant_name,
            rating=item.rating,
            comment=item.comment or "",
            is_displayed=show,
        ))

    doc = Feedback(order_id=order_id, product_feedback=entries).model_dump()
    doc["created_at"] = utcnow()
    doc["_id"] = db["feedback"].insert_one(doc).inserted_id

    await notify(
        db,
        hub,
        NotificationType.FEEDBACK,
        f"New feedback received for order #{str(order_id)[-6:]}",
        {
            "order_id": order_id,
            "feedback_id": doc["_id"],
            "item_count": len(entries),
            "ratings": [e.rating for e in entries],
        },
    )
    return {"message": "Feedback submitted successfully", "feedback": to_serializable(doc)}


@router.get("")
def list_feedback(db=Depends(get_db)):
    docs = db["feedback"].find({}).sort("created_at", -1).limit(50)
    return [to_serializable(d) for d in docs]


@router.get("/product/{product_id}")
def product_feedback(product_id: str, db=Depends(get_db)):
    oid = parse_object_id(product_id, "product ID")
    return to_serializable(displayed_feedback(db, oid))
