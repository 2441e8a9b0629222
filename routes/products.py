from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from database import get_db, parse_object_id, to_serializable
from routes.feedback import MAX_DISPLAYED_PER_PRODUCT, displayed_feedback
from schemas import ProductCategory

router = APIRouter(prefix="/products", tags=["products"])


@router.get("")
def list_products(category: Optional[ProductCategory] = None, db=Depends(get_db)):
    filt = {}
    if category:
        filt["category"] = category.value
    docs = db["product"].find(filt).sort("created_at", -1)
    return [to_serializable(d) for d in docs]


@router.get("/{product_id}")
def get_product(product_id: str, db=Depends(get_db)):
    product = db["product"].find_one({"_id": parse_object_id(product_id, "product ID")})
    if not product:
        raise HTTPException(404, "Product not found")
    return to_serializable(product)


@router.get("/{product_id}/feedbacks")
def get_product_feedbacks(product_id: str, db=Depends(get_db)):
    oid = parse_object_id(product_id, "product ID")
    return to_serializable(displayed_feedback(db, oid, limit=MAX_DISPLAYED_PER_PRODUCT))
