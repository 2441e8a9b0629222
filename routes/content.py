"""
Home page content.

There is one active HomeContent document. Readers never see an empty site:
the first read creates the document from the defaults in schemas.HomeContent.
"""
from fastapi import APIRouter, Depends
from pymongo import ReturnDocument

from database import get_db, to_serializable, utcnow
from schemas import HomeContent

router = APIRouter(prefix="/content", tags=["content"])


def get_or_create_home_content(db) -> dict:
    defaults = HomeContent().model_dump()
    defaults.pop("is_active")
    defaults["updated_at"] = utcnow()
    # single upsert so concurrent first reads still leave one document
    return db["home_content"].find_one_and_update(
        {"is_active": True},
        {"$setOnInsert": defaults},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )


def update_home_content(db, changes: dict) -> dict:
    current = get_or_create_home_content(db)
    changes = {k: v for k, v in changes.items() if k not in ("_id", "is_active")}
    changes["updated_at"] = utcnow()
    return db["home_content"].find_one_and_update(
        {"_id": current["_id"]},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )


def reset_home_content(db) -> dict:
    db["home_content"].delete_many({})
    return get_or_create_home_content(db)


@router.get("/home-content")
def home_content(db=Depends(get_db)):
    return to_serializable(get_or_create_home_content(db))
