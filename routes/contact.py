from fastapi import APIRouter, Depends
from pydantic import EmailStr

from database import create_document, get_db
from schemas import ApiModel, Contact

router = APIRouter(prefix="/contact", tags=["contact"])


class ContactRequest(ApiModel):
    name: str
    email: EmailStr
    subject: str
    message: str


@router.post("", status_code=201)
def submit_contact(payload: ContactRequest, db=Depends(get_db)):
    create_document("contact", Contact(**payload.model_dump()))
    return {"message": "Message sent successfully"}
