import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

import database
from notifications import NotificationHub
from routes import admin, contact, content, coupons, feedback, orders, products, users
from schemas import Role
from security import authenticate_token

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

CORS_ORIGINS = [
    o.strip()
    for o in os.getenv("CORS_ORIGINS", "http://localhost:5173,http://localhost:3000").split(",")
    if o.strip()
]


def prepare_database():
    if database.db is None:
        logger.warning("DATABASE_URL / DATABASE_NAME not set; requests will fail with 500")
        return
    try:
        database.ensure_indexes(database.db)
    except Exception:
        logger.exception("Could not create indexes")


@asynccontextmanager
async def lifespan(app: FastAPI):
    prepare_database()
    yield


# App setup
app = FastAPI(title="Brownie Shop API", version="1.0.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.state.hub = NotificationHub()

for module in (users, products, orders, admin, coupons, feedback, contact, content):
    app.include_router(module.router)


# Every error leaves as {"message": ...}

@app.exception_handler(StarletteHTTPException)
async def http_error(request, exc: StarletteHTTPException):
    return JSONResponse({"message": exc.detail}, status_code=exc.status_code, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_error(request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"{field}: {first.get('msg')}" if field else first.get("msg")
    else:
        message = "Invalid request"
    return JSONResponse({"message": message}, status_code=400)


@app.exception_handler(Exception)
async def unexpected_error(request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse({"message": "Internal server error"}, status_code=500)


# Health and helpers
@app.get("/")
def root():
    return {"message": "Brownie Shop API running"}


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
        "admin_connections": app.state.hub.connection_count,
    }
    try:
        if database.db is not None:
            response["database"] = "✅ Connected & Working"
            response["connection_status"] = "Connected"
            response["collections"] = database.db.list_collection_names()[:10]
    except Exception as e:
        response["database"] = f"⚠️ Connected but error: {str(e)[:80]}"
    return response


# Live admin notifications
@app.websocket("/ws/notifications")
async def notifications_socket(websocket: WebSocket, token: Optional[str] = None):
    hub: NotificationHub = websocket.app.state.hub
    try:
        user = authenticate_token(database.get_db(), token)
    except HTTPException:
        await websocket.close(code=1008)
        return
    if user.get("role") != Role.ADMIN.value:
        await websocket.close(code=1008)
        return

    await websocket.accept()
    hub.register(websocket)
    try:
        while True:
            # clients only listen; anything they send is ignored
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        hub.unregister(websocket)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
