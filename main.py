import logging
import math
import os
from typing import Any, Dict, List, Optional

from bson import ObjectId
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError, field_validator
from pymongo.database import Database
from starlette.convertors import Convertor, register_url_convertor
from starlette.exceptions import HTTPException as StarletteHTTPException

import logging_config
from auth import AuthContext, require_admin, require_login, require_user
from config import get_settings
from database import ORDERS, PRODUCTS, create_document, get_db, get_documents, now_utc, reset_db, serialize_doc
from pricing import price_items, requested_product_ids, shipping_fee
from schemas import Order as OrderSchema, OrderStatus, Product as ProductSchema

settings = get_settings()
logging_config.configure_logging(settings.log_level)
logger = logging.getLogger(__name__)


class ObjectIdConvertor(Convertor):
    regex = "[a-f0-9]{24}"

    def convert(self, value: str) -> str:
        return value

    def to_string(self, value: Any) -> str:
        return str(value)


register_url_convertor("objectid", ObjectIdConvertor())

# App init
app = FastAPI(title="Storefront API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def strip_mount_prefix(request: Request, call_next):
    # "/store/api/products" routes like "/api/products"
    path = request.scope["path"]
    idx = path.find("/api/")
    if idx > 0:
        request.scope["path"] = path[idx:]
    return await call_next(request)


# Error handlers
def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    # Unknown routes and known routes with the wrong method both read as 404
    if exc.status_code == 405 or (exc.status_code == 404 and exc.detail == "Not Found"):
        return error_response(404, "Not found")
    return error_response(exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if not errors:
        return error_response(400, "Invalid request")
    first = errors[0]
    if first.get("type") == "json_invalid":
        return error_response(400, "Invalid JSON body")
    loc = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    return error_response(400, f"{loc}: {message}" if loc else message)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error", extra={"extra": {"path": request.url.path, "method": request.method}})
    return error_response(500, "Internal server error")


# Body coercion
def to_str(value: Any) -> str:
    return str(value).strip() if value else ""


def to_number(value: Any) -> float:
    if not value:
        return 0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    return number if math.isfinite(number) else 0


# Request models
class ProductCreateRequest(BaseModel):
    name: str = ""
    price: float = 0
    category: str = ""
    image: str = ""
    stock: int = 0

    @field_validator("name", "category", "image", mode="before")
    @classmethod
    def _coerce_str(cls, v):
        return to_str(v)

    @field_validator("price", mode="before")
    @classmethod
    def _coerce_price(cls, v):
        return to_number(v)

    @field_validator("stock", mode="before")
    @classmethod
    def _coerce_stock(cls, v):
        return max(0, int(to_number(v)))


class ProductUpdateRequest(BaseModel):
    name: Optional[str] = None
    price: Optional[float] = None
    category: Optional[str] = None
    image: Optional[str] = None
    stock: Optional[int] = None


class OrderCreateRequest(BaseModel):
    name: str = ""
    phone: str = ""
    address: str = ""
    lat: str = ""
    lng: str = ""
    pay: str = "cod"
    note: str = ""
    items: List[Dict[str, Any]] = []

    @field_validator("name", "phone", "address", mode="before")
    @classmethod
    def _coerce_trimmed(cls, v):
        return to_str(v)

    @field_validator("lat", "lng", "note", mode="before")
    @classmethod
    def _coerce_raw(cls, v):
        return str(v) if v else ""

    @field_validator("pay", mode="before")
    @classmethod
    def _coerce_pay(cls, v):
        return str(v) if v else "cod"

    @field_validator("items", mode="before")
    @classmethod
    def _coerce_items(cls, v):
        if not isinstance(v, list):
            return []
        return [item if isinstance(item, dict) else {} for item in v]


class StatusUpdateRequest(BaseModel):
    status: Any = None


def json_body(model):
    """Body parser run as a dependency, so it only runs once the auth guards before it pass."""
    async def _parse(request: Request):
        try:
            data = await request.json()
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid JSON body")
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise RequestValidationError(e.errors())
    return _parse


# Routes
@app.api_route("/api/health", methods=["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE"])
def health():
    return {"ok": True, "time": now_utc().isoformat()}


# Products
@app.get("/api/products")
def list_products(db: Database = Depends(get_db)):
    return [serialize_doc(p) for p in get_documents(db, PRODUCTS)]


@app.post("/api/products")
def create_product(admin: AuthContext = Depends(require_admin), req: ProductCreateRequest = Depends(json_body(ProductCreateRequest)), db: Database = Depends(get_db)):
    if not req.name or req.price <= 0:
        raise HTTPException(status_code=400, detail="Name/Price required")
    prod = ProductSchema(**req.model_dump())
    doc = create_document(db, PRODUCTS, prod)
    logger.info("Product created", extra={"user_id": admin.user.get("id"), "extra": {"product_id": str(doc["_id"])}})
    return serialize_doc(doc)


@app.put("/api/products/{product_id:objectid}")
def update_product(product_id: str, admin: AuthContext = Depends(require_admin), req: ProductUpdateRequest = Depends(json_body(ProductUpdateRequest)), db: Database = Depends(get_db)):
    updates = req.model_dump(exclude_unset=True)
    if updates:
        db[PRODUCTS].update_one({"_id": ObjectId(product_id)}, {"$set": updates})
        logger.info("Product updated", extra={"user_id": admin.user.get("id"), "extra": {"product_id": product_id, "fields": sorted(updates)}})
    return {"ok": True}


@app.delete("/api/products/{product_id:objectid}")
def delete_product(product_id: str, admin: AuthContext = Depends(require_admin), db: Database = Depends(get_db)):
    db[PRODUCTS].delete_one({"_id": ObjectId(product_id)})
    logger.info("Product deleted", extra={"user_id": admin.user.get("id"), "extra": {"product_id": product_id}})
    return {"ok": True}


# Orders
@app.get("/api/orders")
def list_orders(admin: AuthContext = Depends(require_admin), db: Database = Depends(get_db)):
    return [serialize_doc(o) for o in get_documents(db, ORDERS)]


@app.get("/api/my-orders")
def list_my_orders(auth: AuthContext = Depends(require_user), db: Database = Depends(get_db)):
    return [serialize_doc(o) for o in get_documents(db, ORDERS, {"userId": str(auth.user["id"])})]


@app.post("/api/orders")
def create_order(auth: AuthContext = Depends(require_login), req: OrderCreateRequest = Depends(json_body(OrderCreateRequest)), db: Database = Depends(get_db)):
    if not req.items:
        raise HTTPException(status_code=400, detail="Cart empty")

    # Server-side price verification
    ids = requested_product_ids(req.items)
    found = db[PRODUCTS].find({"_id": {"$in": ids}}) if ids else []
    products = {str(p["_id"]): p for p in found}
    lines, subtotal = price_items(req.items, products)
    if not lines:
        raise HTTPException(status_code=400, detail="No valid items")
    shipping = shipping_fee(subtotal)
    if not req.address:
        raise HTTPException(status_code=400, detail="Delivery address required")

    order = OrderSchema(
        userId=str(auth.user["id"]),
        email=str(auth.user.get("email") or ""),
        name=req.name,
        phone=req.phone,
        address=req.address,
        lat=req.lat,
        lng=req.lng,
        pay=req.pay,
        note=req.note,
        items=lines,
        subTotal=subtotal,
        shipping=shipping,
        total=subtotal + shipping,
    )
    doc = create_document(db, ORDERS, order)
    logger.info(
        "Order created",
        extra={"user_id": order.userId, "extra": {"order_id": str(doc["_id"]), "items": len(lines), "total": order.total}},
    )
    return serialize_doc(doc)


@app.put("/api/orders/{order_id:objectid}")
def update_order_status(order_id: str, admin: AuthContext = Depends(require_admin), req: StatusUpdateRequest = Depends(json_body(StatusUpdateRequest)), db: Database = Depends(get_db)):
    try:
        status = OrderStatus.parse(req.status)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid status")
    db[ORDERS].update_one({"_id": ObjectId(order_id)}, {"$set": {"status": status.value}})
    logger.info("Order status updated", extra={"user_id": admin.user.get("id"), "extra": {"order_id": order_id, "status": status.value}})
    return {"ok": True}


# Seed demo products on startup
DEMO_PRODUCTS: List[dict] = [
    {
        "name": "Classic Cotton T-Shirt",
        "price": 350,
        "category": "Fashion",
        "image": "",
        "stock": 120,
    },
    {
        "name": "Denim Jacket",
        "price": 1450,
        "category": "Fashion",
        "image": "",
        "stock": 40,
    },
    {
        "name": "Wireless Earbuds",
        "price": 990,
        "category": "Accessories",
        "image": "",
        "stock": 75,
    },
    {
        "name": "Canvas Tote Bag",
        "price": 220,
        "category": "Accessories",
        "image": "",
        "stock": 200,
    },
]


def seed_products_if_empty(db: Database) -> int:
    if db[PRODUCTS].count_documents({}) > 0:
        return 0
    for prod in DEMO_PRODUCTS:
        create_document(db, PRODUCTS, ProductSchema(**prod))
    logger.info("Seeded demo products", extra={"extra": {"count": len(DEMO_PRODUCTS)}})
    return len(DEMO_PRODUCTS)


@app.on_event("startup")
def on_startup():
    if not settings.admin_policy_configured:
        if settings.admin_default_deny:
            logger.warning("No admin policy configured; admin routes are closed")
        else:
            logger.warning("No admin policy configured; every signed-in user is treated as admin")
    if not settings.seed_demo_products:
        return
    try:
        seed_products_if_empty(get_db())
    except Exception:
        logger.exception("Seeding demo products failed")


@app.on_event("shutdown")
def on_shutdown():
    reset_db()


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
