import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordRequestForm
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pymongo.errors import PyMongoError

import billing
import cart
import catalog
import hubs
import order_status
import profiles
import queries
from actors import Actor, CustomerActor, ShipperActor, VendorActor
from auth import (
    authenticate,
    get_current_user,
    get_current_actor,
    public_user,
    register_user,
    require,
    token_for_user,
)
from config import CORS_ORIGINS, PORT, configure_logging
from database import ensure_indexes, get_db, with_id
from errors import ERROR_STATUS_CODES, MarketplaceError, NotFoundError, Unauthenticated
from schemas import ProductCategory

configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    from database import db

    # a failed index build is logged, the API still starts
    if db is not None:
        try:
            ensure_indexes(db)
            logger.info("MongoDB indexes ensured")
        except PyMongoError as e:
            logger.error("Index setup failed: %s", e)
    yield


app = FastAPI(title="Marketplace API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# -----------------------------
# Error mapping
# -----------------------------

@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError) -> JSONResponse:
    status_code = ERROR_STATUS_CODES.get(type(exc), 500)
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, Unauthenticated) else None
    if status_code == 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error_type": type(exc).__name__},
        headers=headers,
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = "; ".join(
        f"{'.'.join(str(p) for p in err['loc'] if p != 'body')}: {err['msg']}" for err in exc.errors()
    )
    return JSONResponse(
        status_code=400,
        content={"detail": problems or "Invalid request", "error_type": "ValidationError"},
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "error_type": "InternalError"},
    )


# -----------------------------
# Request payloads
# -----------------------------

class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class RegisterBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    username: str = Field(..., min_length=3, max_length=30)
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=20)


class CustomerRegister(RegisterBase):
    name: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)


class VendorRegister(RegisterBase):
    business_name: str = Field(..., alias="businessName", min_length=1)
    business_address: str = Field(..., alias="businessAddress", min_length=1)


class ShipperRegister(RegisterBase):
    hub_id: str = Field(..., alias="hubId")


class HubIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    hub_name: str = Field(..., alias="hubName")
    hub_location: str = Field(..., alias="hubLocation")


class ProductIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    price: float
    available_stock: int = Field(0, alias="availableStock")
    sale_percentage: float = Field(0, alias="salePercentage")
    image_url: Optional[str] = Field(None, alias="imageUrl")
    description: Optional[str] = None
    category: ProductCategory = "OTHERS"


class ProductUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    price: Optional[float] = None
    available_stock: Optional[int] = Field(None, alias="availableStock")
    sale_percentage: Optional[float] = Field(None, alias="salePercentage")
    image_url: Optional[str] = Field(None, alias="imageUrl")
    description: Optional[str] = None
    category: Optional[ProductCategory] = None


class CartItemIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_id: str = Field(..., alias="productId")
    quantity: int


class ProfileUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    username: Optional[str] = Field(None, min_length=3, max_length=30)
    name: Optional[str] = None
    address: Optional[str] = None
    business_name: Optional[str] = Field(None, alias="businessName")
    business_address: Optional[str] = Field(None, alias="businessAddress")
    hub_id: Optional[str] = Field(None, alias="hubId")


class StatusIn(BaseModel):
    status: str
    reason: Optional[str] = None


# -----------------------------
# Service
# -----------------------------

@app.get("/")
def root():
    return {"message": "Marketplace API is running"}


@app.get("/test")
def test_database():
    from database import db

    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": [],
    }

    if db is not None:
        response["database"] = "✅ Available"
        response["database_name"] = db.name
        response["connection_status"] = "Connected"
        try:
            response["collections"] = db.list_collection_names()[:10]
            response["database"] = "✅ Connected & Working"
        except Exception as e:
            response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"
    else:
        response["database"] = "⚠️  Available but not initialized"

    return response


# -----------------------------
# Auth
# -----------------------------

@app.post("/auth/register/customer", status_code=201)
def register_customer(payload: CustomerRegister, db=Depends(get_db)):
    user = register_user(
        db, payload.username, payload.email, payload.password, "CUSTOMER",
        name=payload.name.strip(), address=payload.address.strip(),
    )
    return public_user(user)


@app.post("/auth/register/vendor", status_code=201)
def register_vendor(payload: VendorRegister, db=Depends(get_db)):
    user = register_user(
        db, payload.username, payload.email, payload.password, "VENDOR",
        business_name=payload.business_name.strip(), business_address=payload.business_address.strip(),
    )
    return public_user(user)


@app.post("/auth/register/shipper", status_code=201)
def register_shipper(payload: ShipperRegister, db=Depends(get_db)):
    user = register_user(db, payload.username, payload.email, payload.password, "SHIPPER", hub_id=payload.hub_id)
    return public_user(user)


@app.post("/auth/login", response_model=Token)
def login(form_data: OAuth2PasswordRequestForm = Depends(), db=Depends(get_db)):
    user = authenticate(db, form_data.username, form_data.password)
    if not user:
        raise Unauthenticated("Incorrect username or password")
    return {"access_token": token_for_user(user), "token_type": "bearer"}


@app.get("/auth/me")
def me(user=Depends(get_current_user)):
    return public_user(user)


# -----------------------------
# Profiles
# -----------------------------

@app.get("/profile")
def read_profile(actor: Actor = Depends(get_current_actor), db=Depends(get_db)):
    return {"user": profiles.get_profile(db, actor)}


@app.put("/profile")
def edit_profile(payload: ProfileUpdate, actor: Actor = Depends(get_current_actor), db=Depends(get_db)):
    changes = payload.model_dump(exclude_unset=True)
    return {"user": profiles.update_profile(db, actor, changes)}


@app.get("/vendors/{vendor_id}")
def vendor_profile(vendor_id: str, db=Depends(get_db)):
    return {"vendor": profiles.get_vendor_profile(db, vendor_id)}


# -----------------------------
# Distribution hubs
# -----------------------------

@app.get("/hubs")
def list_hubs(db=Depends(get_db)):
    return {"hubs": hubs.list_hubs(db)}


@app.post("/hubs", status_code=201)
def create_hub(payload: HubIn, db=Depends(get_db)):
    return {"hub": hubs.create_hub(db, payload.hub_name, payload.hub_location)}


@app.get("/hubs/{hub_id}")
def get_hub(hub_id: str, db=Depends(get_db)):
    return {"hub": hubs.get_hub(db, hub_id)}


# -----------------------------
# Products
# -----------------------------

@app.get("/products")
def list_products(
    minPrice: Optional[float] = None,
    maxPrice: Optional[float] = None,
    category: Optional[str] = None,
    q: Optional[str] = None,
    vendor: Optional[str] = None,
    page: int = 1,
    pageSize: int = 12,
    priceOrder: Optional[str] = None,
    db=Depends(get_db),
):
    return catalog.list_products(
        db, min_price=minPrice, max_price=maxPrice, category=category, keyword=q,
        vendor_id=vendor, page=page, page_size=pageSize, price_order=priceOrder,
    )


@app.get("/products/{product_id}")
def get_product(product_id: str, db=Depends(get_db)):
    product = catalog.get_product(db, product_id)
    if not product:
        raise NotFoundError("Product", product_id)
    return with_id(product)


@app.get("/vendor/products")
def list_vendor_products(actor: VendorActor = Depends(require(VendorActor)), db=Depends(get_db)):
    return {"products": catalog.list_vendor_products(db, actor.user_id)}


@app.post("/vendor/products", status_code=201)
def add_product(payload: ProductIn, actor: VendorActor = Depends(require(VendorActor)), db=Depends(get_db)):
    return {"product": catalog.create_product(db, actor.user_id, payload.model_dump())}


@app.put("/vendor/products/{product_id}")
def edit_product(
    product_id: str,
    payload: ProductUpdate,
    actor: VendorActor = Depends(require(VendorActor)),
    db=Depends(get_db),
):
    changes = payload.model_dump(exclude_unset=True)
    return {"product": catalog.update_product(db, actor.user_id, product_id, changes)}


@app.delete("/vendor/products/{product_id}")
def delete_product(product_id: str, actor: VendorActor = Depends(require(VendorActor)), db=Depends(get_db)):
    catalog.delete_product(db, actor.user_id, product_id)
    return {"status": "deleted"}


@app.get("/vendor/products/{product_id}/sales")
def product_sales(product_id: str, actor: VendorActor = Depends(require(VendorActor)), db=Depends(get_db)):
    return {"totalSold": catalog.product_sales_count(db, actor.user_id, product_id)}


# -----------------------------
# Cart (customers only)
# -----------------------------

@app.get("/cart")
def get_cart(actor: CustomerActor = Depends(require(CustomerActor)), db=Depends(get_db)):
    return cart.get_cart(db, actor.user_id)


@app.post("/cart")
def add_to_cart(payload: CartItemIn, actor: CustomerActor = Depends(require(CustomerActor)), db=Depends(get_db)):
    cart.add_to_cart(db, actor.user_id, payload.product_id, payload.quantity)
    return cart.get_cart(db, actor.user_id)


@app.put("/cart")
def set_cart_quantity(payload: CartItemIn, actor: CustomerActor = Depends(require(CustomerActor)), db=Depends(get_db)):
    cart.set_quantity(db, actor.user_id, payload.product_id, payload.quantity)
    return cart.get_cart(db, actor.user_id)


@app.delete("/cart/{product_id}")
def remove_from_cart(product_id: str, actor: CustomerActor = Depends(require(CustomerActor)), db=Depends(get_db)):
    removed = cart.remove_item(db, actor.user_id, product_id)
    return {"removed": removed, "cart": cart.get_cart(db, actor.user_id)}


# -----------------------------
# Orders
# -----------------------------

@app.post("/orders", status_code=201)
def checkout(actor: CustomerActor = Depends(require(CustomerActor)), db=Depends(get_db)):
    return billing.create_order(db, actor.user_id)


@app.get("/orders")
def list_orders(status: Optional[str] = None, actor: Actor = Depends(get_current_actor), db=Depends(get_db)):
    return queries.list_orders(db, actor, queries.parse_status_filter(status))


@app.get("/orders/{order_id}")
def get_order(order_id: str, actor: Actor = Depends(get_current_actor), db=Depends(get_db)):
    return queries.get_order_detail(db, actor, order_id)


@app.patch("/orders/{order_id}/status")
def patch_order_status(
    order_id: str,
    payload: StatusIn,
    actor: Actor = Depends(require(CustomerActor, VendorActor, ShipperActor)),
    db=Depends(get_db),
):
    return order_status.change_status(db, actor, order_id, payload.status, payload.reason)


# -----------------------------
# Seed demo data
# -----------------------------

@app.post("/seed")
def seed(db=Depends(get_db)):
    created = hubs.seed_hubs(db)
    return {"status": "ok", "hubs_created": created}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)
