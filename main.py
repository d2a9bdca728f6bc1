import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from pymongo.errors import ConnectionFailure, PyMongoError

import payments
import services
from access import current_user, get_db, require_admin, require_user
from config import settings
from database import Database
from schemas import MODELS, DeliveryType, OrderItem

logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    database = Database.from_settings(settings)
    if database is not None:
        try:
            database.ensure_indexes()
        except ConnectionFailure as e:
            logger.error("Could not prepare indexes, database unreachable: %s", e)
    app.state.database = database
    yield
    if database is not None:
        database.close()


app = FastAPI(title="Toolstore API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ConnectionFailure)
async def database_unreachable(request: Request, exc: ConnectionFailure):
    logger.error("Database unreachable during %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": "Database not available"})


# ---------------------- Models ----------------------

class CartAddBody(BaseModel):
    product_id: int
    quantity: int = Field(..., ge=1)


class OrderCreateBody(BaseModel):
    total_amount: int = Field(..., ge=0, description="Minor currency units, computed by the client from its cart")
    items: List[OrderItem]


class ProductForm(BaseModel):
    id: Optional[int] = None
    category_id: int
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    price: int = Field(..., ge=0)
    original_price: Optional[int] = Field(None, ge=0)
    image: Optional[str] = None
    stock: int = Field(0, ge=0)
    is_active: bool = True
    features: List[str] = []


class CategoryForm(BaseModel):
    id: Optional[int] = None
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    icon: Optional[str] = None


class SettingsForm(BaseModel):
    upi_id: str = Field(..., min_length=1, max_length=255)
    upi_name: Optional[str] = None
    bank_account: Optional[str] = None
    phone_number: Optional[str] = Field(None, max_length=20)
    qr_code: Optional[str] = None


class PaymentSubmitBody(BaseModel):
    product_id: int
    amount: int = Field(..., ge=0)
    transaction_id: str = Field(..., min_length=1, max_length=255)
    payment_method: str = Field("upi", max_length=50)


class DecisionBody(BaseModel):
    notes: Optional[str] = None


class DeliveryBody(BaseModel):
    delivery_type: DeliveryType
    access_link: Optional[str] = Field(None, max_length=500)
    api_key: Optional[str] = Field(None, max_length=500)
    credentials: Optional[str] = None
    expires_at: Optional[datetime] = None


class DeliverableUpdateBody(BaseModel):
    access_link: Optional[str] = Field(None, max_length=500)
    api_key: Optional[str] = Field(None, max_length=500)
    credentials: Optional[str] = None
    expires_at: Optional[datetime] = None
    is_active: Optional[bool] = None


# ---------------------- Root & Health ----------------------

@app.get("/")
def read_root():
    return {"message": "Toolstore API running"}


@app.get("/test")
def test_database(request: Request):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if settings.database_url else "❌ Not Set",
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        db = get_db(request)
        response["database"] = "✅ Available"
        response["database_name"] = db.name
        response["connection_status"] = "Connected"
        try:
            response["collections"] = db.collection_names()
            response["database"] = "✅ Connected & Working"
        except PyMongoError as e:
            response["database"] = f"⚠️ Connected but Error: {str(e)[:80]}"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# ---------------------- Schemas Endpoint ----------------------

@app.get("/schema")
def get_schema():
    def model_fields(m):
        return {k: str(v.annotation) for k, v in m.model_fields.items()}
    return {"models": {name: model_fields(model) for name, model in MODELS.items()}}


# ---------------------- Auth ----------------------

@app.get("/auth/me")
def me(user: Optional[Dict[str, Any]] = Depends(current_user)):
    return user


@app.post("/auth/logout")
def logout(response: Response):
    response.delete_cookie(settings.cookie_name, path="/", secure=True, httponly=True, samesite="none")
    return {"success": True}


# ---------------------- Products & Categories ----------------------

@app.get("/products")
def list_products(category_id: Optional[int] = None, search: Optional[str] = None, db: Database = Depends(get_db)):
    return services.list_products(db, category_id=category_id, search=search)


@app.get("/products/categories")
def list_categories(db: Database = Depends(get_db)):
    return services.list_categories(db)


@app.get("/products/{product_id}")
def get_product(product_id: int, db: Database = Depends(get_db)):
    return services.get_product(db, product_id)


# ---------------------- Cart ----------------------

@app.get("/cart")
def get_cart(user=Depends(require_user), db: Database = Depends(get_db)):
    return services.get_cart(db, user["id"])


@app.post("/cart")
def add_to_cart(body: CartAddBody, user=Depends(require_user), db: Database = Depends(get_db)):
    return services.add_or_update_cart_item(db, user["id"], body.product_id, body.quantity)


@app.delete("/cart/{product_id}")
def remove_from_cart(product_id: int, user=Depends(require_user), db: Database = Depends(get_db)):
    services.remove_cart_item(db, user["id"], product_id)
    return {"ok": True}


@app.delete("/cart")
def clear_cart(user=Depends(require_user), db: Database = Depends(get_db)):
    removed = services.clear_cart(db, user["id"])
    return {"ok": True, "removed": removed}


# ---------------------- Orders ----------------------

@app.get("/orders")
def list_orders(user=Depends(require_user), db: Database = Depends(get_db)):
    return services.list_orders(db, user["id"])


@app.post("/orders")
def create_order(body: OrderCreateBody, user=Depends(require_user), db: Database = Depends(get_db)):
    return services.create_order(db, user["id"], body.total_amount, body.items)


# ---------------------- Admin: Products, Categories, Orders ----------------------

@app.get("/admin/products")
def admin_list_products(admin=Depends(require_admin), db: Database = Depends(get_db)):
    return services.list_all_products(db)


@app.post("/admin/products")
def admin_upsert_product(body: ProductForm, admin=Depends(require_admin), db: Database = Depends(get_db)):
    fields = body.model_dump(exclude={"id"}, exclude_unset=body.id is not None)
    return services.upsert_product(db, fields, product_id=body.id)


@app.delete("/admin/products/{product_id}")
def admin_delete_product(product_id: int, admin=Depends(require_admin), db: Database = Depends(get_db)):
    services.delete_product(db, product_id)
    return {"ok": True}


@app.get("/admin/categories")
def admin_list_categories(admin=Depends(require_admin), db: Database = Depends(get_db)):
    return services.list_categories(db)


@app.post("/admin/categories")
def admin_upsert_category(body: CategoryForm, admin=Depends(require_admin), db: Database = Depends(get_db)):
    fields = body.model_dump(exclude={"id"}, exclude_unset=body.id is not None)
    return services.upsert_category(db, fields, category_id=body.id)


@app.get("/admin/orders")
def admin_list_orders(admin=Depends(require_admin), db: Database = Depends(get_db)):
    return services.list_all_orders(db)


# ---------------------- Admin: Settings ----------------------

@app.get("/admin/settings/public")
def public_upi_settings(db: Database = Depends(get_db)):
    return services.get_public_settings(db)


@app.get("/admin/settings")
def admin_get_settings(admin=Depends(require_admin), db: Database = Depends(get_db)):
    return services.get_admin_settings(db, admin["id"])


@app.put("/admin/settings")
def admin_update_settings(body: SettingsForm, admin=Depends(require_admin), db: Database = Depends(get_db)):
    return services.upsert_admin_settings(db, admin["id"], **body.model_dump())


# ---------------------- Payments & Deliverables ----------------------

@app.post("/payments/requests")
def submit_payment_request(body: PaymentSubmitBody, user=Depends(require_user), db: Database = Depends(get_db)):
    return payments.submit_request(
        db,
        user["id"],
        product_id=body.product_id,
        amount=body.amount,
        transaction_id=body.transaction_id,
        payment_method=body.payment_method,
    )


@app.get("/payments/requests")
def user_payment_requests(user=Depends(require_user), db: Database = Depends(get_db)):
    return payments.get_user_requests(db, user["id"])


@app.get("/payments/requests/{request_id}")
def payment_request_details(request_id: int, user=Depends(require_user), db: Database = Depends(get_db)):
    return payments.get_request_for_user(db, request_id, user["id"])


@app.get("/deliverables")
def user_deliverables(user=Depends(require_user), db: Database = Depends(get_db)):
    return payments.get_user_deliverables(db, user["id"])


@app.get("/deliverables/{payment_request_id}")
def deliverable_for_request(payment_request_id: int, user=Depends(require_user), db: Database = Depends(get_db)):
    return payments.get_deliverable_for_user(db, payment_request_id, user["id"])


# ---------------------- Admin: Payments ----------------------

@app.get("/admin/payments")
def admin_list_payments(admin=Depends(require_admin), db: Database = Depends(get_db)):
    return payments.list_all(db)


@app.get("/admin/payments/{request_id}")
def admin_payment_details(request_id: int, admin=Depends(require_admin), db: Database = Depends(get_db)):
    return payments.get_request(db, request_id)


@app.post("/admin/payments/{request_id}/approve")
def admin_approve_payment(
    request_id: int,
    body: Optional[DecisionBody] = None,
    admin=Depends(require_admin),
    db: Database = Depends(get_db),
):
    return payments.approve(db, request_id, notes=body.notes if body else None)


@app.post("/admin/payments/{request_id}/reject")
def admin_reject_payment(
    request_id: int,
    body: Optional[DecisionBody] = None,
    admin=Depends(require_admin),
    db: Database = Depends(get_db),
):
    return payments.reject(db, request_id, notes=body.notes if body else None)


@app.post("/admin/payments/{request_id}/deliver")
def admin_deliver_content(request_id: int, body: DeliveryBody, admin=Depends(require_admin), db: Database = Depends(get_db)):
    return payments.deliver(db, request_id, **body.model_dump())


@app.patch("/admin/deliverables/{deliverable_id}")
def admin_update_deliverable(
    deliverable_id: int,
    body: DeliverableUpdateBody,
    admin=Depends(require_admin),
    db: Database = Depends(get_db),
):
    return payments.update_deliverable(db, deliverable_id, body.model_dump(exclude_unset=True))


# ---------------------- Seed Demo Data ----------------------

@app.post("/admin/seed")
def seed(admin=Depends(require_admin), db: Database = Depends(get_db)):
    created = services.seed_catalog(db)
    return {"ok": True, **created}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.port)
