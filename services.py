"""
Catalog, cart, order, user and admin-settings operations.

Every function takes the Database it works on as its first argument and
returns plain serialized documents ({"id": ..., ...}). Access tiers are
enforced by the route dependencies in access.py, never here.
"""
import logging
import re
from typing import Any, Dict, List, Optional

from pydantic import EmailStr, TypeAdapter, ValidationError
from pymongo.errors import DuplicateKeyError

from database import Database, now_utc
from errors import BadRequest, NotFound
from schemas import AdminSettings, CartItem, Category, Order, OrderItem, Product, Role, User

logger = logging.getLogger(__name__)

# ---------------------- Users ----------------------


_email = TypeAdapter(EmailStr)


def is_valid_email(value: str) -> bool:
    try:
        _email.validate_python(value)
    except ValidationError:
        return False
    return True


def get_user_by_open_id(db: Database, open_id: str) -> Optional[Dict[str, Any]]:
    return db.latest("user", {"open_id": open_id})


def sync_user(db: Database, claims: Dict[str, Any], owner_open_id: Optional[str] = None) -> Dict[str, Any]:
    """Create the user on first sight of an identity, otherwise refresh what the provider sent."""
    open_id = claims["openId"]
    fields: Dict[str, Any] = {"last_signed_in": now_utc()}
    for field, claim in (("name", "name"), ("email", "email"), ("login_method", "loginMethod")):
        if claims.get(claim):
            fields[field] = claims[claim]
    if "email" in fields and not is_valid_email(fields["email"]):
        logger.debug("Ignoring malformed email claim for %s", open_id)
        del fields["email"]

    if get_user_by_open_id(db, open_id) is None:
        role = Role.admin if owner_open_id and open_id == owner_open_id else Role.user
        user = User(open_id=open_id, role=role, **fields)
        try:
            user_id = db.create_document("user", user)
            logger.info("Registered user %s as %s", open_id, user.role)
            return db.get_document("user", user_id)
        except DuplicateKeyError:
            # concurrent first sign-in already created the row
            pass
    return db.update_document("user", {"open_id": open_id}, fields)


# ---------------------- Catalog ----------------------


def list_categories(db: Database) -> List[Dict[str, Any]]:
    return db.get_documents("category")


def list_products(db: Database, category_id: Optional[int] = None, search: Optional[str] = None) -> List[Dict[str, Any]]:
    query: Dict[str, Any] = {"is_active": True}
    if category_id is not None:
        query["category_id"] = category_id
    if search:
        pattern = re.escape(search)
        query["$or"] = [
            {"name": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
        ]
    return db.get_documents("product", query)


def list_all_products(db: Database) -> List[Dict[str, Any]]:
    return db.get_documents("product")


def get_product(db: Database, product_id: int) -> Optional[Dict[str, Any]]:
    # no is_active filter: detail views may show hidden products
    return db.get_document("product", product_id)


def upsert_product(db: Database, fields: Dict[str, Any], product_id: Optional[int] = None) -> Dict[str, Any]:
    if product_id is not None:
        doc = db.update_document("product", {"_id": product_id}, fields)
        if doc is None:
            raise NotFound("Product not found")
        return doc
    new_id = db.create_document("product", Product(**fields))
    return db.get_document("product", new_id)


def delete_product(db: Database, product_id: int) -> Dict[str, Any]:
    doc = db.update_document("product", {"_id": product_id}, {"is_active": False})
    if doc is None:
        raise NotFound("Product not found")
    return doc


def upsert_category(db: Database, fields: Dict[str, Any], category_id: Optional[int] = None) -> Dict[str, Any]:
    if category_id is not None:
        doc = db.update_document("category", {"_id": category_id}, fields)
        if doc is None:
            raise NotFound("Category not found")
        return doc
    new_id = db.create_document("category", Category(**fields))
    return db.get_document("category", new_id)


# ---------------------- Cart ----------------------


def get_cart(db: Database, user_id: int) -> List[Dict[str, Any]]:
    return db.get_documents("cartitem", {"user_id": user_id})


def add_or_update_cart_item(db: Database, user_id: int, product_id: int, quantity: int) -> Dict[str, Any]:
    """Set the quantity for (user, product); the quantity replaces any earlier one."""
    if quantity < 1:
        raise BadRequest("Quantity must be at least 1")
    pair = {"user_id": user_id, "product_id": product_id}
    doc = db.update_document("cartitem", pair, {"quantity": quantity})
    if doc is not None:
        return doc
    try:
        item_id = db.create_document("cartitem", CartItem(quantity=quantity, **pair))
    except DuplicateKeyError:
        return db.update_document("cartitem", pair, {"quantity": quantity})
    return db.get_document("cartitem", item_id)


def remove_cart_item(db: Database, user_id: int, product_id: int) -> int:
    return db["cartitem"].delete_one({"user_id": user_id, "product_id": product_id}).deleted_count


def clear_cart(db: Database, user_id: int) -> int:
    return db["cartitem"].delete_many({"user_id": user_id}).deleted_count


# ---------------------- Orders ----------------------


def create_order(db: Database, user_id: int, total_amount: int, items: List[OrderItem]) -> Dict[str, Any]:
    # total_amount is taken as computed by the client from its cart; prices are not re-read here
    order = Order(user_id=user_id, total_amount=total_amount, items=items)
    order_id = db.create_document("order", order)
    return db.get_document("order", order_id)


def list_orders(db: Database, user_id: int) -> List[Dict[str, Any]]:
    return db.get_documents("order", {"user_id": user_id})


def list_all_orders(db: Database) -> List[Dict[str, Any]]:
    return db.get_documents("order")


# ---------------------- Admin Settings ----------------------

OPTIONAL_SETTINGS = ("upi_name", "qr_code", "bank_account", "phone_number")


def get_admin_settings(db: Database, admin_id: int) -> Optional[Dict[str, Any]]:
    return db.latest("adminsettings", {"admin_id": admin_id})


def upsert_admin_settings(db: Database, admin_id: int, upi_id: str, **optional: Optional[str]) -> Dict[str, Any]:
    """Save the admin's UPI profile; optional fields left out are cleared."""
    upi_id = (upi_id or "").strip()
    if not upi_id:
        raise BadRequest("UPI ID is required")
    settings = AdminSettings(
        admin_id=admin_id,
        upi_id=upi_id,
        is_active=True,
        **{name: optional.get(name) for name in OPTIONAL_SETTINGS},
    )
    existing = get_admin_settings(db, admin_id)
    if existing is not None:
        return db.update_document("adminsettings", {"_id": existing["id"]}, settings.model_dump(exclude={"admin_id"}))
    settings_id = db.create_document("adminsettings", settings)
    return db.get_document("adminsettings", settings_id)


def get_public_settings(db: Database) -> Optional[Dict[str, Any]]:
    return db.latest("adminsettings", {"is_active": True})


# ---------------------- Seed Demo Data ----------------------

DEMO_CATEGORIES = [
    {"name": "Courses", "description": "Self-paced security courses", "icon": "graduation-cap"},
    {"name": "APIs", "description": "Hosted API access with keys", "icon": "plug"},
    {"name": "Tools", "description": "Licensed tooling and scripts", "icon": "wrench"},
    {"name": "Services", "description": "Done-for-you engagements", "icon": "briefcase"},
]

DEMO_PRODUCTS = [
    ("Courses", "Web Application Testing Course", "Hands-on labs covering the OWASP Top 10.", 4999, 7999,
     ["40 video lessons", "Lab environment", "Certificate"]),
    ("Courses", "Network Recon Bootcamp", "Scanning, enumeration and reporting from scratch.", 3499, None,
     ["20 video lessons", "Cheat sheets"]),
    ("APIs", "Breach Lookup API", "Query leaked-credential datasets over HTTPS.", 2999, None,
     ["10k requests/month", "JSON responses"]),
    ("Tools", "Subdomain Finder Pro", "Passive and active subdomain discovery tool.", 1999, 2499,
     ["Lifetime license", "Updates for 1 year"]),
    ("Services", "External Pentest", "Scoped external assessment with a written report.", 49999, None,
     ["Kickoff call", "Report", "Retest"]),
]


def seed_catalog(db: Database) -> Dict[str, int]:
    created = {"categories": 0, "products": 0}
    if db["category"].count_documents({}) == 0:
        for cat in DEMO_CATEGORIES:
            db.create_document("category", Category(**cat))
            created["categories"] += 1
    if db["product"].count_documents({}) == 0:
        ids = {c["name"]: c["id"] for c in list_categories(db)}
        for cat_name, name, description, price, original, features in DEMO_PRODUCTS:
            if cat_name not in ids:
                continue
            db.create_document("product", Product(
                category_id=ids[cat_name],
                name=name,
                description=description,
                price=price,
                original_price=original,
                stock=100,
                features=features,
            ))
            created["products"] += 1
    return created
