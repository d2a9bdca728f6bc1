"""
Manual payment approval and content delivery.

A buyer pays the store's UPI id outside the system and submits the transaction
reference as a PaymentRequest. An admin checks it, approves or rejects it and,
for approved requests, delivers the access artifact as a CourseDeliverable.

    pending --approve--> approved --deliver--> delivered
       |
       +----reject-----> rejected

rejected and delivered are terminal. Every status change is a compare-and-set
on the current status, so two admins acting on the same request cannot both win.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from pymongo.errors import DuplicateKeyError

from database import Database, UnitOfWork
from errors import BadRequest, Conflict, Forbidden, NotFound
from schemas import CourseDeliverable, DeliveryType, PaymentRequest, PaymentStatus

logger = logging.getLogger(__name__)

# target status -> statuses it may be reached from
TRANSITIONS = {
    PaymentStatus.approved: (PaymentStatus.pending,),
    PaymentStatus.rejected: (PaymentStatus.pending,),
    PaymentStatus.delivered: (PaymentStatus.approved,),
}

DELIVERABLE_FIELDS = ("access_link", "api_key", "credentials", "expires_at", "is_active")


def can_transition(current: str, target: PaymentStatus) -> bool:
    return current in [s.value for s in TRANSITIONS.get(target, ())]


# ---------------------- Buyer side ----------------------


def submit_request(
    db: Database,
    user_id: int,
    product_id: int,
    amount: int,
    transaction_id: str,
    payment_method: str = "upi",
) -> Dict[str, Any]:
    """Record a payment claim in the pending state.

    The amount is stored as claimed. Only one pending request per user and
    product is accepted at a time.
    """
    duplicate = db["paymentrequest"].find_one(
        {"user_id": user_id, "product_id": product_id, "status": PaymentStatus.pending.value}
    )
    if duplicate is not None:
        raise Conflict("A payment request for this product is already awaiting review")
    transaction_id = (transaction_id or "").strip()
    if not transaction_id:
        raise BadRequest("Transaction ID is required")
    request = PaymentRequest(
        user_id=user_id,
        product_id=product_id,
        amount=amount,
        transaction_id=transaction_id,
        payment_method=payment_method,
    )
    request_id = db.create_document("paymentrequest", request)
    logger.info("Payment request %s submitted by user %s for product %s", request_id, user_id, product_id)
    return db.get_document("paymentrequest", request_id)


def get_user_requests(db: Database, user_id: int) -> List[Dict[str, Any]]:
    return db.get_documents("paymentrequest", {"user_id": user_id})


def get_request_for_user(db: Database, request_id: int, user_id: int) -> Dict[str, Any]:
    request = db.get_document("paymentrequest", request_id)
    # absent and foreign rows look the same to the caller
    if request is None or request["user_id"] != user_id:
        raise Forbidden()
    return request


def get_user_deliverables(db: Database, user_id: int) -> List[Dict[str, Any]]:
    return db.get_documents("coursedeliverable", {"user_id": user_id})


def get_deliverable_for_user(db: Database, payment_request_id: int, user_id: int) -> Dict[str, Any]:
    deliverable = db.latest("coursedeliverable", {"payment_request_id": payment_request_id})
    if deliverable is None or deliverable["user_id"] != user_id:
        raise Forbidden()
    return deliverable


# ---------------------- Admin side ----------------------


def list_all(db: Database) -> List[Dict[str, Any]]:
    return db.get_documents("paymentrequest")


def get_request(db: Database, request_id: int) -> Dict[str, Any]:
    request = db.get_document("paymentrequest", request_id)
    if request is None:
        raise NotFound("Payment request not found")
    return request


def transition(db: Database, request_id: int, target: PaymentStatus, notes: Optional[str] = None) -> Dict[str, Any]:
    fields: Dict[str, Any] = {"status": target.value}
    if notes:
        fields["notes"] = notes
    sources = [s.value for s in TRANSITIONS[target]]
    doc = db.update_document("paymentrequest", {"_id": request_id, "status": {"$in": sources}}, fields)
    if doc is None:
        current = get_request(db, request_id)
        raise Conflict(f"Cannot move payment request from {current['status']} to {target.value}")
    logger.info("Payment request %s is now %s", request_id, target.value)
    return doc


def approve(db: Database, request_id: int, notes: Optional[str] = None) -> Dict[str, Any]:
    return transition(db, request_id, PaymentStatus.approved, notes)


def reject(db: Database, request_id: int, notes: Optional[str] = None) -> Dict[str, Any]:
    return transition(db, request_id, PaymentStatus.rejected, notes)


def deliver(
    db: Database,
    request_id: int,
    delivery_type: DeliveryType,
    access_link: Optional[str] = None,
    api_key: Optional[str] = None,
    credentials: Optional[str] = None,
    expires_at: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Grant access for an approved request and mark it delivered.

    The deliverable is written first and the status moved second; if the status
    change fails the deliverable is removed again. A request can be delivered
    once, later calls raise Conflict.
    """
    request = get_request(db, request_id)
    if not can_transition(request["status"], PaymentStatus.delivered):
        raise Conflict(f"Cannot deliver a payment request that is {request['status']}")

    deliverable = CourseDeliverable(
        product_id=request["product_id"],
        payment_request_id=request_id,
        user_id=request["user_id"],
        delivery_type=delivery_type,
        access_link=access_link,
        api_key=api_key,
        credentials=credentials,
        expires_at=expires_at,
    )
    with UnitOfWork(f"delivery of payment request {request_id}") as uow:
        try:
            deliverable_id = db.create_document("coursedeliverable", deliverable)
        except DuplicateKeyError:
            raise Conflict("Content was already delivered for this payment request")
        uow.on_rollback(db["coursedeliverable"].delete_one, {"_id": deliverable_id})
        transition(db, request_id, PaymentStatus.delivered)
    return db.get_document("coursedeliverable", deliverable_id)


def update_deliverable(db: Database, deliverable_id: int, fields: Dict[str, Any]) -> Dict[str, Any]:
    changes = {k: v for k, v in fields.items() if k in DELIVERABLE_FIELDS}
    doc = db.update_document("coursedeliverable", {"_id": deliverable_id}, changes)
    if doc is None:
        raise NotFound("Deliverable not found")
    return doc
