import logging
import math
import re
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from bson.errors import InvalidId
from fastapi import FastAPI, HTTPException, Depends, Query, Body, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import DuplicateKeyError, PyMongoError

import config
import database
from auth import verify_token, require_admin, require_librarian, ensure_owner
from database import (
    create_document,
    get_documents,
    get_document_by_id,
    find_document,
    count_documents,
    update_document,
    delete_document,
    delete_documents,
    insert_result,
)
from payments import PaymentError, StripeClient, get_payments, build_invoice, success_url, cancel_url
from schemas import (
    UserCreate,
    ProfileUpdate,
    RoleUpdate,
    BookCreate,
    StatusUpdate,
    OrderCreate,
    DeliveryStatusUpdate,
    WishlistCreate,
    CheckoutRequest,
    PaymentConfirmation,
    ReviewCreate,
)

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger("bookcourier")

NEWEST_FIRST = [("createdAt", DESCENDING)]
BOOK_SORTS = {
    "low-to-high": [("price", ASCENDING), ("createdAt", DESCENDING)],
    "high-to-low": [("price", DESCENDING), ("createdAt", DESCENDING)],
}
# fields a librarian may not overwrite through the generic book update
PROTECTED_BOOK_FIELDS = {"_id", "id", "createdBy", "createdAt"}
LATEST_BOOKS_LIMIT = 8
RELATED_BOOKS_LIMIT = 4
REVIEWS_LIMIT = 5


# ------------------------- Startup -----------------------------
def seed_admin():
    if not config.ADMIN_EMAIL:
        return
    database.collection("users").update_one(
        {"email": config.ADMIN_EMAIL},
        {"$set": {"role": "admin"}, "$setOnInsert": {"name": "Admin", "createdAt": database.now()}},
        upsert=True,
    )
    logger.info("Ensured admin account %s", config.ADMIN_EMAIL)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        database.ensure_indexes()
        seed_admin()
    else:
        logger.warning("Database not configured; set DATABASE_URL and DATABASE_NAME")
    yield


app = FastAPI(title="BookCourier API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ------------------------- Errors ------------------------------
@app.exception_handler(InvalidId)
async def invalid_id_handler(request: Request, exc: InvalidId):
    return JSONResponse(status_code=404, content={"detail": "Resource not found"})


@app.exception_handler(PaymentError)
async def payment_error_handler(request: Request, exc: PaymentError):
    return JSONResponse(status_code=500, content={"detail": "Payment processor error"})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def _total_pages(total: int, limit: int) -> int:
    return math.ceil(total / limit)


# ------------------------- Basic Routes -----------------------
@app.get("/")
def root():
    return {"message": "Hello from BookCourier server"}


# ------------------------- Users ------------------------------
@app.post("/users")
def register_user(payload: UserCreate):
    email = str(payload.email).lower()
    if find_document("users", {"email": email}):
        return {"message": "User already exist"}
    user = payload.model_dump(exclude_none=True)
    user.update(email=email, role="user")
    try:
        new_id = create_document("users", user)
    except DuplicateKeyError:
        return {"message": "User already exist"}
    return insert_result(new_id)


@app.get("/users")
def list_users(email: str = Depends(require_admin)):
    return get_documents("users", {"email": {"$ne": email}})


@app.get("/user/role")
def get_user_role(email: str = Depends(verify_token)):
    user = find_document("users", {"email": email})
    return {"role": user.get("role") if user else None}


@app.patch("/users/my-profile/{email}")
def update_profile(email: str, payload: ProfileUpdate, principal: str = Depends(verify_token)):
    ensure_owner(principal, email)
    fields = payload.model_dump(exclude_none=True)
    fields["updatedAt"] = database.now()
    result = database.collection("users").update_one({"email": email.lower()}, {"$set": fields})
    return database.update_result(result)


@app.patch("/update-user/{user_id}", dependencies=[Depends(require_admin)])
def update_user_role(user_id: str, payload: RoleUpdate):
    return update_document("users", user_id, {"role": payload.role})


@app.get("/users/{email}", dependencies=[Depends(verify_token)])
def get_user(email: str):
    user = find_document("users", {"email": email.lower()})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


# ------------------------- Books ------------------------------
@app.post("/books")
def create_book(payload: BookCreate, email: str = Depends(require_librarian)):
    book = payload.model_dump()
    book["createdBy"] = email
    return insert_result(create_document("books", book))


@app.get("/books")
def search_books(
    search: str = Query("", description="Case-insensitive match on bookName"),
    sort: Optional[str] = Query(None, description="low-to-high or high-to-low"),
    category: Optional[str] = Query(None, alias="filter", description="Category filter"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
):
    filter_q = {
        "status": "published",
        "bookName": {"$regex": re.escape(search), "$options": "i"},
    }
    if category:
        filter_q["category"] = category
    total = count_documents("books", filter_q)
    books = get_documents(
        "books",
        filter_q,
        limit=limit,
        sort=BOOK_SORTS.get(sort, NEWEST_FIRST),
        skip=(page - 1) * limit,
    )
    return {"books": books, "totalPages": _total_pages(total, limit)}


@app.get("/related-books/{book_id}")
def related_books(book_id: str):
    book = get_document_by_id("books", book_id)
    if not book:
        raise HTTPException(status_code=404, detail="Book not found")
    filter_q = {
        "_id": {"$ne": database.object_id(book_id)},
        "category": book.get("category"),
        "status": "published",
    }
    return get_documents("books", filter_q, limit=RELATED_BOOKS_LIMIT, sort=NEWEST_FIRST)


@app.get("/all-books", dependencies=[Depends(require_admin)])
def all_books():
    return get_documents("books", sort=NEWEST_FIRST)


@app.get("/my-books")
def my_books(email: str = Depends(require_librarian)):
    return get_documents("books", {"createdBy": email}, sort=NEWEST_FIRST)


@app.patch("/books/update-status/{book_id}", dependencies=[Depends(verify_token)])
def update_book_status(book_id: str, payload: StatusUpdate):
    return update_document("books", book_id, {"status": payload.status})


@app.patch("/books/update/{book_id}")
def update_book(book_id: str, payload: Dict[str, Any] = Body(...), email: str = Depends(require_librarian)):
    book = get_document_by_id("books", book_id)
    if not book:
        raise HTTPException(status_code=404, detail="Book not found")
    ensure_owner(email, book.get("createdBy"))
    fields = {k: v for k, v in payload.items() if k not in PROTECTED_BOOK_FIELDS}
    return update_document("books", book_id, fields)


@app.get("/books/{book_id}")
def get_book(book_id: str):
    book = get_document_by_id("books", book_id)
    if not book:
        raise HTTPException(status_code=404, detail="Book not found")
    return book


@app.get("/latest-books")
def latest_books():
    return get_documents("books", limit=LATEST_BOOKS_LIMIT, sort=NEWEST_FIRST)


@app.delete("/books/delete/{book_id}", dependencies=[Depends(require_admin)])
def delete_book(book_id: str):
    result = delete_document("books", book_id)
    orders = delete_documents("orders", {"bookId": book_id})
    logger.info("Deleted book %s and %s related orders", book_id, orders["deletedCount"])
    return result


# ------------------------- Orders -----------------------------
@app.post("/orders")
def create_order(payload: OrderCreate, email: str = Depends(verify_token)):
    order = payload.model_dump(exclude_none=True)
    order.update(userEmail=email, orderStatus="pending", paymentStatus="unpaid", transactionId=None)
    return insert_result(create_document("orders", order))


@app.get("/orders/owner")
def owner_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    email: str = Depends(require_librarian),
):
    filter_q = {"owner": email}
    total = count_documents("orders", filter_q)
    result = get_documents("orders", filter_q, limit=limit, sort=NEWEST_FIRST, skip=(page - 1) * limit)
    return {"result": result, "totalPages": _total_pages(total, limit)}


@app.get("/my-orders")
def my_orders(email: str = Depends(verify_token)):
    return get_documents("orders", {"userEmail": email}, sort=NEWEST_FIRST)


@app.patch("/orders/cancel/{order_id}", dependencies=[Depends(verify_token)])
def cancel_order(order_id: str):
    # only pending orders match; a repeat cancel reports zero modified
    return update_document(
        "orders",
        order_id,
        {"orderStatus": "cancelled", "cancelledAt": database.now()},
        extra_filter={"orderStatus": "pending"},
    )


@app.patch("/orders/status/{order_id}", dependencies=[Depends(require_librarian)])
def update_order_status(order_id: str, payload: DeliveryStatusUpdate):
    return update_document("orders", order_id, {"orderStatus": payload.orderStatus})


@app.get("/orders-stats", dependencies=[Depends(verify_token)])
def order_stats():
    pipeline = [
        {"$match": {"createdAt": {"$exists": True}}},
        {"$group": {
            "_id": {"year": {"$year": "$createdAt"}, "month": {"$month": "$createdAt"}},
            "count": {"$sum": 1},
        }},
        {"$sort": {"_id.year": 1, "_id.month": 1}},
    ]
    try:
        groups = list(database.collection("orders").aggregate(pipeline))
    except PyMongoError as exc:
        logger.error("Order statistics aggregation failed: %s", exc)
        raise HTTPException(status_code=500, detail="Failed to load order statistics")
    return [
        {"month": f"{g['_id']['year']:04d}-{g['_id']['month']:02d}", "count": g["count"]}
        for g in groups
    ]


# ------------------------- Wishlist ---------------------------
@app.post("/wishlist")
def add_to_wishlist(payload: WishlistCreate, email: str = Depends(verify_token)):
    if payload.userEmail:
        ensure_owner(email, str(payload.userEmail))
    entry = payload.model_dump(exclude_none=True)
    entry["userEmail"] = email
    if find_document("wishlist", {"userEmail": email, "bookId": payload.bookId}):
        return {"message": "This book already in your wishlist!"}
    try:
        new_id = create_document("wishlist", entry)
    except DuplicateKeyError:
        return {"message": "This book already in your wishlist!"}
    return insert_result(new_id)


@app.delete("/wishlist/{entry_id}", dependencies=[Depends(verify_token)])
def remove_from_wishlist(entry_id: str):
    return delete_document("wishlist", entry_id)


@app.get("/my-wishlist/{email}")
def my_wishlist(email: str, principal: str = Depends(verify_token)):
    ensure_owner(principal, email)
    return get_documents("wishlist", {"userEmail": email.lower()}, sort=NEWEST_FIRST)


# ------------------------- Payments ---------------------------
def _payable_order(order_id: str, email: str) -> dict:
    order = get_document_by_id("orders", order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    ensure_owner(email, order.get("userEmail"))
    return order


@app.post("/create-checkout-session")
def create_checkout_session(
    payload: CheckoutRequest,
    email: str = Depends(verify_token),
    payments: StripeClient = Depends(get_payments),
):
    order = _payable_order(payload.orderId, email)
    if order.get("orderStatus") != "pending" or order.get("paymentStatus") != "unpaid":
        raise HTTPException(status_code=400, detail="Order is not awaiting payment")
    if not order.get("price"):
        raise HTTPException(status_code=400, detail="Order has no price")
    session = payments.create_checkout_session(
        order_id=order["id"],
        book_id=order.get("bookId"),
        book_name=order.get("bookName") or "Book",
        price=float(order["price"]),
        user_name=payload.userName,
        customer_email=email,
        success_url=success_url(),
        cancel_url=cancel_url(),
    )
    return {"url": session.get("url")}


@app.post("/payment-success")
def payment_success(
    payload: PaymentConfirmation,
    email: str = Depends(verify_token),
    payments: StripeClient = Depends(get_payments),
):
    session = payments.retrieve_session(payload.sessionId)
    if session.get("payment_status") != "paid":
        raise HTTPException(status_code=400, detail="Payment not completed")

    invoice = build_invoice(session)
    transaction_id = invoice["transactionId"]
    order_id = invoice["orderId"]
    if not order_id:
        raise HTTPException(status_code=400, detail="Checkout session carries no order")
    _payable_order(order_id, email)

    if find_document("invoices", {"transactionId": transaction_id}):
        logger.info("Invoice for transaction %s already recorded", transaction_id)
    else:
        try:
            create_document("invoices", invoice, stamp=None)
            logger.info("Recorded invoice for transaction %s (order %s)", transaction_id, order_id)
        except DuplicateKeyError:
            logger.info("Invoice for transaction %s recorded concurrently", transaction_id)

    result = update_document("orders", order_id, {"transactionId": transaction_id, "paymentStatus": "paid"})
    return {"transactionId": transaction_id, "orderId": order_id, **result}


@app.get("/my-invoice")
def my_invoices(email: str = Depends(verify_token)):
    return get_documents("invoices", {"buyerEmail": email}, sort=[("paidAt", DESCENDING)])


# ------------------------- Reviews ----------------------------
@app.post("/book-review")
def add_review(payload: ReviewCreate, email: str = Depends(verify_token)):
    review = payload.model_dump(exclude_none=True)
    review["reviewerEmail"] = email
    return insert_result(create_document("reviews", review, stamp="reviewedAt"))


@app.get("/book-review/{book_id}")
def book_reviews(book_id: str):
    return get_documents("reviews", {"bookId": book_id}, limit=REVIEWS_LIMIT, sort=[("reviewedAt", DESCENDING)])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
