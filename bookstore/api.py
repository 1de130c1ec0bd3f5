import logging
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Depends, Security, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, ConfigDict, Field

from bookstore import payments as payment_records
from bookstore.book import Book
from bookstore.config import settings
from bookstore.database import format_timestamp, initialize_database, utcnow
from bookstore.exceptions import (
    BookstoreError,
    ConfigurationMissing,
    InvalidState,
    NotFound,
    TransactionFailure,
    ValidationError,
)
from bookstore.library import Library
from bookstore.payment import PaymentMethod
from bookstore.rental_config import ensure_config, get_config, update_config
from bookstore.rentals import RentalManager
from bookstore.sales import SalesManager

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

library = Library()
rentals = RentalManager(library)
sales = SalesManager(library)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Pricing is impossible without the config slot: refuse to start without it.
    initialize_database()
    try:
        ensure_config()
    except ConfigurationMissing:
        logger.critical("Startup aborted: rental config not found. Seed the database before serving.")
        raise
    logger.info(f"{settings.app_name} {settings.app_version} started ({settings.environment})")
    yield


app = FastAPI(title=settings.app_name, version=settings.app_version, debug=settings.debug, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Security ---
api_key_header = APIKeyHeader(name="X-API-Key")
user_id_header = APIKeyHeader(name="X-User-Id", auto_error=False)


def get_api_key(api_key: str = Security(api_key_header)):
    """Dependency that checks the admin API key."""
    if api_key == settings.api_key:
        return api_key
    raise HTTPException(status_code=403, detail="Could not validate credentials")


def current_user_id(user_id: Optional[str] = Security(user_id_header)) -> str:
    """The signed-in user, as resolved by the session layer in front of the API."""
    if not user_id or not user_id.strip():
        raise HTTPException(status_code=401, detail="Not signed in")
    return user_id.strip()


def _http_error(exc: BookstoreError) -> HTTPException:
    """Map a bookstore error to the HTTP response the client sees."""
    if isinstance(exc, NotFound):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=422, detail={"message": str(exc), "field_errors": exc.field_errors})
    if isinstance(exc, InvalidState):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, ConfigurationMissing):
        return HTTPException(status_code=500, detail=str(exc))
    if isinstance(exc, TransactionFailure):
        return HTTPException(status_code=500, detail="The operation failed; nothing was saved. Please retry.")
    return HTTPException(status_code=500, detail=str(exc))


# --- Models ---
class BookModel(BaseModel):
    id: int
    title: str
    author: str
    isbn: str
    purchase_amount: Decimal
    description: str | None = None
    pdf_link: str | None = None
    image_url: str | None = None
    created_at: str | None = None


class BookCreateModel(BaseModel):
    title: str
    author: str
    isbn: str
    purchase_amount: Decimal = Field(ge=0)
    description: str | None = None
    pdf_link: str | None = None
    image_url: str | None = None


class UpdateBookModel(BaseModel):
    title: str | None = None
    author: str | None = None
    isbn: str | None = None
    purchase_amount: Decimal | None = Field(default=None, ge=0)
    description: str | None = None
    pdf_link: str | None = None
    image_url: str | None = None


class PaymentModel(BaseModel):
    id: int
    amount: Decimal
    payment_method: PaymentMethod
    type: str
    created_at: str
    book_sale_id: int | None = None
    rental_book_id: int | None = None
    book_title: str | None = None


class RentalModel(BaseModel):
    id: int
    book_id: int
    user_id: str
    rented_at: str
    return_date: str | None = None
    is_returned: bool
    book_title: str | None = None
    payment: PaymentModel | None = None


class SaleModel(BaseModel):
    id: int
    book_id: int
    user_id: str
    created_at: str
    book_title: str | None = None
    payment: PaymentModel | None = None


class RentalCostModel(BaseModel):
    rental_id: int
    as_of: str
    rental_days: int
    free_rental_days: int
    tier_one_days: int
    tier_one_cost: Decimal
    tier_two_days: int
    tier_two_cost: Decimal
    cap_cost: Decimal
    subtotal: Decimal
    discount: Decimal
    total: Decimal


class PaymentDetailsModel(BaseModel):
    """Card details are checked for shape only and never stored."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name_on_card: str = Field(min_length=1, description="Name on card is required")
    card_number: str = Field(pattern=r"^[0-9]{16}$", description="16 digit card number")
    expiration_date: str = Field(min_length=1)
    cvv: str = Field(pattern=r"^[0-9]{3,4}$", description="3 or 4 digits")
    payment_method: PaymentMethod
    payment_amount: Decimal | None = Field(default=None, ge=0, description="Amount the client expects to pay")


class RentalConfigModel(BaseModel):
    id: int
    tier_one_rate_per_day: Decimal
    tier_two_rate_per_day: Decimal
    updated_at: str | None = None


class RentalConfigUpdateModel(BaseModel):
    tier_one_rate_per_day: Decimal = Field(ge=0)
    tier_two_rate_per_day: Decimal = Field(ge=0)


class StatsModel(BaseModel):
    total_books: int
    unique_authors: int
    active_rentals: int
    returned_rentals: int
    total_sales: int
    sales_revenue: Decimal
    rental_revenue: Decimal


# --- Health ---
@app.get("/health")
def health_check():
    """Health check; reports whether pricing is configured."""
    try:
        get_config()
        config_ok = True
    except ConfigurationMissing:
        config_ok = False
    return {
        "status": "healthy" if config_ok else "degraded",
        "timestamp": format_timestamp(utcnow()),
        "total_books": len(library.list_books()),
        "rental_config": config_ok,
    }


# --- Catalog ---
@app.get("/books", response_model=List[BookModel])
def get_books():
    """List every book in the catalog, newest first."""
    return [BookModel(**b.to_dict()) for b in library.list_books()]


@app.get("/books/search", response_model=List[BookModel])
def search_books(q: str = Query(..., min_length=1)):
    """Search books by title, author or ISBN."""
    return [BookModel(**b.to_dict()) for b in library.search_books(q)]


@app.get("/books/{book_id}", response_model=BookModel)
def get_book(book_id: int):
    book = library.find_book(book_id)
    if not book:
        raise HTTPException(status_code=404, detail="book not found")
    return BookModel(**book.to_dict())


@app.post("/books", response_model=BookModel, dependencies=[Depends(get_api_key)])
def add_book(payload: BookCreateModel):
    """Add a book to the catalog."""
    book = Book(**payload.model_dump())
    try:
        library.add_book(book)
    except BookstoreError as e:
        raise _http_error(e)
    return BookModel(**book.to_dict())


@app.put("/books/{book_id}", response_model=BookModel, dependencies=[Depends(get_api_key)])
def update_book(book_id: int, update: UpdateBookModel):
    """Update some fields of a book."""
    try:
        book = library.update_book(book_id, **update.model_dump())
    except BookstoreError as e:
        raise _http_error(e)
    if not book:
        raise HTTPException(status_code=404, detail="book not found")
    return BookModel(**book.to_dict())


@app.delete("/books/{book_id}", dependencies=[Depends(get_api_key)])
def delete_book(book_id: int):
    """Delete a book that was never rented or sold."""
    try:
        removed = library.remove_book(book_id)
    except BookstoreError as e:
        raise _http_error(e)
    if not removed:
        raise HTTPException(status_code=404, detail="book not found")
    return {"message": "Book removed."}


# --- Renting ---
@app.post("/books/{book_id}/rent", response_model=RentalModel)
def rent_book(book_id: int, user_id: str = Depends(current_user_id)):
    """Rent a book. Renting is free for the first 30 days and paid on return."""
    try:
        rental = rentals.rent_book(book_id, user_id)
    except BookstoreError as e:
        raise _http_error(e)
    return RentalModel(**rental.to_dict())


@app.get("/rentals", response_model=List[RentalModel])
def get_my_rentals(user_id: str = Depends(current_user_id)):
    return [RentalModel(**r.to_dict()) for r in rentals.list_rentals(user_id)]


def _own_rental(rental_id: int, user_id: str):
    try:
        rental = rentals.get_rental(rental_id)
    except BookstoreError as e:
        raise _http_error(e)
    # Other users' rentals are reported as missing
    if rental.user_id != user_id:
        raise HTTPException(status_code=404, detail="rental not found")
    return rental


@app.get("/rentals/{rental_id}", response_model=RentalModel)
def get_rental(rental_id: int, user_id: str = Depends(current_user_id)):
    return RentalModel(**_own_rental(rental_id, user_id).to_dict())


@app.get("/rentals/{rental_id}/cost", response_model=RentalCostModel)
def get_rental_cost(rental_id: int, user_id: str = Depends(current_user_id)):
    """Preview what returning the rental now would cost (or what it cost, once returned)."""
    rental = _own_rental(rental_id, user_id)
    now = utcnow()
    try:
        cost = rentals.quote(rental_id, now=now)
    except BookstoreError as e:
        raise _http_error(e)
    return RentalCostModel(
        rental_id=rental_id,
        as_of=format_timestamp(rental.priced_as_of(now)),
        **cost.to_dict(),
    )


@app.post("/rentals/{rental_id}/return", response_model=PaymentModel)
def return_rental(rental_id: int, details: PaymentDetailsModel, user_id: str = Depends(current_user_id)):
    """Return a rented book and pay for it. The amount is computed server-side."""
    _own_rental(rental_id, user_id)
    try:
        payment = rentals.return_rental(rental_id, details.payment_method, details.payment_amount)
    except BookstoreError as e:
        raise _http_error(e)
    return PaymentModel(**payment.to_dict())


# --- Purchasing ---
@app.post("/books/{book_id}/purchase", response_model=PaymentModel)
def purchase_book(book_id: int, details: PaymentDetailsModel, user_id: str = Depends(current_user_id)):
    """Buy a book at its catalog price."""
    try:
        payment = sales.purchase_book(book_id, user_id, details.payment_method, details.payment_amount)
    except BookstoreError as e:
        raise _http_error(e)
    return PaymentModel(**payment.to_dict())


@app.get("/purchases", response_model=List[BookModel])
def get_purchased_books(user_id: str = Depends(current_user_id)):
    return [BookModel(**b.to_dict()) for b in sales.purchased_books(user_id)]


# --- Invoices ---
@app.get("/payments", response_model=List[PaymentModel])
def get_my_payments(user_id: str = Depends(current_user_id)):
    """Invoices for the user's purchases and returned rentals."""
    return [PaymentModel(**p.to_dict()) for p in payment_records.list_payments(user_id)]


@app.get("/payments/{payment_id}", response_model=PaymentModel)
def get_payment(payment_id: int, user_id: str = Depends(current_user_id)):
    try:
        if payment_records.payment_owner(payment_id) != user_id:
            raise HTTPException(status_code=404, detail="payment not found")
        payment = payment_records.get_payment(payment_id)
    except BookstoreError as e:
        raise _http_error(e)
    return PaymentModel(**payment.to_dict())


# --- Admin ---
@app.get("/admin/rentals", response_model=List[RentalModel], dependencies=[Depends(get_api_key)])
def get_all_rentals():
    return [RentalModel(**r.to_dict()) for r in rentals.list_rentals()]


@app.get("/admin/sales", response_model=List[SaleModel], dependencies=[Depends(get_api_key)])
def get_all_sales():
    return [SaleModel(**s.to_dict()) for s in sales.list_sales()]


@app.get("/admin/config", response_model=RentalConfigModel, dependencies=[Depends(get_api_key)])
def get_rental_config():
    try:
        config = get_config()
    except BookstoreError as e:
        raise _http_error(e)
    return RentalConfigModel(**config.to_dict())


@app.put("/admin/config", response_model=RentalConfigModel, dependencies=[Depends(get_api_key)])
def put_rental_config(payload: RentalConfigUpdateModel):
    """Overwrite the two per-day rental rates."""
    try:
        config = update_config(payload.tier_one_rate_per_day, payload.tier_two_rate_per_day)
    except BookstoreError as e:
        raise _http_error(e)
    return RentalConfigModel(**config.to_dict())


@app.get("/stats", response_model=StatsModel, dependencies=[Depends(get_api_key)])
def get_stats():
    return StatsModel(**library.get_statistics())


@app.get("/")
def read_root() -> Dict[str, Any]:
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
        "docs": "/docs",
    }
