from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Callable, Optional

import httpx
import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from cart import CartService
from catalog import Catalog
from checkout import CheckoutEngine
from collaborators import DevTokenVerifier, OrderNotifier, RemoteIdentityVerifier, WalletClient
from config import Settings, configure_logging
from database import DocumentStore, open_store
from errors import CartServiceError
from ratings import RatingService
from schemas import (
    AddToCartRequest,
    AuthUser,
    CheckoutRequest,
    ItemCreate,
    ItemUpdate,
    RatingRequest,
    StatusUpdate,
    StockUpdate,
    UpdateCartItemRequest,
)
from transactions import TransactionLedger

logger = structlog.get_logger(__name__)


@dataclass
class Services:
    store: DocumentStore
    catalog: Catalog
    carts: CartService
    ledger: TransactionLedger
    checkout: CheckoutEngine
    ratings: RatingService
    verifier: Any
    wallet_factory: Callable[[Optional[str]], Any]
    notifier_factory: Callable[[Optional[str]], Any]
    http: Optional[httpx.Client] = None

    def close(self) -> None:
        if self.http is not None:
            self.http.close()


def build_services(settings: Settings, store: Optional[DocumentStore] = None) -> Services:
    store = store or open_store(settings)
    http = httpx.Client(base_url=settings.auth_service_url, timeout=settings.http_timeout)
    catalog = Catalog(store)
    carts = CartService(store, catalog)
    ledger = TransactionLedger(store)
    verifier = DevTokenVerifier() if settings.auth_mode == "dev" else RemoteIdentityVerifier(http)
    return Services(
        store=store,
        catalog=catalog,
        carts=carts,
        ledger=ledger,
        checkout=CheckoutEngine(carts, ledger, catalog),
        ratings=RatingService(store, catalog, ledger),
        verifier=verifier,
        wallet_factory=lambda authorization: WalletClient(http, authorization),
        notifier_factory=lambda authorization: OrderNotifier(http, authorization),
        http=http,
    )


# ----- Utilities -----

def get_services(request: Request) -> Services:
    return request.app.state.services


def credentials(request: Request) -> Optional[str]:
    header = request.headers.get("authorization")
    if header:
        return header
    token = request.cookies.get("token")
    return f"Bearer {token}" if token else None


def current_user(request: Request, services: Services = Depends(get_services)) -> AuthUser:
    return services.verifier.verify(credentials(request))


def ok(message: str, **payload) -> dict:
    return {"success": True, "message": message, **payload}


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("service_starting", storage=app.state.services.store.backend,
                    auth_mode=settings.auth_mode)
        yield
        logger.info("service_stopping")
        app.state.services.close()

    app = FastAPI(title="Cart Service API", lifespan=lifespan)
    app.state.services = services or build_services(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def clear_log_context(request: Request, call_next):
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(path=request.url.path, method=request.method)
        return await call_next(request)

    @app.exception_handler(CartServiceError)
    async def service_error_handler(request: Request, exc: CartServiceError):
        if exc.status_code >= 500:
            logger.warning("request_failed", code=exc.code, kind=exc.kind.value, message=exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "code": exc.code, "message": exc.message},
        )

    # ----- Health -----
    @app.get("/")
    def read_root():
        return {"message": "Cart Service API running"}

    @app.get("/test")
    def test_database(services: Services = Depends(get_services)):
        response = {
            "backend": "✅ Running",
            "database": "❌ Not Available",
            "storage": services.store.backend,
            "database_name": services.store.name,
            "connection_status": "Not Connected",
            "collections": [],
        }
        try:
            response["collections"] = services.store.list_collection_names()[:10]
            response["database"] = "✅ Connected & Working"
            response["connection_status"] = "Connected"
        except Exception as e:
            response["database"] = f"⚠️ Connected but Error: {str(e)[:80]}"
        response["database_url"] = "✅ Set" if settings.database_url else "❌ Not Set"
        return response

    # ----- Catalog -----
    @app.get("/api/items")
    def list_items(q: Optional[str] = None, category: Optional[str] = None,
                   has_offer: bool = False, limit: int = 0,
                   services: Services = Depends(get_services)):
        items = services.catalog.list(q=q, category=category, has_offer=has_offer, limit=max(limit, 0))
        return ok("Items retrieved successfully", items=items, total=len(items))

    @app.get("/api/items/{item_id}")
    def get_item(item_id: str, services: Services = Depends(get_services)):
        return ok("Item retrieved successfully", item=services.catalog.lookup(item_id))

    @app.post("/api/items", status_code=201)
    def create_item(item: ItemCreate, services: Services = Depends(get_services)):
        return ok("Item created successfully", item=services.catalog.create(item))

    @app.put("/api/items/{item_id}")
    def update_item(item_id: str, item: ItemUpdate, services: Services = Depends(get_services)):
        return ok("Item updated successfully", item=services.catalog.update(item_id, item))

    @app.patch("/api/items/{item_id}/stock")
    def update_stock(item_id: str, body: StockUpdate, services: Services = Depends(get_services)):
        return ok("Stock updated successfully", item=services.catalog.set_stock(item_id, body.stock_quantity))

    @app.delete("/api/items/{item_id}")
    def delete_item(item_id: str, services: Services = Depends(get_services)):
        return ok("Item deleted successfully", item=services.catalog.delete(item_id))

    # ----- Cart -----
    @app.get("/api/cart")
    def get_cart(user: AuthUser = Depends(current_user), services: Services = Depends(get_services)):
        return ok("Cart retrieved successfully", cart=services.carts.get(user.user_id))

    @app.post("/api/cart/items", status_code=201)
    def add_to_cart(body: AddToCartRequest, user: AuthUser = Depends(current_user),
                    services: Services = Depends(get_services)):
        cart = services.carts.add(user.user_id, body.item_id, body.quantity)
        return ok("Item added to cart successfully", cart=cart)

    @app.put("/api/cart/items/{item_id}")
    def update_cart_item(item_id: str, body: UpdateCartItemRequest, user: AuthUser = Depends(current_user),
                         services: Services = Depends(get_services)):
        cart = services.carts.set_quantity(user.user_id, item_id, body.quantity)
        message = "Item removed from cart" if body.quantity <= 0 else "Cart item updated successfully"
        return ok(message, cart=cart)

    @app.delete("/api/cart/items/{item_id}")
    def remove_from_cart(item_id: str, user: AuthUser = Depends(current_user),
                         services: Services = Depends(get_services)):
        return ok("Item removed from cart successfully", cart=services.carts.remove(user.user_id, item_id))

    @app.delete("/api/cart")
    def clear_cart(user: AuthUser = Depends(current_user), services: Services = Depends(get_services)):
        return ok("Cart cleared successfully", cart=services.carts.clear(user.user_id))

    # ----- Checkout / Transactions -----
    @app.post("/api/cart/checkout", status_code=201)
    def checkout(body: CheckoutRequest, request: Request, user: AuthUser = Depends(current_user),
                 services: Services = Depends(get_services)):
        authorization = credentials(request)
        transaction = services.checkout.checkout(
            user.user_id,
            body.payment_method,
            notes=body.notes,
            wallet=services.wallet_factory(authorization),
            notifier=services.notifier_factory(authorization),
        )
        return ok("Checkout successful", transaction_id=transaction.id, transaction=transaction)

    @app.get("/api/cart/transactions")
    def transaction_history(user: AuthUser = Depends(current_user), services: Services = Depends(get_services)):
        transactions = services.ledger.history(user.user_id)
        return ok("Transaction history retrieved successfully", transactions=transactions)

    @app.get("/api/cart/transactions/{transaction_id}")
    def get_transaction(transaction_id: str, user: AuthUser = Depends(current_user),
                        services: Services = Depends(get_services)):
        transaction = services.ledger.get(user.user_id, transaction_id)
        return ok("Transaction retrieved successfully", transaction=transaction)

    @app.patch("/api/transactions/{transaction_id}/status")
    def update_transaction_status(transaction_id: str, body: StatusUpdate,
                                  services: Services = Depends(get_services)):
        transaction = services.ledger.transition(transaction_id, body.status)
        return ok("Transaction status updated successfully", transaction=transaction)

    # ----- Ratings -----
    @app.get("/api/ratings/item/{item_id}/summary")
    def rating_summary(item_id: str, services: Services = Depends(get_services)):
        return ok("Rating summary retrieved successfully", summary=services.ratings.item_summary(item_id))

    @app.get("/api/ratings/ratable")
    def ratable_items(user: AuthUser = Depends(current_user), services: Services = Depends(get_services)):
        items = services.ratings.ratable_items(user.user_id)
        return ok("Ratable items retrieved successfully", items=items, total=len(items))

    @app.get("/api/ratings")
    def my_ratings(user: AuthUser = Depends(current_user), services: Services = Depends(get_services)):
        ratings = services.ratings.list_user_ratings(user.user_id)
        return ok("Ratings retrieved successfully", ratings=ratings, total=len(ratings))

    @app.get("/api/ratings/{item_id}")
    def my_rating(item_id: str, user: AuthUser = Depends(current_user),
                  services: Services = Depends(get_services)):
        rating = services.ratings.get_user_rating(user.user_id, item_id)
        return ok("Rating retrieved successfully", rating=rating)

    @app.post("/api/ratings", status_code=201)
    def rate_item(body: RatingRequest, user: AuthUser = Depends(current_user),
                  services: Services = Depends(get_services)):
        result = services.ratings.rate(user.user_id, body.item_id, body.rating, body.review)
        return ok(
            "Rating submitted successfully",
            rating=result.rating,
            item_stats={"average_rating": result.average_rating, "total_ratings": result.total_ratings},
        )

    @app.delete("/api/ratings/{item_id}")
    def delete_rating(item_id: str, user: AuthUser = Depends(current_user),
                      services: Services = Depends(get_services)):
        avg, count = services.ratings.delete(user.user_id, item_id)
        return ok(
            "Rating deleted successfully",
            item_stats={"average_rating": avg, "total_ratings": count},
        )

    return app


settings = Settings.from_env()
configure_logging(settings.log_level, settings.log_format)
app = create_app(settings)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
