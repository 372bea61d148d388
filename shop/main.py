import logging
from contextlib import asynccontextmanager
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import List, Optional
from urllib.parse import quote

from fastapi import Depends, FastAPI, Form, HTTPException, Query, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from pydantic import ValidationError

from . import config, schemas
from .accounts import AccountService
from .auth import create_identity_token
from .cart import CartEngine
from .catalog import ProductCatalog
from .checkout import CheckoutLedger
from .db import Database
from .errors import Conflict, InvalidArgument, LoginRequired, NotFound, OutOfStock, StoreUnavailable
from .gate import AccessGate, authorize
from .users import ADMIN_ROLE, USER_ROLE, CredentialStore, RoleStore
from .utils import sanitize_input

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parent
templates = Jinja2Templates(directory=str(BASE_DIR / "templates"))

GENERIC_ERROR = "An unexpected error occurred. Please try again."

# legacy sort keys used by old links
ORDER_BY_ALIASES = {"productName": "name", "productDescription": "description"}


def _to_optional_int(value: Optional[str]) -> Optional[int]:
    if value is None or str(value).strip() == "":
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        raise InvalidArgument(f"{value!r} is not a whole number")


def _to_int(value: Optional[str], default: int) -> int:
    parsed = _to_optional_int(value)
    return default if parsed is None else parsed


def _to_decimal(value: Optional[str]) -> Optional[Decimal]:
    if value is None or str(value).strip() == "":
        return None
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        raise InvalidArgument(f"{value!r} is not a number")
    if not amount.is_finite():
        raise InvalidArgument(f"{value!r} is not a finite number")
    return amount


def _safe_return_url(value: Optional[str]) -> str:
    # only same-site relative paths; "//host" would leave the site
    if value and value.startswith("/") and not value.startswith("//"):
        return value
    return "/"


def _with_error(path: str, message: str) -> RedirectResponse:
    return RedirectResponse(url=f"{path}?error={quote(message)}", status_code=303)


def create_app(settings: Optional[config.Settings] = None, database: Optional[Database] = None) -> FastAPI:
    settings = settings or config.get_settings()
    config.configure_logging(settings.log_level)
    database = database or Database(settings.database_url, timeout=settings.db_timeout_seconds)

    credentials = CredentialStore(database)
    roles = RoleStore(database)
    catalog = ProductCatalog(database, max_page_size=settings.max_page_size)
    cart = CartEngine(database)
    ledger = CheckoutLedger(database)
    accounts = AccountService(database, credentials, roles, ledger)
    gate = AccessGate(roles, settings.secret_key)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        database.open()
        # Create tables if not existing. Schema changes go through migration/bootstrap.py
        database.create_all()
        roles.ensure_roles(USER_ROLE, ADMIN_ROLE)
        logger.info("shop started")
        yield
        database.close()

    app = FastAPI(title="Mini Shop", lifespan=lifespan)
    app.state.settings = settings
    app.state.database = database
    app.state.credentials = credentials
    app.state.roles = roles
    app.state.catalog = catalog
    app.state.cart = cart
    app.state.ledger = ledger
    app.state.accounts = accounts
    app.state.gate = gate

    app.mount("/static", StaticFiles(directory=str(BASE_DIR / "static")), name="static")

    def render(request: Request, name: str, status_code: int = 200, **context) -> HTMLResponse:
        context.setdefault("user", None)
        return templates.TemplateResponse(request, name, context, status_code=status_code)

    def sign_in(response: RedirectResponse, username: str) -> RedirectResponse:
        token = create_identity_token(username, settings.secret_key, settings.token_ttl_seconds)
        response.set_cookie(
            settings.cookie_name, token, max_age=settings.token_ttl_seconds, httponly=True, samesite="lax"
        )
        return response

    def current_user_id(username: str) -> int:
        user = credentials.get_user(username)
        if not user:
            raise NotFound(f"user {username!r} not found")
        return user.id

    # -------------------- error handling --------------------

    @app.exception_handler(LoginRequired)
    async def login_required_handler(request: Request, exc: LoginRequired):
        return RedirectResponse(url=exc.redirect_url, status_code=303)

    @app.exception_handler(StoreUnavailable)
    async def store_unavailable_handler(request: Request, exc: StoreUnavailable):
        logger.error("store unavailable while handling %s: %s", request.url.path, exc, exc_info=exc)
        return render(request, "error.html", status_code=503, message=GENERIC_ERROR)

    @app.exception_handler(NotFound)
    async def not_found_handler(request: Request, exc: NotFound):
        return render(request, "error.html", status_code=404, message=str(exc))

    # -------------------- pages --------------------

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/", response_class=HTMLResponse)
    async def index(request: Request, user: Optional[str] = Depends(authorize())):
        return render(request, "index.html", user=user)

    @app.get("/login", response_class=HTMLResponse)
    async def login_page(request: Request, message: Optional[str] = None, returnUrl: Optional[str] = None):
        return render(request, "login.html", requirements_message=message, return_url=returnUrl)

    @app.post("/login")
    async def login(
        request: Request,
        txtUser: str = Form(default=""),
        txtPwd: str = Form(default=""),
        returnUrl: Optional[str] = Query(default=None),
    ):
        if credentials.verify_credentials(txtUser, txtPwd):
            return sign_in(RedirectResponse(url=_safe_return_url(returnUrl), status_code=303), txtUser)
        return render(
            request, "login.html", status_code=401, message="Wrong username or password", return_url=returnUrl
        )

    @app.get("/logout")
    async def logout():
        response = RedirectResponse(url="/", status_code=303)
        response.delete_cookie(settings.cookie_name)
        return response

    @app.get("/signup", response_class=HTMLResponse)
    async def signup_page(request: Request):
        return render(request, "signup.html", messages=[])

    @app.post("/signup")
    async def signup(
        request: Request,
        username: str = Form(default=""),
        email: str = Form(default=""),
        password: str = Form(default=""),
        confirm_password: str = Form(default=""),
    ):
        result = accounts.signup(username, email, password, confirm_password)
        if not result.ok:
            return render(
                request, "signup.html", status_code=400, username=username, email=email, messages=result.messages
            )
        return sign_in(RedirectResponse(url="/account", status_code=303), username)

    @app.get("/account", response_class=HTMLResponse)
    async def account(request: Request, user: str = Depends(authorize(USER_ROLE, ADMIN_ROLE))):
        return render(
            request,
            "account.html",
            user=user,
            user_data=accounts.details(user),
            purchased_products=accounts.purchase_history(user),
        )

    @app.get("/edit-account", response_class=HTMLResponse)
    async def edit_account(request: Request, user: str = Depends(authorize(USER_ROLE, ADMIN_ROLE))):
        return render(request, "edit-account.html", user=user, user_data=accounts.details(user), messages=[])

    @app.post("/update-account")
    async def update_account(
        request: Request,
        email: str = Form(default=""),
        password: str = Form(default=""),
        confirm_password: str = Form(default=""),
        user: str = Depends(authorize(USER_ROLE, ADMIN_ROLE)),
    ):
        messages = accounts.update_account(user, email, password, confirm_password)
        if messages:
            return render(
                request,
                "edit-account.html",
                status_code=400,
                user=user,
                user_data={"username": user, "email": email},
                messages=messages,
            )
        return RedirectResponse(url="/account", status_code=303)

    @app.post("/delete-account")
    async def delete_account(user: str = Depends(authorize(USER_ROLE, ADMIN_ROLE))):
        accounts.delete_account(user)
        return RedirectResponse(url="/logout", status_code=303)

    @app.get("/leaderboard", response_class=HTMLResponse)
    async def leaderboard(request: Request, user: Optional[str] = Depends(authorize())):
        return render(
            request,
            "leaderboard.html",
            user=user,
            top_users=credentials.top_users(settings.leaderboard_size),
            size=settings.leaderboard_size,
        )

    # -------------------- catalog --------------------

    def search_page(user: Optional[str], orderBy, direction, pageSize, page, searchTerm) -> schemas.ProductPage:
        is_admin = ADMIN_ROLE in roles.roles_for_username(user)
        return catalog.search(
            term=sanitize_input(searchTerm),
            page=_to_int(page, 1),
            page_size=_to_int(pageSize, settings.default_page_size),
            order_by=ORDER_BY_ALIASES.get(orderBy, orderBy) if orderBy else "name",
            direction="desc" if (direction or "").lower() == "desc" else "asc",
            include_unlisted=is_admin,
        )

    @app.get("/shop", response_class=HTMLResponse)
    async def shop(
        request: Request,
        orderBy: Optional[str] = None,
        direction: Optional[str] = None,
        pageSize: Optional[str] = None,
        page: Optional[str] = None,
        searchTerm: Optional[str] = None,
        error: Optional[str] = None,
        user: Optional[str] = Depends(authorize()),
    ):
        try:
            page_data = search_page(user, orderBy, direction, pageSize, page, searchTerm)
        except InvalidArgument as e:
            return render(request, "error.html", status_code=400, user=user, message=str(e))
        return render(
            request,
            "shop.html",
            user=user,
            user_roles=roles.roles_for_username(user),
            page_data=page_data,
            error=error,
        )

    @app.get("/api/products", response_model=schemas.ProductPage)
    async def api_products(
        orderBy: Optional[str] = None,
        direction: Optional[str] = None,
        pageSize: Optional[str] = None,
        page: Optional[str] = None,
        searchTerm: Optional[str] = None,
        user: Optional[str] = Depends(authorize()),
    ):
        try:
            return search_page(user, orderBy, direction, pageSize, page, searchTerm)
        except InvalidArgument as e:
            raise HTTPException(status_code=400, detail=str(e))

    # -------------------- cart & checkout --------------------

    @app.post("/addToCart")
    async def add_to_cart(
        productId: int = Form(...),
        quantity: str = Form(default="1"),
        user: str = Depends(authorize(USER_ROLE)),
    ):
        try:
            cart.add_to_cart(current_user_id(user), productId, quantity)
        except (OutOfStock, InvalidArgument, NotFound) as e:
            return _with_error("/shop", f"Failed to add to cart: {e}")
        return RedirectResponse(url="/shop", status_code=303)

    @app.post("/removeFromCart")
    async def remove_from_cart(productId: int = Form(...), user: str = Depends(authorize(USER_ROLE))):
        try:
            cart.remove_from_cart(current_user_id(user), productId)
        except NotFound as e:
            return _with_error("/cart", str(e))
        return RedirectResponse(url="/cart", status_code=303)

    @app.get("/cart", response_class=HTMLResponse)
    async def cart_page(request: Request, error: Optional[str] = None, user: str = Depends(authorize(USER_ROLE))):
        user_id = current_user_id(user)
        items = cart.get_cart_items(user_id)
        return render(
            request,
            "cart.html",
            user=user,
            user_roles=roles.roles_for_username(user),
            cart_items=items,
            total=sum((i.line_total for i in items), Decimal("0.00")),
            error=error,
        )

    @app.get("/api/cart", response_model=List[schemas.CartLine])
    async def api_cart(user: str = Depends(authorize(USER_ROLE))):
        return cart.get_cart_items(current_user_id(user))

    @app.get("/checkout", response_class=HTMLResponse)
    async def checkout_page(request: Request, error: Optional[str] = None, user: str = Depends(authorize(USER_ROLE))):
        details = accounts.details(user)
        items = cart.get_cart_items(details.id)
        return render(
            request,
            "checkout.html",
            user=user,
            user_balance=details.balance,
            cart_items=items,
            total=sum((i.line_total for i in items), Decimal("0.00")),
            error=error,
        )

    @app.post("/finalize-purchase")
    async def finalize_purchase(totalCost: Optional[str] = Form(default=None), user: str = Depends(authorize(USER_ROLE))):
        try:
            advisory = _to_decimal(totalCost)
        except InvalidArgument:
            advisory = None
        result = ledger.checkout(current_user_id(user), advisory)
        if result.success:
            return RedirectResponse(url="/purchase-successful", status_code=303)
        return _with_error("/checkout", result.message)

    @app.get("/purchase-successful", response_class=HTMLResponse)
    async def purchase_successful(request: Request, user: str = Depends(authorize(USER_ROLE))):
        return render(request, "purchase-successful.html", user=user)

    @app.get("/moneymaker", response_class=HTMLResponse)
    async def moneymaker(request: Request, user: str = Depends(authorize(USER_ROLE))):
        return render(request, "moneymaker.html", user=user, user_data=accounts.details(user))

    @app.post("/moneymaker")
    async def moneymaker_click(user: str = Depends(authorize(USER_ROLE))):
        accounts.earn(user)
        return RedirectResponse(url="/moneymaker", status_code=303)

    # -------------------- admin --------------------

    @app.post("/admin/products")
    async def admin_create_product(
        name: str = Form(...),
        description: str = Form(default=""),
        price: str = Form(default=""),
        quantity: str = Form(default=""),
        user: str = Depends(authorize(ADMIN_ROLE)),
    ):
        try:
            data = schemas.ProductCreate(
                name=name,
                description=description or None,
                price=_to_decimal(price),
                quantity=_to_optional_int(quantity),
            )
            catalog.create_product(data)
        except (ValidationError, InvalidArgument) as e:
            return _with_error("/shop", f"Invalid product: {e}")
        return RedirectResponse(url="/shop", status_code=303)

    @app.post("/admin/products/{product_id}/edit")
    async def admin_edit_product(
        product_id: int,
        name: Optional[str] = Form(default=None),
        description: Optional[str] = Form(default=None),
        price: Optional[str] = Form(default=None),
        quantity: Optional[str] = Form(default=None),
        user: str = Depends(authorize(ADMIN_ROLE)),
    ):
        # a submitted but empty price/quantity clears it (delists / unlimited stock)
        fields = {}
        if name is not None:
            fields["name"] = name
        if description is not None:
            fields["description"] = description
        try:
            if price is not None:
                fields["price"] = _to_decimal(price)
            if quantity is not None:
                fields["quantity"] = _to_optional_int(quantity)
            catalog.update_product(product_id, schemas.ProductUpdate(**fields))
        except (ValidationError, InvalidArgument) as e:
            return _with_error("/shop", f"Invalid product: {e}")
        return RedirectResponse(url="/shop", status_code=303)

    @app.post("/admin/products/{product_id}/delete")
    async def admin_delete_product(
        product_id: int,
        force: bool = Form(default=False),
        user: str = Depends(authorize(ADMIN_ROLE)),
    ):
        try:
            catalog.delete(product_id, force=force)
        except Conflict as e:
            return _with_error("/shop", str(e))
        return RedirectResponse(url="/shop", status_code=303)

    @app.post("/admin/users/{username}/roles")
    async def admin_set_role(
        username: str,
        role: str = Form(...),
        action: str = Form(default="grant"),
        user: str = Depends(authorize(ADMIN_ROLE)),
    ):
        target_id = current_user_id(username)
        if action == "revoke":
            roles.revoke_role(target_id, role)
        elif action == "grant":
            roles.grant_role(target_id, role)
        else:
            raise HTTPException(status_code=400, detail=f"unknown action {action!r}")
        return {"username": username, "roles": sorted(roles.list_roles(target_id))}

    return app


app = create_app()
