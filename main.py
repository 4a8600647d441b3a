from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel, EmailStr
from bson import ObjectId
from bson.errors import InvalidId

from config import ACCESS_TOKEN_EXPIRE_MINUTES, ALGORITHM, DATABASE_NAME, DATABASE_URL, PORT, SECRET_KEY
from catalog import (
    SortKey,
    build_category_tree,
    derive_products,
    has_products_on_sale,
    is_product_on_sale,
    is_sale_ended,
    is_upcoming_sale,
    toggle_category,
)
from database import db, create_document, get_documents, to_str_id
from feeds import CollectionFeed
from logger import get_logger
from notifications import ContactError, on_order_created, on_order_updated, send_contact_email
from orders import OrderNotFound, check_ip_rate_limit, create_order, hash_ip, update_order_status, update_tracking
from schemas import (
    User as UserSchema,
    Category as CategorySchema,
    Product as ProductSchema,
    Order as OrderSchema,
    SelectionToggle,
    StatusUpdate,
    TrackingUpdate,
    ContactRequest,
)

logger = get_logger("api")

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/login")
optional_oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/login", auto_error=False)

# Live category/product read model, opened for the app's lifetime
feeds = {}


@asynccontextmanager
async def lifespan(app: FastAPI):
    if db is not None:
        feeds["category"] = CollectionFeed(db["category"], sort_field="name").start()
        feeds["product"] = CollectionFeed(db["product"], sort_field=None).start()
    else:
        logger.warning("Database not configured, catalog feeds not started")
    yield
    for feed in feeds.values():
        feed.stop()
    feeds.clear()


app = FastAPI(title="Storefront API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Helpers
class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"

class UserOut(BaseModel):
    id: str
    name: str
    email: EmailStr


def require_db():
    if db is None:
        raise HTTPException(500, "Database not configured")
    return db


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def _user_from_token(token: str) -> Optional[UserOut]:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        user_id: str = payload.get("sub")
        if user_id is None:
            return None
        user = require_db()["user"].find_one({"_id": ObjectId(user_id)})
    except (JWTError, InvalidId):
        return None
    if not user:
        return None
    return UserOut(id=str(user["_id"]), name=user.get("name"), email=user.get("email"))


def get_current_user(token: str = Depends(oauth2_scheme)) -> UserOut:
    user = _user_from_token(token)
    if user is None:
        raise HTTPException(status_code=401, detail="Could not validate credentials")
    return user


def get_optional_user(token: Optional[str] = Depends(optional_oauth2_scheme)) -> Optional[UserOut]:
    return _user_from_token(token) if token else None


def current_documents(name: str, sort_field: Optional[str] = None) -> List[dict]:
    feed = feeds.get(name)
    if feed is not None:
        return feed.data
    require_db()
    return [to_str_id(d) for d in get_documents(name, sort=[(sort_field, 1)] if sort_field else None)]


def refresh_feed(name: str) -> None:
    feed = feeds.get(name)
    if feed is not None:
        feed.refresh()


@app.get("/")
def read_root():
    return {"message": "Storefront backend is running"}


# Auth
@app.post("/api/register", response_model=UserOut)
def register(user: UserSchema):
    database = require_db()
    existing = database["user"].find_one({"email": user.email})
    if existing:
        raise HTTPException(400, "Email already registered")
    data = user.model_dump()
    data["password_hash"] = get_password_hash(data["password_hash"])  # field contains plain on input
    user_id = database["user"].insert_one({**data, "created_at": datetime.now(timezone.utc)}).inserted_id
    return UserOut(id=str(user_id), name=user.name, email=user.email)


@app.post("/api/login", response_model=Token)
def login(form_data: OAuth2PasswordRequestForm = Depends()):
    user = require_db()["user"].find_one({"email": form_data.username})
    if not user or not verify_password(form_data.password, user.get("password_hash", "")):
        raise HTTPException(400, "Incorrect email or password")
    access_token = create_access_token({"sub": str(user["_id"])})
    return Token(access_token=access_token)


@app.get("/api/me", response_model=UserOut)
def me(current: UserOut = Depends(get_current_user)):
    return current


# Catalog
@app.get("/api/categories")
def list_categories():
    return current_documents("category", sort_field="name")


@app.get("/api/categories/tree")
def category_tree():
    return build_category_tree(current_documents("category", sort_field="name"))


@app.post("/api/categories")
def add_category(category: CategorySchema, current: UserOut = Depends(get_current_user)):
    require_db()
    category_id = create_document("category", category)
    refresh_feed("category")
    return {"id": category_id}


@app.post("/api/categories/selection")
def toggle_selection(body: SelectionToggle):
    categories = current_documents("category", sort_field="name")
    return {"selected": toggle_category(body.selected, body.category_id, categories)}


@app.get("/api/products")
def list_products(
    q: Optional[str] = None,
    categories: List[str] = Query([]),
    sort: Optional[str] = SortKey.DEFAULT.value,
):
    products = current_documents("product")
    derived = derive_products(
        products,
        query=q,
        selected=categories,
        sort=sort,
        categories=current_documents("category", sort_field="name"),
    )
    items = [p for p in derived if p.get("is_active")]
    return {"items": items, "total": len(items), "has_products_on_sale": has_products_on_sale(products)}


@app.get("/api/products/{product_id}")
def get_product(product_id: str):
    product = next((p for p in current_documents("product") if p.get("id") == product_id), None)
    if not product:
        raise HTTPException(404, "Product not found")
    return {
        **product,
        "on_sale": is_product_on_sale(product),
        "upcoming_sale": is_upcoming_sale(product),
        "sale_ended": is_sale_ended(product),
    }


@app.post("/api/products")
def add_product(product: ProductSchema, current: UserOut = Depends(get_current_user)):
    require_db()
    product_id = create_document("product", product)
    refresh_feed("product")
    return {"id": product_id}


# Orders
@app.post("/api/orders")
def place_order(
    order: OrderSchema,
    request: Request,
    background_tasks: BackgroundTasks,
    current: Optional[UserOut] = Depends(get_optional_user),
):
    database = require_db()
    ip_hash = None
    # Signed-in customers are not rate limited
    if current is None:
        ip_hash = hash_ip(request.client.host if request.client else None)
        rate_limit = check_ip_rate_limit(database, ip_hash)
        if not rate_limit["allowed"]:
            raise HTTPException(
                429,
                f"You have placed {rate_limit['orders_today']} orders in the last 24 hours. "
                f"The limit is {rate_limit['limit']} orders per day.",
            )
    stored = create_order(database, order.model_dump(), ip_hash=ip_hash)
    order_id = str(stored["_id"])
    background_tasks.add_task(on_order_created, order_id, stored)
    return {"id": order_id, "order_number": stored["order_number"], "status": stored["status"]}


@app.patch("/api/orders/{order_id}/status")
def change_order_status(
    order_id: str,
    body: StatusUpdate,
    background_tasks: BackgroundTasks,
    current: UserOut = Depends(get_current_user),
):
    try:
        before, after = update_order_status(require_db(), order_id, body.status)
    except OrderNotFound:
        raise HTTPException(404, "Order not found")
    background_tasks.add_task(on_order_updated, order_id, before, after)
    return to_str_id(after)


@app.patch("/api/orders/{order_id}/tracking")
def change_order_tracking(
    order_id: str,
    body: TrackingUpdate,
    background_tasks: BackgroundTasks,
    current: UserOut = Depends(get_current_user),
):
    try:
        before, after = update_tracking(require_db(), order_id, body.tracking_code, body.shipping_provider.value)
    except OrderNotFound:
        raise HTTPException(404, "Order not found")
    background_tasks.add_task(on_order_updated, order_id, before, after)
    return to_str_id(after)


# Contact form
@app.post("/api/contact")
async def contact(body: ContactRequest):
    try:
        return await send_contact_email(body.model_dump())
    except ContactError as e:
        status = 400 if e.code == "invalid-argument" else 500
        raise HTTPException(status, {"code": e.code, "message": e.message})


# Seed sample data if empty
@app.post("/api/seed")
def seed():
    database = require_db()
    if database["category"].count_documents({}) == 0:
        parents = {}
        for name in ["Balls", "Filaments", "Figures"]:
            parents[name] = str(database["category"].insert_one({"name": name, "parent_id": None}).inserted_id)
        children = [
            {"name": "Bouncy", "parent_id": parents["Balls"]},
            {"name": "Glow", "parent_id": parents["Balls"]},
            {"name": "PLA", "parent_id": parents["Filaments"]},
            {"name": "PETG", "parent_id": parents["Filaments"]},
        ]
        database["category"].insert_many(children)
    if database["product"].count_documents({}) == 0:
        cats = {c["name"]: str(c["_id"]) for c in database["category"].find({})}
        now = datetime.now(timezone.utc)
        products = [
            {
                "title": "Glow Ball",
                "description": "Glow-in-the-dark bouncy ball.",
                "price": 49.0,
                "categories": [cats["Balls"], cats["Glow"]],
                "search_keywords": ["ball", "glow"],
                "is_active": True,
                "sale_price": 39.0,
                "sale_start": now - timedelta(days=1),
                "sale_end": now + timedelta(days=7),
                "created_at": now - timedelta(days=3),
            },
            {
                "title": "PLA Spool 1kg",
                "description": "Matte black PLA filament.",
                "price": 229.0,
                "categories": [cats["Filaments"], cats["PLA"]],
                "search_keywords": ["pla", "filament", "spool"],
                "is_active": True,
                "created_at": now - timedelta(days=10),
            },
            {
                "title": "Dragon Figure",
                "description": "Hand-painted printed dragon.",
                "price": 349.0,
                "categories": cats["Figures"],
                "search_keywords": ["dragon", "figure"],
                "is_active": True,
                "created_at": now,
            },
        ]
        database["product"].insert_many(products)
    refresh_feed("category")
    refresh_feed("product")
    return {"ok": True}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if DATABASE_URL else "❌ Not Set",
        "database_name": "✅ Set" if DATABASE_NAME else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
        "feeds": {name: {"loading": feed.loading, "count": len(feed.data)} for name, feed in feeds.items()},
    }
    if db is not None:
        response["database"] = "✅ Available"
        try:
            response["collections"] = db.list_collection_names()[:10]
            response["database"] = "✅ Connected & Working"
            response["connection_status"] = "Connected"
        except Exception as e:
            response["database"] = f"⚠️ Connected but Error: {str(e)[:50]}"
    return response


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)
