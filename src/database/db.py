"""Работа с базой данных SQLite."""

from __future__ import annotations

import json
import os
import uuid
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Optional

import aiosqlite

from pricing.catalog import BUNDLED_DELIVERY_METHODS, BUNDLED_SHAPES
from pricing.models import Fulfillment, NailSet, NailSizes

from .models import (
    CLOSED_STATUSES,
    ORDER_STATUSES,
    ConsentLog,
    Order,
    PromoCode,
    Session,
    User,
    WeeklyCapacity,
)

DB_PATH = Path(
    os.getenv("STOREFRONT_DB_PATH")
    or Path(__file__).resolve().parents[2] / "data" / "storefront.db"
)

DEFAULT_WEEKLY_CAPACITY = int(os.getenv("DEFAULT_WEEKLY_CAPACITY", "50"))


class OrderNotFoundError(Exception):
    """Заказ не найден."""

    status_code = 404


class ShapeNotFoundError(Exception):
    status_code = 404


class PromoCodeError(Exception):
    """Ошибка при работе с промокодом."""

    def __init__(self, message: str, *, status_code: int = 400) -> None:
        super().__init__(message)
        self.status_code = status_code


SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        email TEXT NOT NULL UNIQUE,
        password_hash TEXT NOT NULL,
        dob TEXT,
        age INTEGER,
        role TEXT,
        parent_email TEXT,
        parent_phone TEXT,
        pending_consent INTEGER NOT NULL DEFAULT 0,
        consented_at TEXT,
        consent_approver TEXT,
        consent_channel TEXT,
        telegram_id INTEGER,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS sessions (
        token TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        created_at TEXT NOT NULL,
        FOREIGN KEY (user_id) REFERENCES users(id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS consent_logs (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        status TEXT NOT NULL,
        channel TEXT NOT NULL,
        contact TEXT,
        token TEXT,
        approver_name TEXT,
        created_at TEXT NOT NULL,
        approved_at TEXT,
        FOREIGN KEY (user_id) REFERENCES users(id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS nail_shapes (
        name TEXT PRIMARY KEY,
        display_name TEXT NOT NULL,
        image_url TEXT,
        base_price REAL NOT NULL DEFAULT 10,
        price_adjustment REAL NOT NULL DEFAULT 0,
        is_visible INTEGER NOT NULL DEFAULT 1,
        display_order INTEGER NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS delivery_methods (
        name TEXT PRIMARY KEY,
        display_name TEXT NOT NULL,
        description TEXT,
        is_visible INTEGER NOT NULL DEFAULT 1,
        display_order INTEGER NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS delivery_tiers (
        delivery_method TEXT NOT NULL,
        name TEXT NOT NULL,
        display_name TEXT NOT NULL,
        description TEXT,
        tagline TEXT,
        price REAL NOT NULL DEFAULT 0,
        days INTEGER,
        is_default INTEGER NOT NULL DEFAULT 0,
        is_visible INTEGER NOT NULL DEFAULT 1,
        display_order INTEGER NOT NULL DEFAULT 0,
        PRIMARY KEY (delivery_method, name),
        FOREIGN KEY (delivery_method) REFERENCES delivery_methods(name)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS orders (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'draft',
        fulfillment_json TEXT NOT NULL,
        customer_sizes_json TEXT NOT NULL,
        order_notes TEXT,
        promo_code TEXT,
        promo_code_id TEXT,
        pricing_json TEXT,
        payment_intent_id TEXT,
        discount REAL NOT NULL DEFAULT 0,
        tracking_number TEXT NOT NULL DEFAULT '',
        admin_notes TEXT,
        admin_images_json TEXT NOT NULL DEFAULT '[]',
        estimated_fulfillment_date TEXT,
        paid_at TEXT,
        production_jobs_json TEXT NOT NULL DEFAULT '[]',
        created_at TEXT NOT NULL,
        updated_at TEXT,
        FOREIGN KEY (user_id) REFERENCES users(id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS order_sets (
        id TEXT NOT NULL,
        order_id TEXT NOT NULL,
        position INTEGER NOT NULL,
        name TEXT,
        shape_id TEXT,
        quantity INTEGER NOT NULL DEFAULT 1,
        description TEXT,
        set_notes TEXT,
        design_uploads_json TEXT NOT NULL DEFAULT '[]',
        sizes_json TEXT NOT NULL,
        requires_follow_up INTEGER NOT NULL DEFAULT 0,
        PRIMARY KEY (order_id, id),
        FOREIGN KEY (order_id) REFERENCES orders(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS promo_codes (
        id TEXT PRIMARY KEY,
        code TEXT NOT NULL UNIQUE,
        description TEXT,
        type TEXT NOT NULL,
        value REAL,
        min_order_amount REAL,
        start_date TEXT,
        end_date TEXT,
        max_uses INTEGER,
        uses_count INTEGER NOT NULL DEFAULT 0,
        per_user_limit INTEGER,
        combinable INTEGER NOT NULL DEFAULT 1,
        active INTEGER NOT NULL DEFAULT 1,
        created_by_admin_id TEXT,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS promo_code_usage (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        promo_code_id TEXT NOT NULL,
        user_id TEXT,
        order_id TEXT NOT NULL,
        created_at TEXT NOT NULL,
        FOREIGN KEY (promo_code_id) REFERENCES promo_codes(id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS workload_capacity (
        week_start TEXT PRIMARY KEY,
        weekly_capacity INTEGER NOT NULL DEFAULT 50,
        orders_count INTEGER NOT NULL DEFAULT 0,
        updated_at TEXT
    )
    """,
]

PROMO_TYPES = ("percentage", "fixed_amount", "free_shipping", "free_order", "fixed_price_item")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _parse_date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def _connect() -> aiosqlite.Connection:
    return aiosqlite.connect(DB_PATH)


async def init_db() -> None:
    """Инициализировать базу данных и заполнить каталог по умолчанию."""
    Path(DB_PATH).parent.mkdir(parents=True, exist_ok=True)

    async with _connect() as db:
        for statement in SCHEMA:
            await db.execute(statement)

        async with db.execute("SELECT COUNT(*) FROM nail_shapes") as cursor:
            (shapes_count,) = await cursor.fetchone()
        if not shapes_count:
            for order, shape in enumerate(BUNDLED_SHAPES):
                await db.execute(
                    """INSERT INTO nail_shapes (name, display_name, base_price, display_order)
                       VALUES (?, ?, ?, ?)""",
                    (shape["id"], shape["name"], shape["basePrice"], order),
                )

        async with db.execute("SELECT COUNT(*) FROM delivery_methods") as cursor:
            (methods_count,) = await cursor.fetchone()
        if not methods_count:
            for order, method in enumerate(BUNDLED_DELIVERY_METHODS.values()):
                await _insert_delivery_method(db, method, order)

        await db.commit()


# ---------- Пользователи и сессии ----------


def _row_to_user(row: aiosqlite.Row) -> User:
    return User(
        id=row["id"],
        name=row["name"],
        email=row["email"],
        password_hash=row["password_hash"],
        dob=_parse_date(row["dob"]),
        age=row["age"],
        role=row["role"],
        parent_email=row["parent_email"],
        parent_phone=row["parent_phone"],
        pending_consent=bool(row["pending_consent"]),
        consented_at=_parse_dt(row["consented_at"]),
        consent_approver=row["consent_approver"],
        consent_channel=row["consent_channel"],
        telegram_id=row["telegram_id"],
        created_at=_parse_dt(row["created_at"]),
    )


async def _fetch_user(where: str, value: Any) -> Optional[User]:
    async with _connect() as db:
        db.row_factory = aiosqlite.Row
        async with db.execute(f"SELECT * FROM users WHERE {where} = ?", (value,)) as cursor:
            row = await cursor.fetchone()
            return _row_to_user(row) if row else None


async def get_user(user_id: str) -> Optional[User]:
    """Получить пользователя по ID."""
    return await _fetch_user("id", user_id)


async def get_user_by_email(email: str) -> Optional[User]:
    return await _fetch_user("email", email)


async def get_user_by_telegram_id(telegram_id: int) -> Optional[User]:
    return await _fetch_user("telegram_id", telegram_id)


async def create_user(user: User, consent_log: ConsentLog) -> User:
    """Создать пользователя вместе с записью о согласии."""
    async with _connect() as db:
        now = _now()
        await db.execute(
            """INSERT INTO users
               (id, name, email, password_hash, dob, age, role, parent_email, parent_phone,
                pending_consent, consented_at, consent_approver, consent_channel, telegram_id, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                user.id,
                user.name,
                user.email,
                user.password_hash,
                user.dob.isoformat() if user.dob else None,
                user.age,
                user.role,
                user.parent_email,
                user.parent_phone,
                1 if user.pending_consent else 0,
                user.consented_at.isoformat() if user.consented_at else None,
                user.consent_approver,
                user.consent_channel,
                user.telegram_id,
                now,
            ),
        )
        await db.execute(
            """INSERT INTO consent_logs
               (id, user_id, status, channel, contact, token, approver_name, created_at, approved_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                consent_log.id,
                consent_log.user_id,
                consent_log.status,
                consent_log.channel,
                consent_log.contact,
                consent_log.token,
                consent_log.approver_name,
                now,
                consent_log.approved_at.isoformat() if consent_log.approved_at else None,
            ),
        )
        await db.commit()
        user.created_at = datetime.fromisoformat(now)
        consent_log.created_at = user.created_at
        return user


async def update_user_role(user_id: str, role: Optional[str]) -> None:
    async with _connect() as db:
        await db.execute("UPDATE users SET role = ? WHERE id = ?", (role, user_id))
        await db.commit()


async def link_telegram_id(user_id: str, telegram_id: int) -> None:
    async with _connect() as db:
        await db.execute("UPDATE users SET telegram_id = ? WHERE id = ?", (telegram_id, user_id))
        await db.commit()


async def create_session(user_id: str) -> Session:
    session = Session(token=uuid.uuid4().hex, user_id=user_id)
    async with _connect() as db:
        now = _now()
        await db.execute(
            "INSERT INTO sessions (token, user_id, created_at) VALUES (?, ?, ?)",
            (session.token, user_id, now),
        )
        await db.commit()
    session.created_at = datetime.fromisoformat(now)
    return session


async def get_session(token: str) -> Optional[Session]:
    async with _connect() as db:
        db.row_factory = aiosqlite.Row
        async with db.execute("SELECT * FROM sessions WHERE token = ?", (token,)) as cursor:
            row = await cursor.fetchone()
            if not row:
                return None
            return Session(token=row["token"], user_id=row["user_id"], created_at=_parse_dt(row["created_at"]))


async def delete_session(token: str) -> None:
    async with _connect() as db:
        await db.execute("DELETE FROM sessions WHERE token = ?", (token,))
        await db.commit()


# ---------- Согласие родителей ----------


def _row_to_consent_log(row: aiosqlite.Row) -> ConsentLog:
    return ConsentLog(
        id=row["id"],
        user_id=row["user_id"],
        status=row["status"],
        channel=row["channel"],
        contact=row["contact"],
        token=row["token"],
        approver_name=row["approver_name"],
        created_at=_parse_dt(row["created_at"]),
        approved_at=_parse_dt(row["approved_at"]),
    )


async def get_consent_log_by_token(token: str) -> Optional[ConsentLog]:
    async with _connect() as db:
        db.row_factory = aiosqlite.Row
        async with db.execute("SELECT * FROM consent_logs WHERE token = ?", (token,)) as cursor:
            row = await cursor.fetchone()
            return _row_to_consent_log(row) if row else None


async def list_consent_logs(user_id: Optional[str] = None) -> list[ConsentLog]:
    query = "SELECT * FROM consent_logs"
    params: tuple = ()
    if user_id:
        query += " WHERE user_id = ?"
        params = (user_id,)
    async with _connect() as db:
        db.row_factory = aiosqlite.Row
        async with db.execute(query + " ORDER BY created_at", params) as cursor:
            return [_row_to_consent_log(row) for row in await cursor.fetchall()]


async def approve_consent(log: ConsentLog, approver_name: Optional[str]) -> None:
    """Отметить согласие одобренным и снять блокировку с аккаунта."""
    now = _now()
    async with _connect() as db:
        await db.execute(
            """UPDATE consent_logs
               SET status = 'approved', approved_at = ?, approver_name = ?, token = NULL
               WHERE id = ?""",
            (now, approver_name, log.id),
        )
        await db.execute(
            """UPDATE users
               SET pending_consent = 0, consented_at = ?, consent_approver = ?, consent_channel = ?
               WHERE id = ?""",
            (now, approver_name, log.channel, log.user_id),
        )
        await db.commit()


# ---------- Каталог ----------


async def fetch_shapes(include_hidden: bool = False) -> list[dict]:
    """Формы ногтей в формате каталога."""
    query = "SELECT * FROM nail_shapes"
    if not include_hidden:
        query += " WHERE is_visible = 1"
    async with _connect() as db:
        db.row_factory = aiosqlite.Row
        async with db.execute(query + " ORDER BY display_order, name") as cursor:
            rows = await cursor.fetchall()
    return [
        {
            "id": row["name"],
            "name": row["display_name"],
            "imageUrl": row["image_url"],
            "basePrice": float(row["base_price"]) + float(row["price_adjustment"] or 0),
            "isVisible": bool(row["is_visible"]),
        }
        for row in rows
    ]


async def save_shape(shape: dict) -> None:
    """Создать или обновить форму (админ)."""
    async with _connect() as db:
        await db.execute(
            """INSERT INTO nail_shapes
               (name, display_name, image_url, base_price, price_adjustment, is_visible, display_order)
               VALUES (?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(name) DO UPDATE SET
                 display_name = excluded.display_name,
                 image_url = excluded.image_url,
                 base_price = excluded.base_price,
                 price_adjustment = excluded.price_adjustment,
                 is_visible = excluded.is_visible,
                 display_order = excluded.display_order""",
            (
                shape["name"],
                shape.get("display_name") or shape["name"],
                shape.get("image_url"),
                float(shape.get("base_price", 10)),
                float(shape.get("price_adjustment", 0)),
                1 if shape.get("is_visible", True) else 0,
                int(shape.get("display_order", 0)),
            ),
        )
        await db.commit()


async def delete_shape(shape_id: str) -> None:
    async with _connect() as db:
        cursor = await db.execute("DELETE FROM nail_shapes WHERE name = ?", (shape_id,))
        await db.commit()
    if cursor.rowcount == 0:
        raise ShapeNotFoundError(f"Shape {shape_id} not found")


async def _insert_delivery_method(db: aiosqlite.Connection, method: dict, order: int) -> None:
    await db.execute(
        """INSERT INTO delivery_methods (name, display_name, description, display_order)
           VALUES (?, ?, ?, ?)
           ON CONFLICT(name) DO UPDATE SET
             display_name = excluded.display_name,
             description = excluded.description,
             display_order = excluded.display_order""",
        (method["id"], method["label"], method.get("description"), order),
    )
    await db.execute("DELETE FROM delivery_tiers WHERE delivery_method = ?", (method["id"],))
    default_speed = method.get("defaultSpeed")
    for tier_order, (speed_id, option) in enumerate(method["speedOptions"].items()):
        await db.execute(
            """INSERT INTO delivery_tiers
               (delivery_method, name, display_name, description, tagline, price, days, is_default, display_order)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                method["id"],
                speed_id,
                option.get("label") or speed_id,
                option.get("description"),
                option.get("tagline"),
                float(option.get("fee") or 0),
                option.get("days"),
                1 if speed_id == default_speed else 0,
                tier_order,
            ),
        )


async def save_delivery_method(method: dict, display_order: int = 0) -> None:
    """Создать или заменить способ получения вместе со скоростями (админ)."""
    async with _connect() as db:
        await _insert_delivery_method(db, method, display_order)
        await db.commit()


async def fetch_fulfillment_config() -> dict[str, dict]:
    """Видимые способы получения и их скорости в формате каталога."""
    async with _connect() as db:
        db.row_factory = aiosqlite.Row
        async with db.execute(
            "SELECT * FROM delivery_methods WHERE is_visible = 1 ORDER BY display_order, name"
        ) as cursor:
            methods = await cursor.fetchall()
        async with db.execute(
            "SELECT * FROM delivery_tiers WHERE is_visible = 1 ORDER BY display_order, name"
        ) as cursor:
            tiers = await cursor.fetchall()

    result: dict[str, dict] = {}
    for method in methods:
        method_tiers = [tier for tier in tiers if tier["delivery_method"] == method["name"]]
        if not method_tiers:
            continue
        default = next((tier["name"] for tier in method_tiers if tier["is_default"]), method_tiers[0]["name"])
        result[method["name"]] = {
            "id": method["name"],
            "label": method["display_name"],
            "description": method["description"] or "",
            "defaultSpeed": default,
            "speedOptions": {
                tier["name"]: {
                    "id": tier["name"],
                    "label": tier["display_name"],
                    "description": tier["description"] or "",
                    "fee": float(tier["price"]),
                    "days": tier["days"],
                    "tagline": tier["tagline"] or "",
                }
                for tier in method_tiers
            },
        }
    return result


# ---------- Заказы ----------


def _set_to_row(order_id: str, position: int, nail_set: NailSet) -> tuple:
    return (
        nail_set.id,
        order_id,
        position,
        nail_set.name,
        nail_set.shape_id,
        nail_set.quantity,
        nail_set.description,
        nail_set.set_notes,
        json.dumps([upload.to_dict() for upload in nail_set.design_uploads]),
        json.dumps(nail_set.sizes.to_dict()),
        1 if nail_set.requires_follow_up else 0,
    )


def _row_to_set(row: aiosqlite.Row) -> NailSet:
    return NailSet.from_dict(
        {
            "id": row["id"],
            "name": row["name"],
            "shapeId": row["shape_id"],
            "quantity": row["quantity"],
            "description": row["description"],
            "setNotes": row["set_notes"],
            "designUploads": json.loads(row["design_uploads_json"] or "[]"),
            "sizes": json.loads(row["sizes_json"] or "{}"),
            "requiresFollowUp": bool(row["requires_follow_up"]),
        }
    )


def _row_to_order(row: aiosqlite.Row, sets: list[NailSet]) -> Order:
    return Order(
        id=row["id"],
        user_id=row["user_id"],
        status=row["status"],
        nail_sets=sets,
        fulfillment=Fulfillment.from_value(json.loads(row["fulfillment_json"])),
        customer_sizes=NailSizes.from_value(json.loads(row["customer_sizes_json"])),
        order_notes=row["order_notes"] or "",
        promo_code=row["promo_code"],
        promo_code_id=row["promo_code_id"],
        pricing=json.loads(row["pricing_json"]) if row["pricing_json"] else None,
        payment_intent_id=row["payment_intent_id"],
        discount=float(row["discount"] or 0),
        tracking_number=row["tracking_number"] or "",
        admin_notes=row["admin_notes"],
        admin_images=json.loads(row["admin_images_json"] or "[]"),
        estimated_fulfillment_date=_parse_dt(row["estimated_fulfillment_date"]),
        paid_at=_parse_dt(row["paid_at"]),
        production_jobs=json.loads(row["production_jobs_json"] or "[]"),
        created_at=_parse_dt(row["created_at"]),
        updated_at=_parse_dt(row["updated_at"]),
    )


async def _load_sets(db: aiosqlite.Connection, order_ids: list[str]) -> dict[str, list[NailSet]]:
    grouped: dict[str, list[NailSet]] = {order_id: [] for order_id in order_ids}
    if not order_ids:
        return grouped
    placeholders = ", ".join("?" for _ in order_ids)
    async with db.execute(
        f"SELECT * FROM order_sets WHERE order_id IN ({placeholders}) ORDER BY position",
        tuple(order_ids),
    ) as cursor:
        for row in await cursor.fetchall():
            grouped[row["order_id"]].append(_row_to_set(row))
    return grouped


async def create_or_update_order(order: Order) -> Order:
    """Сохранить заказ и заменить его наборы. Новый заказ получает id."""
    now = _now()
    is_update = order.id is not None
    order_id = order.id or str(uuid.uuid4())

    payload = (
        order.user_id,
        order.status,
        json.dumps(order.fulfillment.to_dict()),
        json.dumps(order.customer_sizes.to_dict()),
        order.order_notes.strip(),
        order.promo_code,
        order.promo_code_id,
        json.dumps(order.pricing) if order.pricing is not None else None,
        order.payment_intent_id,
    )

    async with _connect() as db:
        if is_update:
            cursor = await db.execute(
                """UPDATE orders SET user_id = ?, status = ?, fulfillment_json = ?, customer_sizes_json = ?,
                   order_notes = ?, promo_code = ?, promo_code_id = ?, pricing_json = ?, payment_intent_id = ?,
                   updated_at = ?
                   WHERE id = ?""",
                (*payload, now, order_id),
            )
            if cursor.rowcount == 0:
                raise OrderNotFoundError(f"Order {order_id} not found")
            await db.execute("DELETE FROM order_sets WHERE order_id = ?", (order_id,))
        else:
            await db.execute(
                """INSERT INTO orders
                   (user_id, status, fulfillment_json, customer_sizes_json, order_notes, promo_code,
                    promo_code_id, pricing_json, payment_intent_id, id, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (*payload, order_id, now, now),
            )

        await db.executemany(
            """INSERT INTO order_sets
               (id, order_id, position, name, shape_id, quantity, description, set_notes,
                design_uploads_json, sizes_json, requires_follow_up)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            [_set_to_row(order_id, position, nail_set) for position, nail_set in enumerate(order.nail_sets)],
        )
        await db.commit()

    return await fetch_order(order_id)


async def fetch_order(order_id: str) -> Order:
    async with _connect() as db:
        db.row_factory = aiosqlite.Row
        async with db.execute("SELECT * FROM orders WHERE id = ?", (order_id,)) as cursor:
            row = await cursor.fetchone()
        if not row:
            raise OrderNotFoundError(f"Order {order_id} not found")
        sets = await _load_sets(db, [order_id])
    return _row_to_order(row, sets[order_id])


async def fetch_orders(user_id: Optional[str] = None, status: Optional[str] = None) -> list[Order]:
    """Заказы пользователя или все заказы (user_id=None), новые сначала."""
    clauses = []
    params: list[Any] = []
    if user_id:
        clauses.append("user_id = ?")
        params.append(user_id)
    if status:
        clauses.append("status = ?")
        params.append(status)
    query = "SELECT * FROM orders"
    if clauses:
        query += " WHERE " + " AND ".join(clauses)
    query += " ORDER BY created_at DESC"

    async with _connect() as db:
        db.row_factory = aiosqlite.Row
        async with db.execute(query, tuple(params)) as cursor:
            rows = await cursor.fetchall()
        sets = await _load_sets(db, [row["id"] for row in rows])
    return [_row_to_order(row, sets[row["id"]]) for row in rows]


async def update_order(
    order_id: str,
    *,
    status: Optional[str] = None,
    admin_notes: Optional[str] = None,
    admin_images: Optional[list[str]] = None,
    discount: Optional[float] = None,
    tracking_number: Optional[str] = None,
    payment_intent_id: Optional[str] = None,
) -> Order:
    """Частичное обновление заказа. Неизвестные статусы игнорируются."""
    updates: dict[str, Any] = {}
    if status and status in ORDER_STATUSES:
        updates["status"] = status
    if isinstance(admin_notes, str):
        updates["admin_notes"] = admin_notes.strip()
    if admin_images is not None:
        updates["admin_images_json"] = json.dumps([item for item in admin_images if isinstance(item, str) and item])
    if discount is not None:
        updates["discount"] = float(discount)
    if tracking_number is not None:
        updates["tracking_number"] = str(tracking_number).strip()
    if payment_intent_id is not None:
        updates["payment_intent_id"] = payment_intent_id

    if updates:
        updates["updated_at"] = _now()
        assignments = ", ".join(f"{column} = ?" for column in updates)
        async with _connect() as db:
            cursor = await db.execute(
                f"UPDATE orders SET {assignments} WHERE id = ?",
                (*updates.values(), order_id),
            )
            await db.commit()
            if cursor.rowcount == 0:
                raise OrderNotFoundError(f"Order {order_id} not found")
    return await fetch_order(order_id)


async def mark_order_paid(
    order_id: str,
    *,
    payment_intent_id: Optional[str],
    estimated_fulfillment_date: datetime,
    production_jobs: list[dict],
) -> Optional[Order]:
    """
    Перевести заказ в paid.

    Обновление срабатывает только для неоплаченного заказа. Если заказ
    уже оплачен (например, параллельным вызовом), возвращается None.
    """
    now = _now()
    closed = tuple(sorted(CLOSED_STATUSES))
    placeholders = ", ".join("?" for _ in closed)
    async with _connect() as db:
        cursor = await db.execute(
            f"""UPDATE orders SET status = 'paid', paid_at = ?, payment_intent_id = COALESCE(?, payment_intent_id),
               estimated_fulfillment_date = ?, production_jobs_json = ?, updated_at = ?
               WHERE id = ? AND status NOT IN ({placeholders})""",
            (
                now,
                payment_intent_id,
                estimated_fulfillment_date.isoformat(),
                json.dumps(production_jobs),
                now,
                order_id,
                *closed,
            ),
        )
        await db.commit()
        if cursor.rowcount == 0:
            return None
    return await fetch_order(order_id)


# ---------- Промокоды ----------


def _row_to_promo(row: aiosqlite.Row) -> PromoCode:
    return PromoCode(
        id=row["id"],
        code=row["code"],
        type=row["type"],
        value=row["value"],
        description=row["description"],
        min_order_amount=row["min_order_amount"],
        start_date=_parse_dt(row["start_date"]),
        end_date=_parse_dt(row["end_date"]),
        max_uses=row["max_uses"],
        uses_count=row["uses_count"] or 0,
        per_user_limit=row["per_user_limit"],
        combinable=bool(row["combinable"]),
        active=bool(row["active"]),
        created_by_admin_id=row["created_by_admin_id"],
        created_at=_parse_dt(row["created_at"]),
    )


async def _fetch_promo(where: str, value: Any) -> Optional[PromoCode]:
    async with _connect() as db:
        db.row_factory = aiosqlite.Row
        async with db.execute(f"SELECT * FROM promo_codes WHERE {where} = ?", (value,)) as cursor:
            row = await cursor.fetchone()
            return _row_to_promo(row) if row else None


async def get_promo_by_code(code: str) -> Optional[PromoCode]:
    return await _fetch_promo("code", code.strip().upper())


async def get_promo(promo_id: str) -> Optional[PromoCode]:
    return await _fetch_promo("id", promo_id)


async def list_promo_codes() -> list[PromoCode]:
    async with _connect() as db:
        db.row_factory = aiosqlite.Row
        async with db.execute("SELECT * FROM promo_codes ORDER BY created_at DESC") as cursor:
            return [_row_to_promo(row) for row in await cursor.fetchall()]


PROMO_COLUMNS = (
    "code",
    "description",
    "type",
    "value",
    "min_order_amount",
    "start_date",
    "end_date",
    "max_uses",
    "per_user_limit",
    "combinable",
    "active",
)


def _promo_values(data: dict) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for column in PROMO_COLUMNS:
        if column not in data:
            continue
        value = data[column]
        if column == "code":
            value = (value or "").strip().upper()
            if not value:
                raise PromoCodeError("Promo code is required")
        elif column == "type" and value not in PROMO_TYPES:
            raise PromoCodeError(f"Unknown promo type: {value}")
        elif column in ("combinable", "active"):
            value = 1 if value else 0
        elif isinstance(value, (datetime, date)):
            value = value.isoformat()
        values[column] = value
    return values


async def create_promo_code(data: dict, admin_id: Optional[str] = None) -> PromoCode:
    values = _promo_values(data)
    if "code" not in values or "type" not in values:
        raise PromoCodeError("Promo code and type are required")
    values.update({"id": str(uuid.uuid4()), "created_by_admin_id": admin_id, "created_at": _now()})
    columns = ", ".join(values)
    placeholders = ", ".join("?" for _ in values)
    async with _connect() as db:
        try:
            await db.execute(f"INSERT INTO promo_codes ({columns}) VALUES ({placeholders})", tuple(values.values()))
        except aiosqlite.IntegrityError as exc:
            raise PromoCodeError(f"Promo code {values['code']} already exists", status_code=409) from exc
        await db.commit()
    return await get_promo(values["id"])


async def update_promo_code(promo_id: str, updates: dict) -> PromoCode:
    values = _promo_values(updates)
    if values:
        assignments = ", ".join(f"{column} = ?" for column in values)
        async with _connect() as db:
            await db.execute(f"UPDATE promo_codes SET {assignments} WHERE id = ?", (*values.values(), promo_id))
            await db.commit()
    promo = await get_promo(promo_id)
    if promo is None:
        raise PromoCodeError("Promo code not found", status_code=404)
    return promo


async def delete_promo_code(promo_id: str) -> None:
    async with _connect() as db:
        await db.execute("DELETE FROM promo_codes WHERE id = ?", (promo_id,))
        await db.commit()


async def count_promo_usage(promo_id: str, user_id: str) -> int:
    async with _connect() as db:
        async with db.execute(
            "SELECT COUNT(*) FROM promo_code_usage WHERE promo_code_id = ? AND user_id = ?",
            (promo_id, user_id),
        ) as cursor:
            (count,) = await cursor.fetchone()
            return count


async def record_promo_usage(promo: PromoCode, order_id: str, user_id: Optional[str]) -> None:
    """Увеличить счётчик использований с оптимистичной блокировкой.

    Если счётчик успели изменить или лимит исчерпан: PromoCodeError(409).
    """
    async with _connect() as db:
        cursor = await db.execute(
            """UPDATE promo_codes SET uses_count = uses_count + 1
               WHERE id = ? AND uses_count = ? AND (max_uses IS NULL OR max_uses <= 0 OR uses_count < max_uses)""",
            (promo.id, promo.uses_count),
        )
        if cursor.rowcount == 0:
            raise PromoCodeError("Promo code usage limit reached", status_code=409)
        await db.execute(
            "INSERT INTO promo_code_usage (promo_code_id, user_id, order_id, created_at) VALUES (?, ?, ?, ?)",
            (promo.id, user_id, order_id, _now()),
        )
        await db.commit()


# ---------- Загрузка по неделям ----------


async def get_or_create_weekly_capacity(week_start: date) -> WeeklyCapacity:
    """Запись о загрузке недели; новая неделя наследует последнюю ёмкость."""
    key = week_start.isoformat()
    async with _connect() as db:
        db.row_factory = aiosqlite.Row
        async with db.execute("SELECT * FROM workload_capacity WHERE week_start = ?", (key,)) as cursor:
            row = await cursor.fetchone()
        if row:
            return WeeklyCapacity(week_start, row["weekly_capacity"], row["orders_count"])

        async with db.execute(
            "SELECT weekly_capacity FROM workload_capacity ORDER BY week_start DESC LIMIT 1"
        ) as cursor:
            latest = await cursor.fetchone()
        capacity = latest["weekly_capacity"] if latest else DEFAULT_WEEKLY_CAPACITY
        await db.execute(
            """INSERT OR IGNORE INTO workload_capacity (week_start, weekly_capacity, orders_count, updated_at)
               VALUES (?, ?, 0, ?)""",
            (key, capacity, _now()),
        )
        await db.commit()
    return WeeklyCapacity(week_start, capacity, 0)


async def increment_weekly_orders(week_start: date) -> WeeklyCapacity:
    await get_or_create_weekly_capacity(week_start)
    async with _connect() as db:
        await db.execute(
            "UPDATE workload_capacity SET orders_count = orders_count + 1, updated_at = ? WHERE week_start = ?",
            (_now(), week_start.isoformat()),
        )
        await db.commit()
    return await get_or_create_weekly_capacity(week_start)


async def update_weekly_capacity(week_start: date, capacity: int) -> WeeklyCapacity:
    await get_or_create_weekly_capacity(week_start)
    async with _connect() as db:
        await db.execute(
            "UPDATE workload_capacity SET weekly_capacity = ?, updated_at = ? WHERE week_start = ?",
            (max(0, int(capacity)), _now(), week_start.isoformat()),
        )
        await db.commit()
    return await get_or_create_weekly_capacity(week_start)


async def reset_weekly_orders(week_start: date) -> WeeklyCapacity:
    await get_or_create_weekly_capacity(week_start)
    async with _connect() as db:
        await db.execute(
            "UPDATE workload_capacity SET orders_count = 0, updated_at = ? WHERE week_start = ?",
            (_now(), week_start.isoformat()),
        )
        await db.commit()
    return await get_or_create_weekly_capacity(week_start)
