"""
Async Postgres: orders + order_items (owned by this service), products and users
(read-only here, owned by the catalog and identity services).
Order creation runs in a single transaction; status updates are a single-row
compare-and-set keyed by (order id, farmer id, expected status).
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import asyncpg

from marketplace.config import Settings
from marketplace.errors import StorageError
from marketplace.models import Order, OrderItem, Product
from marketplace.order_state import OrderStatus

logger = logging.getLogger(__name__)

_STORAGE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)

_ORDER_COLUMNS = "id, buyer_id, farmer_id, status, delivery_mode, total_amount, created_at, updated_at"
_ITEM_COLUMNS = "id, order_id, product_id, quantity, price_per_unit, created_at, updated_at"


async def create_pool(settings: Settings) -> asyncpg.Pool:
    try:
        return await asyncpg.create_pool(
            settings.database_url,
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
            command_timeout=settings.db_command_timeout,
        )
    except _STORAGE_ERRORS as exc:
        raise StorageError(f"could not connect to database: {exc}") from exc


async def init_schema(pool: asyncpg.Pool) -> None:
    async with pool.acquire() as conn:
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id VARCHAR(36) PRIMARY KEY,
                phone VARCHAR(20) NOT NULL UNIQUE,
                name VARCHAR(255) NOT NULL,
                password_hash VARCHAR(255) NOT NULL,
                role VARCHAR(20) NOT NULL CHECK (role IN ('farmer', 'buyer', 'admin')),
                is_verified BOOLEAN NOT NULL DEFAULT FALSE,
                is_active BOOLEAN NOT NULL DEFAULT TRUE,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                deleted_at TIMESTAMPTZ
            );
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS products (
                id VARCHAR(36) PRIMARY KEY,
                farmer_id VARCHAR(36) NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                crop_name VARCHAR(255) NOT NULL,
                quantity NUMERIC(10, 2) NOT NULL,
                unit VARCHAR(50) NOT NULL,
                price_per_unit NUMERIC(10, 2) NOT NULL,
                state VARCHAR(100) NOT NULL DEFAULT '',
                city VARCHAR(100) NOT NULL DEFAULT '',
                pincode VARCHAR(10) NOT NULL DEFAULT '',
                status VARCHAR(10) NOT NULL DEFAULT 'active'
                    CHECK (status IN ('active', 'closed', 'sold')),
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                deleted_at TIMESTAMPTZ
            );
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS orders (
                id VARCHAR(36) PRIMARY KEY,
                buyer_id VARCHAR(36) NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                farmer_id VARCHAR(36) NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                status VARCHAR(10) NOT NULL DEFAULT 'pending'
                    CHECK (status IN ('pending', 'accepted', 'rejected', 'shipped', 'delivered')),
                delivery_mode VARCHAR(10) NOT NULL CHECK (delivery_mode IN ('pickup', 'courier')),
                total_amount NUMERIC(10, 2) NOT NULL,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                deleted_at TIMESTAMPTZ
            );
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS order_items (
                id VARCHAR(36) PRIMARY KEY,
                order_id VARCHAR(36) NOT NULL REFERENCES orders(id) ON DELETE CASCADE,
                product_id VARCHAR(36) NOT NULL REFERENCES products(id) ON DELETE CASCADE,
                quantity NUMERIC(10, 2) NOT NULL CHECK (quantity > 0),
                price_per_unit NUMERIC(10, 2) NOT NULL,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
        """)
        for ddl in (
            "CREATE INDEX IF NOT EXISTS idx_products_farmer_id ON products(farmer_id);",
            "CREATE INDEX IF NOT EXISTS idx_orders_buyer_id ON orders(buyer_id, created_at DESC);",
            "CREATE INDEX IF NOT EXISTS idx_orders_farmer_id ON orders(farmer_id, created_at DESC);",
            "CREATE INDEX IF NOT EXISTS idx_orders_status ON orders(status);",
            "CREATE INDEX IF NOT EXISTS idx_order_items_order_id ON order_items(order_id);",
            "CREATE INDEX IF NOT EXISTS idx_order_items_product_id ON order_items(product_id);",
        ):
            await conn.execute(ddl)


def _storage_error(exc: BaseException) -> StorageError:
    return StorageError(f"database error: {type(exc).__name__}: {exc}")


def _to_item(row) -> OrderItem:
    return OrderItem(**dict(row))


def _to_order(row, items: list[OrderItem]) -> Order:
    return Order(**dict(row), order_items=items)


class OrderStore:
    """
    Orders and their items. Bound to the pool, or to one connection when
    obtained from transaction().
    """

    transactional = True

    def __init__(self, pool: asyncpg.Pool, conn: asyncpg.Connection | None = None):
        self._pool = pool
        self._conn = conn

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[asyncpg.Connection]:
        try:
            if self._conn is not None:
                yield self._conn
            else:
                async with self._pool.acquire() as conn:
                    yield conn
        except _STORAGE_ERRORS as exc:
            raise _storage_error(exc) from exc

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["OrderStore"]:
        """Yield a store whose writes commit together or not at all."""
        try:
            async with self._pool.acquire() as conn:
                async with conn.transaction():
                    yield OrderStore(self._pool, conn=conn)
        except _STORAGE_ERRORS as exc:
            raise _storage_error(exc) from exc

    async def insert_order(self, order: Order) -> None:
        async with self._connection() as conn:
            await conn.execute(
                f"""
                INSERT INTO orders ({_ORDER_COLUMNS})
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8);
                """,
                order.id,
                order.buyer_id,
                order.farmer_id,
                order.status.value,
                order.delivery_mode.value,
                order.total_amount,
                order.created_at,
                order.updated_at,
            )

    async def insert_item(self, item: OrderItem) -> None:
        async with self._connection() as conn:
            await conn.execute(
                f"""
                INSERT INTO order_items ({_ITEM_COLUMNS})
                VALUES ($1, $2, $3, $4, $5, $6, $7);
                """,
                item.id,
                item.order_id,
                item.product_id,
                item.quantity,
                item.price_per_unit,
                item.created_at,
                item.updated_at,
            )

    async def delete_order(self, order_id: str) -> None:
        """Hard delete; only used to retract a half-written order. Items cascade."""
        async with self._connection() as conn:
            await conn.execute("DELETE FROM orders WHERE id = $1;", order_id)

    async def get_order(
        self,
        order_id: str,
        buyer_id: str | None = None,
        farmer_id: str | None = None,
    ) -> Order | None:
        orders = await self._fetch_orders(order_id=order_id, buyer_id=buyer_id, farmer_id=farmer_id)
        return orders[0] if orders else None

    async def list_orders(
        self,
        buyer_id: str | None = None,
        farmer_id: str | None = None,
        status: OrderStatus | None = None,
    ) -> list[Order]:
        """Matching orders, newest first, items populated."""
        return await self._fetch_orders(buyer_id=buyer_id, farmer_id=farmer_id, status=status)

    async def compare_and_set_status(
        self,
        order_id: str,
        farmer_id: str,
        expected: OrderStatus,
        new: OrderStatus,
    ) -> bool:
        """
        Move status from expected to new in one statement. Returns False when the
        row no longer matches (missing, other farmer, or status changed meanwhile).
        Only status and updated_at are written.
        """
        async with self._connection() as conn:
            row = await conn.fetchrow(
                """
                UPDATE orders SET status = $1, updated_at = NOW()
                WHERE id = $2 AND farmer_id = $3 AND status = $4 AND deleted_at IS NULL
                RETURNING id;
                """,
                new.value,
                order_id,
                farmer_id,
                expected.value,
            )
        return row is not None

    async def _fetch_orders(
        self,
        order_id: str | None = None,
        buyer_id: str | None = None,
        farmer_id: str | None = None,
        status: OrderStatus | None = None,
    ) -> list[Order]:
        clauses = ["deleted_at IS NULL"]
        args: list = []
        for column, value in (
            ("id", order_id),
            ("buyer_id", buyer_id),
            ("farmer_id", farmer_id),
            ("status", status.value if status is not None else None),
        ):
            if value is not None:
                args.append(value)
                clauses.append(f"{column} = ${len(args)}")
        query = (
            f"SELECT {_ORDER_COLUMNS} FROM orders WHERE {' AND '.join(clauses)} "
            "ORDER BY created_at DESC, id DESC;"
        )
        async with self._connection() as conn:
            rows = await conn.fetch(query, *args)
            if not rows:
                return []
            item_rows = await conn.fetch(
                f"""
                SELECT {_ITEM_COLUMNS} FROM order_items
                WHERE order_id = ANY($1::varchar[])
                ORDER BY created_at ASC, id ASC;
                """,
                [r["id"] for r in rows],
            )
        items_by_order: dict[str, list[OrderItem]] = {}
        for r in item_rows:
            items_by_order.setdefault(r["order_id"], []).append(_to_item(r))
        return [_to_order(r, items_by_order.get(r["id"], [])) for r in rows]


class ProductCatalog:
    """Read-only product lookup backed by the catalog's products table."""

    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool

    async def get_product(self, product_id: str) -> Product | None:
        try:
            async with self._pool.acquire() as conn:
                row = await conn.fetchrow(
                    """
                    SELECT id, farmer_id, crop_name, unit, price_per_unit, status
                    FROM products WHERE id = $1 AND deleted_at IS NULL;
                    """,
                    product_id,
                )
        except _STORAGE_ERRORS as exc:
            raise _storage_error(exc) from exc
        return Product(**dict(row)) if row is not None else None


async def ping(pool: asyncpg.Pool) -> bool:
    try:
        async with pool.acquire() as conn:
            await conn.fetchval("SELECT 1;")
    except _STORAGE_ERRORS:
        logger.warning("Database ping failed", exc_info=True)
        return False
    return True
