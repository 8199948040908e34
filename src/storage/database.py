# src/storage/database.py
import time

import aiosqlite

from .models import Alert, Channel, Direction

ALERT_COLUMNS = "id, symbol, target_price, direction, triggered, channel_key, created_at"


def _row_to_alert(row: tuple) -> Alert:  # type: ignore[type-arg]
    return Alert(
        id=row[0],
        symbol=row[1],
        target_price=row[2],
        direction=Direction(row[3]),
        triggered=bool(row[4]),
        channel_key=row[5],
        created_at=row[6],
    )


class Database:
    def __init__(self, path: str):
        self.path = path
        self.conn: aiosqlite.Connection | None = None

    async def init(self) -> None:
        self.conn = await aiosqlite.connect(self.path)
        await self._create_tables()

    async def close(self) -> None:
        if self.conn:
            await self.conn.close()

    async def _create_tables(self) -> None:
        assert self.conn is not None
        await self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS alerts (
                id TEXT PRIMARY KEY,
                symbol TEXT NOT NULL,
                target_price REAL NOT NULL,
                direction TEXT NOT NULL,
                triggered INTEGER NOT NULL DEFAULT 0,
                channel_key TEXT,
                created_at INTEGER NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_alerts_symbol_triggered ON alerts(symbol, triggered);

            CREATE TABLE IF NOT EXISTS channels (
                channel_key TEXT PRIMARY KEY,
                kind TEXT NOT NULL,
                created_at INTEGER NOT NULL
            );
        """)
        await self.conn.commit()

    async def insert_alert(self, alert: Alert) -> None:
        assert self.conn is not None
        await self.conn.execute(
            f"INSERT INTO alerts ({ALERT_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                alert.id,
                alert.symbol,
                alert.target_price,
                alert.direction.value,
                int(alert.triggered),
                alert.channel_key,
                alert.created_at,
            ),
        )
        await self.conn.commit()

    async def find_alerts(
        self, symbol: str | None = None, triggered: bool | None = None
    ) -> list[Alert]:
        assert self.conn is not None
        conditions = []
        params: list[str | int] = []
        if symbol is not None:
            conditions.append("symbol = ?")
            params.append(symbol)
        if triggered is not None:
            conditions.append("triggered = ?")
            params.append(int(triggered))

        query = f"SELECT {ALERT_COLUMNS} FROM alerts"
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY created_at ASC"

        cursor = await self.conn.execute(query, params)
        rows = await cursor.fetchall()
        return [_row_to_alert(row) for row in rows]

    async def get_alert(self, alert_id: str) -> Alert | None:
        assert self.conn is not None
        cursor = await self.conn.execute(
            f"SELECT {ALERT_COLUMNS} FROM alerts WHERE id = ?",
            (alert_id,),
        )
        row = await cursor.fetchone()
        return _row_to_alert(row) if row else None

    async def update_triggered_flag(self, alert_id: str, triggered: bool) -> None:
        assert self.conn is not None
        await self.conn.execute(
            "UPDATE alerts SET triggered = ? WHERE id = ?",
            (int(triggered), alert_id),
        )
        await self.conn.commit()

    async def mark_triggered(self, alert_id: str) -> bool:
        """原子地把 triggered 从 0 置为 1，只有一个调用方会拿到 True"""
        assert self.conn is not None
        cursor = await self.conn.execute(
            "UPDATE alerts SET triggered = 1 WHERE id = ? AND triggered = 0",
            (alert_id,),
        )
        await self.conn.commit()
        return cursor.rowcount == 1

    async def delete_alert(self, alert_id: str) -> None:
        assert self.conn is not None
        await self.conn.execute("DELETE FROM alerts WHERE id = ?", (alert_id,))
        await self.conn.commit()

    async def register_channel(self, endpoint: str, kind: str = "telegram") -> str:
        assert self.conn is not None
        await self.conn.execute(
            """INSERT OR IGNORE INTO channels (channel_key, kind, created_at)
               VALUES (?, ?, ?)""",
            (endpoint, kind, int(time.time() * 1000)),
        )
        await self.conn.commit()
        return endpoint

    async def find_channel(self, channel_key: str) -> Channel | None:
        assert self.conn is not None
        cursor = await self.conn.execute(
            "SELECT channel_key, kind, created_at FROM channels WHERE channel_key = ?",
            (channel_key,),
        )
        row = await cursor.fetchone()
        return Channel(*row) if row else None

    async def list_channels(self) -> list[Channel]:
        assert self.conn is not None
        cursor = await self.conn.execute(
            "SELECT channel_key, kind, created_at FROM channels ORDER BY created_at ASC"
        )
        rows = await cursor.fetchall()
        return [Channel(*row) for row in rows]

    async def purge_channel(self, channel_key: str) -> bool:
        assert self.conn is not None
        cursor = await self.conn.execute(
            "DELETE FROM channels WHERE channel_key = ?",
            (channel_key,),
        )
        await self.conn.commit()
        return cursor.rowcount == 1
