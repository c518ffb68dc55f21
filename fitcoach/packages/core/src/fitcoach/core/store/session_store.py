"""SessionStore SQLite 实现

只保存一个当前会话（slot = 'current'），登出时删除。
"""

from datetime import UTC, datetime

import aiosqlite
from pydantic import SecretStr

from ..models.session import Session

_SLOT = "current"


class SqliteSessionStore:
    """SessionStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def save_session(self, session: Session) -> None:
        """保存（覆盖）当前会话"""
        try:
            await self._conn.execute(
                """
                INSERT INTO sessions (slot, user_id, email, access_token,
                                      refresh_token, expires_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(slot) DO UPDATE SET
                    user_id = excluded.user_id,
                    email = excluded.email,
                    access_token = excluded.access_token,
                    refresh_token = excluded.refresh_token,
                    expires_at = excluded.expires_at,
                    updated_at = excluded.updated_at
                """,
                (
                    _SLOT,
                    session.user_id,
                    session.email,
                    session.access_token.get_secret_value(),
                    session.refresh_token.get_secret_value(),
                    session.expires_at.isoformat(),
                    datetime.now(UTC).isoformat(),
                ),
            )
            await self._conn.commit()
        except Exception:
            await self._conn.rollback()
            raise

    async def load_session(self) -> Session | None:
        """读取已保存的会话，不存在时返回 None"""
        cursor = await self._conn.execute(
            """
            SELECT user_id, email, access_token, refresh_token, expires_at
            FROM sessions WHERE slot = ?
            """,
            (_SLOT,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_session(row)

    async def clear_session(self) -> None:
        """清除已保存的会话"""
        await self._conn.execute("DELETE FROM sessions WHERE slot = ?", (_SLOT,))
        await self._conn.commit()

    @staticmethod
    def _row_to_session(row: aiosqlite.Row) -> Session:
        """将数据库行转换为 Session 模型"""
        return Session(
            user_id=row[0],
            email=row[1],
            access_token=SecretStr(row[2]),
            refresh_token=SecretStr(row[3]),
            expires_at=datetime.fromisoformat(row[4]),
        )
