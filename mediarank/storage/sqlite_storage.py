import json
import sqlite3
import time
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, TypeVar

from mediarank.utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar('T')

# 允许通过 update_library_item 修改的列
LIBRARY_UPDATABLE_COLUMNS = (
    'title',
    'watch_status',
    'notes',
    'rating',
    'rd',
    'volatility',
    'comparison_count',
    'total_wins',
    'total_losses',
    'total_ties',
    'last_compared_at',
    'next_comparison_due',
    'needs_reranking',
    'updated_at',
)


class SQLiteStorage:
    """SQLite条目库、比较记录、配对计数和统计文档的读写操作封装"""

    def __init__(
        self,
        db_path: str,
        library_table: str = "library_items",
        comparisons_table: str = "comparisons",
        comparison_pairs_table: str = "comparison_pairs",
        stats_table: str = "user_stats",
        max_retries: int = 5,
    ) -> None:
        self.db_path = Path(db_path)
        self.library_table = self._sanitize_identifier(library_table)
        self.comparisons_table = self._sanitize_identifier(comparisons_table)
        self.comparison_pairs_table = self._sanitize_identifier(comparison_pairs_table)
        self.stats_table = self._sanitize_identifier(stats_table)
        self.max_retries = max_retries

        if self.db_path.parent and not self.db_path.parent.exists():
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_tables()

    @staticmethod
    def _sanitize_identifier(value: str) -> str:
        if not value or not value.replace("_", "").isalnum():
            raise ValueError(f"非法的SQLite标识符: {value}")
        return value

    @staticmethod
    def _user_key(user_id: Optional[str]) -> str:
        return user_id or ""

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False, timeout=30)
        conn.row_factory = sqlite3.Row
        # 启用 WAL 模式以支持更好的并发读写
        conn.execute("PRAGMA journal_mode=WAL")
        # 设置繁忙超时（毫秒）
        conn.execute("PRAGMA busy_timeout=30000")
        return conn

    def _run_write(self, operation: Callable[[sqlite3.Connection], T]) -> T:
        """执行写操作，数据库被锁定时指数退避重试"""
        for attempt in range(self.max_retries):
            try:
                with self._connect() as conn:
                    result = operation(conn)
                    conn.commit()
                    return result
            except sqlite3.OperationalError as e:
                if "database is locked" in str(e) and attempt < self.max_retries - 1:
                    wait_time = 0.1 * (2 ** attempt)
                    logger.warning(f"数据库被锁定，{wait_time:.1f}秒后重试 ({attempt + 1}/{self.max_retries})")
                    time.sleep(wait_time)
                    continue
                raise
        raise sqlite3.OperationalError("database is locked")

    def _ensure_tables(self) -> None:
        with self._connect() as conn:
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self.library_table} (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT,
                    external_id TEXT,
                    media_type TEXT NOT NULL,
                    title TEXT NOT NULL,
                    watch_status TEXT NOT NULL,
                    notes TEXT,
                    rating REAL NOT NULL,
                    rd REAL NOT NULL,
                    volatility REAL NOT NULL,
                    comparison_count INTEGER NOT NULL DEFAULT 0,
                    total_wins INTEGER NOT NULL DEFAULT 0,
                    total_losses INTEGER NOT NULL DEFAULT 0,
                    total_ties INTEGER NOT NULL DEFAULT 0,
                    last_compared_at REAL,
                    next_comparison_due REAL,
                    needs_reranking INTEGER NOT NULL DEFAULT 0,
                    added_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                );
                """
            )
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self.comparisons_table} (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT,
                    winner_id INTEGER NOT NULL,
                    loser_id INTEGER NOT NULL,
                    is_tie INTEGER NOT NULL DEFAULT 0,
                    created_at REAL NOT NULL
                );
                """
            )
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self.comparison_pairs_table} (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT,
                    item_a INTEGER NOT NULL,
                    item_b INTEGER NOT NULL,
                    comparison_count INTEGER NOT NULL,
                    last_compared_at REAL NOT NULL,
                    UNIQUE(item_a, item_b)
                );
                """
            )
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self.stats_table} (
                    user_key TEXT PRIMARY KEY,
                    stats_json TEXT NOT NULL,
                    updated_at REAL
                );
                """
            )
            conn.execute(
                f"""
                CREATE INDEX IF NOT EXISTS idx_{self.library_table}_type_rd
                ON {self.library_table} (media_type, rd);
                """
            )
            conn.execute(
                f"""
                CREATE INDEX IF NOT EXISTS idx_{self.library_table}_external
                ON {self.library_table} (user_id, external_id);
                """
            )
            conn.execute(
                f"""
                CREATE INDEX IF NOT EXISTS idx_{self.comparisons_table}_created
                ON {self.comparisons_table} (created_at);
                """
            )

    # ==================== 条目库 ====================

    @staticmethod
    def _row_to_item(row: sqlite3.Row) -> Dict[str, Any]:
        item = dict(row)
        item['needs_reranking'] = bool(item.get('needs_reranking'))
        return item

    def add_library_item(self, payload: Dict[str, Any]) -> int:
        """新增条目，返回条目ID"""
        now = payload.get('added_at') or time.time()

        def operation(conn: sqlite3.Connection) -> int:
            cursor = conn.execute(
                f"""
                INSERT INTO {self.library_table}
                    (user_id, external_id, media_type, title, watch_status, notes,
                     rating, rd, volatility, comparison_count, total_wins, total_losses, total_ties,
                     last_compared_at, next_comparison_due, needs_reranking, added_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    payload.get('user_id'),
                    payload.get('external_id'),
                    payload['media_type'],
                    payload['title'],
                    payload['watch_status'],
                    payload.get('notes'),
                    payload['rating'],
                    payload['rd'],
                    payload['volatility'],
                    payload.get('comparison_count', 0),
                    payload.get('total_wins', 0),
                    payload.get('total_losses', 0),
                    payload.get('total_ties', 0),
                    payload.get('last_compared_at'),
                    payload.get('next_comparison_due'),
                    int(bool(payload.get('needs_reranking', False))),
                    now,
                    payload.get('updated_at') or now,
                ),
            )
            return cursor.lastrowid

        return self._run_write(operation)

    def get_library_item(self, item_id: int) -> Optional[Dict[str, Any]]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT * FROM {self.library_table} WHERE id = ? LIMIT 1;",
                (item_id,),
            ).fetchone()
        if not row:
            return None
        return self._row_to_item(row)

    def find_library_item_by_external_id(
        self,
        external_id: str,
        user_id: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        with self._connect() as conn:
            row = conn.execute(
                f"""
                SELECT * FROM {self.library_table}
                WHERE external_id = ? AND user_id IS ?
                LIMIT 1;
                """,
                (external_id, user_id),
            ).fetchone()
        if not row:
            return None
        return self._row_to_item(row)

    def list_library_items(
        self,
        media_type: Optional[str] = None,
        user_id: Optional[str] = None,
        watch_statuses: Optional[Iterable[str]] = None,
        min_rd: Optional[float] = None,
        max_rd: Optional[float] = None,
        order_by: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        查询条目列表

        Args:
            media_type: 媒体类型过滤（ANIME/MANGA）
            user_id: 所属用户，None 表示不按用户过滤
            watch_statuses: 允许的观看状态
            min_rd: RD 下界（不含）
            max_rd: RD 上界（含）
            order_by: 'rating_desc' / 'rd_desc' / None（按ID）
        """
        clauses: List[str] = []
        params: List[Any] = []
        if media_type is not None:
            clauses.append("media_type = ?")
            params.append(media_type)
        if user_id is not None:
            clauses.append("user_id = ?")
            params.append(user_id)
        if watch_statuses is not None:
            statuses = list(watch_statuses)
            if not statuses:
                return []
            clauses.append(f"watch_status IN ({', '.join('?' for _ in statuses)})")
            params.extend(statuses)
        if min_rd is not None:
            clauses.append("rd > ?")
            params.append(min_rd)
        if max_rd is not None:
            clauses.append("rd <= ?")
            params.append(max_rd)

        order_clauses = {
            None: "id ASC",
            'rating_desc': "rating DESC, id ASC",
            'rd_desc': "rd DESC, id ASC",
        }
        if order_by not in order_clauses:
            raise ValueError(f"不支持的排序方式: {order_by}")

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM {self.library_table} {where} ORDER BY {order_clauses[order_by]};",
                params,
            ).fetchall()
        return [self._row_to_item(row) for row in rows]

    @staticmethod
    def _check_updates(updates: Dict[str, Any]) -> None:
        unknown = set(updates) - set(LIBRARY_UPDATABLE_COLUMNS)
        if unknown:
            raise ValueError(f"不允许更新的字段: {sorted(unknown)}")

    def _update_item_in(self, conn: sqlite3.Connection, item_id: int, updates: Dict[str, Any]) -> None:
        if not updates:
            return
        values = dict(updates)
        if 'needs_reranking' in values:
            values['needs_reranking'] = int(bool(values['needs_reranking']))
        columns = list(values)
        assignments = ", ".join(f"{col} = ?" for col in columns)
        conn.execute(
            f"UPDATE {self.library_table} SET {assignments} WHERE id = ?;",
            [values[col] for col in columns] + [item_id],
        )

    def update_library_item(self, item_id: int, updates: Dict[str, Any]) -> None:
        """按列更新条目，仅允许白名单中的列"""
        self._check_updates(updates)
        if not updates:
            return
        self._run_write(lambda conn: self._update_item_in(conn, item_id, updates))

    def delete_library_item(self, item_id: int) -> bool:
        def operation(conn: sqlite3.Connection) -> bool:
            cursor = conn.execute(f"DELETE FROM {self.library_table} WHERE id = ?;", (item_id,))
            return cursor.rowcount > 0

        return self._run_write(operation)

    # ==================== 比较记录 ====================

    def insert_comparison(
        self,
        winner_id: int,
        loser_id: int,
        is_tie: bool,
        created_at: float,
        user_id: Optional[str] = None,
    ) -> int:
        return self._run_write(
            lambda conn: self._insert_comparison_in(conn, winner_id, loser_id, is_tie, created_at, user_id)
        )

    def _insert_comparison_in(
        self,
        conn: sqlite3.Connection,
        winner_id: int,
        loser_id: int,
        is_tie: bool,
        created_at: float,
        user_id: Optional[str],
    ) -> int:
        cursor = conn.execute(
            f"""
            INSERT INTO {self.comparisons_table} (user_id, winner_id, loser_id, is_tie, created_at)
            VALUES (?, ?, ?, ?, ?);
            """,
            (user_id, winner_id, loser_id, int(is_tie), created_at),
        )
        return cursor.lastrowid

    @staticmethod
    def _row_to_comparison(row: sqlite3.Row) -> Dict[str, Any]:
        comparison = dict(row)
        comparison['is_tie'] = bool(comparison.get('is_tie'))
        return comparison

    def get_comparison(self, comparison_id: int) -> Optional[Dict[str, Any]]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT * FROM {self.comparisons_table} WHERE id = ? LIMIT 1;",
                (comparison_id,),
            ).fetchone()
        if not row:
            return None
        return self._row_to_comparison(row)

    def list_comparisons(
        self,
        limit: Optional[int] = None,
        user_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """按时间倒序返回比较记录"""
        where = "WHERE user_id = ?" if user_id is not None else ""
        params: List[Any] = [user_id] if user_id is not None else []
        limit_clause = ""
        if limit is not None:
            limit_clause = "LIMIT ?"
            params.append(limit)
        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM {self.comparisons_table} {where}
                ORDER BY created_at DESC, id DESC {limit_clause};
                """,
                params,
            ).fetchall()
        return [self._row_to_comparison(row) for row in rows]

    def _delete_comparison_in(self, conn: sqlite3.Connection, comparison_id: int) -> bool:
        cursor = conn.execute(f"DELETE FROM {self.comparisons_table} WHERE id = ?;", (comparison_id,))
        return cursor.rowcount > 0

    def delete_comparison(self, comparison_id: int) -> bool:
        return self._run_write(lambda conn: self._delete_comparison_in(conn, comparison_id))

    def delete_comparisons_before(self, cutoff: float) -> int:
        """删除早于 cutoff 的比较记录，返回删除数量"""
        def operation(conn: sqlite3.Connection) -> int:
            cursor = conn.execute(
                f"DELETE FROM {self.comparisons_table} WHERE created_at < ?;",
                (cutoff,),
            )
            return cursor.rowcount

        return self._run_write(operation)

    # ==================== 配对计数 ====================

    @staticmethod
    def _ordered_pair(id1: int, id2: int) -> Tuple[int, int]:
        return (id1, id2) if id1 < id2 else (id2, id1)

    def upsert_comparison_pair(
        self,
        id1: int,
        id2: int,
        compared_at: float,
        user_id: Optional[str] = None,
    ) -> None:
        self._run_write(lambda conn: self._upsert_pair_in(conn, id1, id2, compared_at, user_id))

    def _upsert_pair_in(
        self,
        conn: sqlite3.Connection,
        id1: int,
        id2: int,
        compared_at: float,
        user_id: Optional[str],
    ) -> None:
        item_a, item_b = self._ordered_pair(id1, id2)
        conn.execute(
            f"""
            INSERT INTO {self.comparison_pairs_table}
                (user_id, item_a, item_b, comparison_count, last_compared_at)
            VALUES (?, ?, ?, 1, ?)
            ON CONFLICT(item_a, item_b) DO UPDATE SET
                comparison_count = comparison_count + 1,
                last_compared_at = excluded.last_compared_at;
            """,
            (user_id, item_a, item_b, compared_at),
        )

    def decrement_comparison_pair(self, id1: int, id2: int) -> None:
        """配对计数减一，减到零时删除"""
        self._run_write(lambda conn: self._decrement_pair_in(conn, id1, id2))

    def _decrement_pair_in(self, conn: sqlite3.Connection, id1: int, id2: int) -> None:
        item_a, item_b = self._ordered_pair(id1, id2)
        row = conn.execute(
            f"""
            SELECT id, comparison_count FROM {self.comparison_pairs_table}
            WHERE item_a = ? AND item_b = ?;
            """,
            (item_a, item_b),
        ).fetchone()
        if not row:
            return
        if row['comparison_count'] <= 1:
            conn.execute(f"DELETE FROM {self.comparison_pairs_table} WHERE id = ?;", (row['id'],))
        else:
            conn.execute(
                f"UPDATE {self.comparison_pairs_table} SET comparison_count = comparison_count - 1 WHERE id = ?;",
                (row['id'],),
            )

    def get_comparison_pair(self, id1: int, id2: int) -> Optional[Dict[str, Any]]:
        item_a, item_b = self._ordered_pair(id1, id2)
        with self._connect() as conn:
            row = conn.execute(
                f"""
                SELECT * FROM {self.comparison_pairs_table}
                WHERE item_a = ? AND item_b = ?
                LIMIT 1;
                """,
                (item_a, item_b),
            ).fetchone()
        return dict(row) if row else None

    # ==================== 比较事务 ====================

    def record_comparison_result(
        self,
        item_updates: Dict[int, Dict[str, Any]],
        winner_id: int,
        loser_id: int,
        is_tie: bool,
        created_at: float,
        user_id: Optional[str] = None,
        stats: Optional[Dict[str, Any]] = None,
        stats_user_id: Optional[str] = None,
    ) -> int:
        """
        在同一事务中写入双方新评分、比较记录、配对计数和统计文档，返回比较记录ID

        任一步失败时整体回滚
        """
        for updates in item_updates.values():
            self._check_updates(updates)

        def operation(conn: sqlite3.Connection) -> int:
            for item_id, updates in item_updates.items():
                self._update_item_in(conn, item_id, updates)
            comparison_id = self._insert_comparison_in(conn, winner_id, loser_id, is_tie, created_at, user_id)
            self._upsert_pair_in(conn, winner_id, loser_id, created_at, user_id)
            if stats is not None:
                self._save_stats_in(conn, stats, stats_user_id)
            return comparison_id

        return self._run_write(operation)

    def revert_comparison_result(
        self,
        comparison_id: int,
        item_updates: Dict[int, Dict[str, Any]],
        item1_id: int,
        item2_id: int,
        stats: Optional[Dict[str, Any]] = None,
        stats_user_id: Optional[str] = None,
    ) -> None:
        """在同一事务中恢复双方评分、删除比较记录、回退配对计数并保存统计文档"""
        for updates in item_updates.values():
            self._check_updates(updates)

        def operation(conn: sqlite3.Connection) -> None:
            for item_id, updates in item_updates.items():
                self._update_item_in(conn, item_id, updates)
            self._delete_comparison_in(conn, comparison_id)
            self._decrement_pair_in(conn, item1_id, item2_id)
            if stats is not None:
                self._save_stats_in(conn, stats, stats_user_id)

        self._run_write(operation)

    # ==================== 统计文档 ====================

    def load_user_stats(self, user_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT stats_json FROM {self.stats_table} WHERE user_key = ? LIMIT 1;",
                (self._user_key(user_id),),
            ).fetchone()
        if not row:
            return None
        return json.loads(row["stats_json"])

    def _save_stats_in(self, conn: sqlite3.Connection, stats: Dict[str, Any], user_id: Optional[str]) -> None:
        conn.execute(
            f"""
            INSERT INTO {self.stats_table} (user_key, stats_json, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(user_key) DO UPDATE SET
                stats_json = excluded.stats_json,
                updated_at = excluded.updated_at;
            """,
            (self._user_key(user_id), json.dumps(stats, ensure_ascii=False), time.time()),
        )

    def save_user_stats(self, stats: Dict[str, Any], user_id: Optional[str] = None) -> None:
        self._run_write(lambda conn: self._save_stats_in(conn, stats, user_id))
