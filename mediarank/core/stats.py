"""
聚合统计模块
维护比较总数、平局数、连续天数、近7天活动及各类型条目/已排名计数。
统计文档是显式的 UserStats 对象，由纯函数更新，StatsTracker 负责读写存储。
"""

from dataclasses import asdict, dataclass, field, replace
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
import time

from mediarank.infra.scoring.constants import CONFIDENCE_THRESHOLD, MEDIA_TYPES
from mediarank.storage.sqlite_storage import SQLiteStorage


ACTIVITY_WINDOW_DAYS = 7


@dataclass(frozen=True)
class UserStats:
    total_comparisons: int = 0
    tie_count: int = 0
    item_counts: Dict[str, int] = field(default_factory=dict)
    ranked_counts: Dict[str, int] = field(default_factory=dict)
    current_streak: int = 0
    longest_streak: int = 0
    # 最近一次比较的日期（UTC, YYYY-MM-DD）
    last_comparison_date: Optional[str] = None
    # [{'date': 'YYYY-MM-DD', 'count': n}, ...] 按日期升序
    last_7_days: List[Dict[str, Any]] = field(default_factory=list)
    updated_at: Optional[float] = None

    @property
    def total_items(self) -> int:
        return sum(self.item_counts.values())

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'UserStats':
        if not data:
            return cls()
        known = {key: data[key] for key in cls.__dataclass_fields__ if key in data}
        return cls(**known)


def day_of(timestamp: float) -> date:
    """时间戳所在的自然日（UTC）"""
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).date()


def apply_comparison(stats: UserStats, is_tie: bool, now: float) -> UserStats:
    """
    记录一次比较后的统计

    连续天数规则:
    - 同一天: 不变
    - 上次为昨天: +1，并更新最长连续天数
    - 首次比较: 置为1
    - 中间有间隔: 重置为1
    """
    today = day_of(now)
    streak = stats.current_streak
    longest = stats.longest_streak

    if stats.last_comparison_date is None:
        streak = 1
        longest = max(longest, 1)
    else:
        last_day = date.fromisoformat(stats.last_comparison_date)
        if last_day == today:
            pass
        elif last_day == today - timedelta(days=1):
            streak += 1
            longest = max(longest, streak)
        elif last_day < today - timedelta(days=1):
            streak = 1

    today_key = today.isoformat()
    buckets = {entry['date']: entry['count'] for entry in stats.last_7_days}
    buckets[today_key] = buckets.get(today_key, 0) + 1
    # 保留最近7天（含今天之前的第7天）
    oldest_key = (today - timedelta(days=ACTIVITY_WINDOW_DAYS)).isoformat()
    last_7_days = [
        {'date': day_key, 'count': count}
        for day_key, count in sorted(buckets.items())
        if day_key >= oldest_key
    ]

    return replace(
        stats,
        total_comparisons=stats.total_comparisons + 1,
        tie_count=stats.tie_count + 1 if is_tie else stats.tie_count,
        current_streak=streak,
        longest_streak=longest,
        last_comparison_date=today_key,
        last_7_days=last_7_days,
        updated_at=now,
    )


def revert_comparison(stats: UserStats, is_tie: bool, now: float) -> UserStats:
    """撤销一次比较: 总数与平局数减一（不低于0），连续天数与活动记录保持不变"""
    return replace(
        stats,
        total_comparisons=max(0, stats.total_comparisons - 1),
        tie_count=max(0, stats.tie_count - 1) if is_tie else stats.tie_count,
        updated_at=now,
    )


def apply_library_change(
    stats: UserStats,
    media_type: str,
    rd: float,
    action: str,
    now: Optional[float] = None,
    confidence_threshold: float = CONFIDENCE_THRESHOLD,
) -> UserStats:
    """条目加入/移出条目库时更新类型计数；RD达到阈值的条目同时计入已排名数"""
    if action not in ('add', 'remove'):
        raise ValueError(f"不支持的操作: {action}")
    delta = 1 if action == 'add' else -1
    item_counts = dict(stats.item_counts)
    ranked_counts = dict(stats.ranked_counts)

    item_counts[media_type] = max(0, item_counts.get(media_type, 0) + delta)
    if rd <= confidence_threshold:
        ranked_counts[media_type] = max(0, ranked_counts.get(media_type, 0) + delta)

    return replace(
        stats,
        item_counts=item_counts,
        ranked_counts=ranked_counts,
        updated_at=now if now is not None else time.time(),
    )


def apply_ranked_change(
    stats: UserStats,
    media_type: str,
    was_ranked: bool,
    is_now_ranked: bool,
    now: Optional[float] = None,
) -> UserStats:
    """条目跨越置信度阈值时调整已排名计数"""
    if was_ranked == is_now_ranked:
        return stats
    ranked_counts = dict(stats.ranked_counts)
    delta = 1 if is_now_ranked else -1
    ranked_counts[media_type] = max(0, ranked_counts.get(media_type, 0) + delta)
    return replace(
        stats,
        ranked_counts=ranked_counts,
        updated_at=now if now is not None else time.time(),
    )


class StatsTracker:
    """统计文档的读写: 通过存储加载 UserStats，应用纯函数更新后保存

    比较与撤销时的统计由编排器与评分一起在同一事务中写入
    """

    def __init__(
        self,
        storage: SQLiteStorage,
        user_id: Optional[str] = None,
        confidence_threshold: float = CONFIDENCE_THRESHOLD,
    ):
        self.storage = storage
        self.user_id = user_id
        self.confidence_threshold = confidence_threshold

    def load(self) -> UserStats:
        return UserStats.from_dict(self.storage.load_user_stats(self.user_id))

    def save(self, stats: UserStats) -> UserStats:
        self.storage.save_user_stats(stats.to_dict(), self.user_id)
        return stats

    def record_library_change(self, media_type: str, rd: float, action: str, now: Optional[float] = None) -> UserStats:
        return self.save(apply_library_change(self.load(), media_type, rd, action, now, self.confidence_threshold))

    def get_aggregated_stats(self, now: Optional[float] = None) -> Dict[str, Any]:
        """汇总统计: 今日比较数、近7天逐日序列（最早在前）、连续天数与条目计数"""
        stats = self.load()
        today = day_of(now if now is not None else time.time())
        buckets = {entry['date']: entry['count'] for entry in stats.last_7_days}

        last_7_days = []
        for offset in range(ACTIVITY_WINDOW_DAYS - 1, -1, -1):
            day = today - timedelta(days=offset)
            last_7_days.append({
                'date': day.isoformat(),
                'day': day.strftime('%a'),
                'count': buckets.get(day.isoformat(), 0),
            })

        result = {
            'total_comparisons': stats.total_comparisons,
            'today_comparisons': buckets.get(today.isoformat(), 0),
            'streak': stats.current_streak,
            'longest_streak': stats.longest_streak,
            'tie_count': stats.tie_count,
            'total_items': stats.total_items,
            'last_7_days': last_7_days,
        }
        for media_type in MEDIA_TYPES:
            key = media_type.lower()
            result[f'{key}_count'] = stats.item_counts.get(media_type, 0)
            result[f'ranked_{key}_count'] = stats.ranked_counts.get(media_type, 0)
        return result
