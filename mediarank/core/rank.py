"""
排名查询模块
负责从条目库生成排名列表、百分位分数和统计数据。
"""

import time
from typing import Any, Dict, List, Optional

import numpy as np

from mediarank.infra.scoring.constants import CONFIDENCE_THRESHOLD
from mediarank.storage.sqlite_storage import SQLiteStorage


def percentile_score(rank: int, total: int) -> float:
    """
    排名转换为0-10分: 排名之下的条目占比 * 10，保留1位小数

    只有一个条目时为5.0
    """
    if total <= 0 or rank < 1 or rank > total:
        raise ValueError(f"排名超出范围: rank={rank}, total={total}")
    percentile = (total - rank) / (total - 1) * 100 if total > 1 else 50
    return round(percentile / 10, 1)


def get_items_with_percentile(storage: SQLiteStorage, media_type: str) -> List[Dict[str, Any]]:
    """按评分降序返回条目，附带排名与百分位分数"""
    items = storage.list_library_items(media_type=media_type, order_by='rating_desc')
    total = len(items)
    return [
        {
            **item,
            'rank': rank,
            'percentile_score': percentile_score(rank, total),
            'total_in_type': total,
        }
        for rank, item in enumerate(items, 1)
    ]


def get_top_items(
    storage: SQLiteStorage,
    media_type: Optional[str] = None,
    limit: int = 10,
) -> List[Dict[str, Any]]:
    """排行榜: 评分最高的前 limit 个条目"""
    items = storage.list_library_items(media_type=media_type, order_by='rating_desc')
    total = len(items)
    return [
        {
            'id': item['id'],
            'rank': rank,
            'title': item['title'],
            'type': item['media_type'],
            'rating': item['rating'],
            'rd': item['rd'],
            'percentile_score': percentile_score(rank, total),
            'comparison_count': item['comparison_count'],
        }
        for rank, item in enumerate(items[:limit], 1)
    ]


def get_ranked_items(
    storage: SQLiteStorage,
    media_type: str,
    threshold: float = CONFIDENCE_THRESHOLD,
) -> List[Dict[str, Any]]:
    """已排名条目（RD <= 阈值），评分降序"""
    return storage.list_library_items(media_type=media_type, max_rd=threshold, order_by='rating_desc')


def get_unranked_items(
    storage: SQLiteStorage,
    media_type: str,
    threshold: float = CONFIDENCE_THRESHOLD,
) -> List[Dict[str, Any]]:
    """未排名条目（RD > 阈值），RD降序"""
    return storage.list_library_items(media_type=media_type, min_rd=threshold, order_by='rd_desc')


def get_unranked_count(
    storage: SQLiteStorage,
    media_type: Optional[str] = None,
    threshold: float = CONFIDENCE_THRESHOLD,
) -> int:
    return len(storage.list_library_items(media_type=media_type, min_rd=threshold))


def get_ranking_stats(
    storage: SQLiteStorage,
    media_type: Optional[str] = None,
    threshold: float = CONFIDENCE_THRESHOLD,
) -> Dict[str, Any]:
    """条目库整体统计: 条目数、比较数、平局数、待重排数、未排名数、平均比较次数"""
    items = storage.list_library_items(media_type=media_type)
    comparisons = storage.list_comparisons()

    comparison_counts = np.array([item['comparison_count'] for item in items], dtype=float)
    ratings = np.array([item['rating'] for item in items], dtype=float)

    return {
        'total_items': len(items),
        'total_comparisons': len(comparisons),
        'total_ties': sum(1 for c in comparisons if c['is_tie']),
        'items_needing_reranking': sum(1 for item in items if item['needs_reranking']),
        'unranked_items': sum(1 for item in items if item['rd'] > threshold),
        'average_comparisons': int(round(float(np.mean(comparison_counts)))) if len(items) else 0,
        'average_rating': round(float(np.mean(ratings)), 1) if len(items) else None,
        'rating_std': round(float(np.std(ratings)), 1) if len(items) else None,
    }


def get_due_comparisons(
    storage: SQLiteStorage,
    now: Optional[float] = None,
    threshold: float = CONFIDENCE_THRESHOLD,
) -> Dict[str, Any]:
    """
    待比较条目统计

    满足任一条件即视为待比较: 需要重排、已过下次比较时间、RD高于阈值
    """
    now = now if now is not None else time.time()

    def is_overdue(item: Dict[str, Any]) -> bool:
        return bool(item['next_comparison_due']) and item['next_comparison_due'] < now

    due_items = [
        item for item in storage.list_library_items()
        if item['needs_reranking'] or is_overdue(item) or item['rd'] > threshold
    ]
    return {
        'has_due_comparisons': bool(due_items),
        'due_count': len(due_items),
        'needs_reranking': sum(1 for item in due_items if item['needs_reranking']),
        'scheduled': sum(1 for item in due_items if is_overdue(item)),
        'unranked_items': sum(1 for item in due_items if item['rd'] > threshold),
    }
