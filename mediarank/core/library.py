"""
条目库管理模块
负责条目的加入、移除和状态更新，并同步维护统计文档中的条目计数
"""

import time
from typing import Any, Dict, Optional

from mediarank.core.stats import StatsTracker
from mediarank.infra.scoring.constants import MEDIA_TYPES, WATCH_STATUSES
from mediarank.infra.scoring.exceptions import ItemNotFoundError
from mediarank.infra.scoring.rating_algorithms import Glicko2RatingAlgorithm, RatingAlgorithm
from mediarank.storage.sqlite_storage import SQLiteStorage
from mediarank.utils.logger import get_logger

logger = get_logger(__name__)


def _validate_status(watch_status: str) -> None:
    if watch_status not in WATCH_STATUSES:
        raise ValueError(f"未知的观看状态: {watch_status}，可选: {', '.join(WATCH_STATUSES)}")


def add_to_library(
    storage: SQLiteStorage,
    title: str,
    media_type: str,
    watch_status: str,
    external_id: Optional[str] = None,
    notes: Optional[str] = None,
    user_id: Optional[str] = None,
    algorithm: Optional[RatingAlgorithm] = None,
    stats_tracker: Optional[StatsTracker] = None,
    now: Optional[float] = None,
) -> int:
    """
    将条目加入条目库，使用默认评分记录（1500 / 350 / 0.06）

    Returns:
        新条目ID
    """
    if media_type not in MEDIA_TYPES:
        raise ValueError(f"未知的媒体类型: {media_type}，可选: {', '.join(MEDIA_TYPES)}")
    _validate_status(watch_status)
    if not title or not title.strip():
        raise ValueError("标题不能为空")
    if external_id is not None and storage.find_library_item_by_external_id(external_id, user_id):
        raise ValueError(f"条目已在库中: {external_id}")

    algorithm = algorithm or Glicko2RatingAlgorithm()
    record = algorithm.get_initial_rating()
    now = now if now is not None else time.time()

    item_id = storage.add_library_item({
        'user_id': user_id,
        'external_id': external_id,
        'media_type': media_type,
        'title': title.strip(),
        'watch_status': watch_status,
        'notes': notes,
        'rating': record.rating,
        'rd': record.rd,
        'volatility': record.volatility,
        'added_at': now,
        'updated_at': now,
    })

    tracker = stats_tracker or StatsTracker(storage, user_id=user_id)
    tracker.record_library_change(media_type, record.rd, 'add', now)
    logger.info(f"已加入条目库: #{item_id} {title} [{media_type}/{watch_status}]")
    return item_id


def remove_from_library(
    storage: SQLiteStorage,
    item_id: int,
    stats_tracker: Optional[StatsTracker] = None,
    now: Optional[float] = None,
) -> None:
    """从条目库移除条目（比较记录保留）"""
    item = storage.get_library_item(item_id)
    if item is None:
        raise ItemNotFoundError(f"条目不存在: {item_id}")

    storage.delete_library_item(item_id)
    tracker = stats_tracker or StatsTracker(storage, user_id=item.get('user_id'))
    tracker.record_library_change(item['media_type'], item['rd'], 'remove', now)
    logger.info(f"已移除条目: #{item_id} {item['title']}")


def update_library_item(
    storage: SQLiteStorage,
    item_id: int,
    watch_status: Optional[str] = None,
    notes: Optional[str] = None,
    now: Optional[float] = None,
) -> Dict[str, Any]:
    """
    更新条目的观看状态或备注

    状态从其他状态变为 COMPLETED 时标记 needs_reranking，下次配对优先重排
    """
    item = storage.get_library_item(item_id)
    if item is None:
        raise ItemNotFoundError(f"条目不存在: {item_id}")

    updates: Dict[str, Any] = {'updated_at': now if now is not None else time.time()}
    if notes is not None:
        updates['notes'] = notes
    if watch_status is not None:
        _validate_status(watch_status)
        updates['watch_status'] = watch_status
        if watch_status == 'COMPLETED' and item['watch_status'] != 'COMPLETED':
            updates['needs_reranking'] = True
            logger.info(f"条目 #{item_id} 标记为已完成，等待重新排名")

    storage.update_library_item(item_id, updates)
    return storage.get_library_item(item_id)
