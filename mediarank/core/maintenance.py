"""
定期维护任务
RD 随时间衰减、过期比较记录归档；触发由外部定时任务负责
"""

import time
from typing import Optional

from mediarank.infra.scoring.constants import (
    COMPARISON_RETENTION_DAYS,
    DAY_SECONDS,
    RD_DECAY_PER_DAY,
)
from mediarank.infra.scoring.rating_algorithms import Glicko2RatingAlgorithm, RatingAlgorithm
from mediarank.storage.sqlite_storage import SQLiteStorage
from mediarank.utils.logger import get_logger, log_event

logger = get_logger(__name__)


def decay_ratings(
    storage: SQLiteStorage,
    now: Optional[float] = None,
    decay_per_day: float = RD_DECAY_PER_DAY,
    algorithm: Optional[RatingAlgorithm] = None,
) -> int:
    """
    对最近24小时内未比较过的条目做一天的RD增长

    RD 已在上限的条目不写入。返回发生衰减的条目数
    """
    now = now if now is not None else time.time()
    algorithm = algorithm or Glicko2RatingAlgorithm()
    one_day_ago = now - DAY_SECONDS
    decayed_count = 0

    for item in storage.list_library_items():
        last_compared_at = item.get('last_compared_at')
        if last_compared_at and last_compared_at > one_day_ago:
            continue

        new_rd = algorithm.apply_daily_decay(item['rd'], days=1, decay_per_day=decay_per_day)
        if new_rd > item['rd']:
            storage.update_library_item(item['id'], {'rd': new_rd})
            decayed_count += 1

    log_event(logger, 'info', 'rd_decay_completed', decayed_count=decayed_count, decay_per_day=decay_per_day)
    return decayed_count


def archive_old_comparisons(
    storage: SQLiteStorage,
    now: Optional[float] = None,
    retention_days: int = COMPARISON_RETENTION_DAYS,
) -> int:
    """删除早于保留期的比较记录，返回删除数量"""
    now = now if now is not None else time.time()
    cutoff = now - retention_days * DAY_SECONDS
    archived_count = storage.delete_comparisons_before(cutoff)
    log_event(
        logger,
        'info',
        'comparisons_archived',
        archived_count=archived_count,
        retention_days=retention_days,
    )
    return archived_count
