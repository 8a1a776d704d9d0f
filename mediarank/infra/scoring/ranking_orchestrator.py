"""
排名编排器模块
协调条目存储、配对策略和评分算法，编排配对、记录比较、撤销比较的完整流程
"""

import time
from dataclasses import replace
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from .constants import (
    COMPARISON_RESURFACE_DAYS_ESTABLISHED,
    CONFIDENCE_THRESHOLD,
    COMPARISON_RESURFACE_DAYS_NEW,
    DAY_SECONDS,
    RANKABLE_STATUSES,
)
from .exceptions import ItemNotFoundError
from .models import PairingCandidate, RatingRecord, candidate_from_item, record_from_item
from .pairing_strategies import PairingStrategy, SkippedPairs, SmartPairingStrategy
from .rating_algorithms import Glicko2RatingAlgorithm, RatingAlgorithm
from mediarank.core.stats import StatsTracker, apply_comparison, apply_ranked_change, revert_comparison
from mediarank.storage.sqlite_storage import SQLiteStorage
from mediarank.utils.logger import get_logger


class RankingOrchestrator:
    """排名编排器: 读取候选、选择配对、更新评分、维护比较记录与统计"""

    def __init__(
        self,
        storage: SQLiteStorage,
        rating_algorithm: Optional[RatingAlgorithm] = None,
        pairing_strategy: Optional[PairingStrategy] = None,
        stats_tracker: Optional[StatsTracker] = None,
        logger: Any = None,
        clock: Callable[[], float] = time.time,
        rankable_statuses: Iterable[str] = RANKABLE_STATUSES,
        resurface_days_new: float = COMPARISON_RESURFACE_DAYS_NEW,
        resurface_days_established: float = COMPARISON_RESURFACE_DAYS_ESTABLISHED,
        user_id: Optional[str] = None,
    ):
        self.storage = storage
        self.rating_algorithm = rating_algorithm or Glicko2RatingAlgorithm()
        self.pairing_strategy = pairing_strategy or SmartPairingStrategy(
            confidence_threshold=self._confidence_threshold(),
        )
        self.stats_tracker = stats_tracker or StatsTracker(
            storage,
            user_id=user_id,
            confidence_threshold=self._confidence_threshold(),
        )
        self.logger = logger or get_logger(__name__)
        self.clock = clock
        self.rankable_statuses = tuple(rankable_statuses)
        self.resurface_days_new = resurface_days_new
        self.resurface_days_established = resurface_days_established
        self.user_id = user_id

    def _confidence_threshold(self) -> float:
        return getattr(self.rating_algorithm, 'confidence_threshold', CONFIDENCE_THRESHOLD)

    def _is_ranked(self, rd: float) -> bool:
        return self.rating_algorithm.is_ranked(rd)

    def _next_comparison_due(self, rd: float, now: float) -> float:
        """RD 仍高于阈值的条目 1 天后再次出现，已排名条目 3 天后"""
        if not self._is_ranked(rd):
            return now + DAY_SECONDS * self.resurface_days_new
        return now + DAY_SECONDS * self.resurface_days_established

    def _get_item(self, item_id: int) -> Dict[str, Any]:
        item = self.storage.get_library_item(item_id)
        if item is None:
            raise ItemNotFoundError(f"条目不存在: {item_id}")
        return item

    # ==================== 配对 ====================

    def _get_rankable_items(self, media_type: str, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
        return self.storage.list_library_items(
            media_type=media_type,
            user_id=user_id if user_id is not None else self.user_id,
            watch_statuses=self.rankable_statuses,
        )

    def get_rankable_candidates(self, media_type: str, user_id: Optional[str] = None) -> List[PairingCandidate]:
        """获取可参与配对的候选（排除计划观看等状态）"""
        return [candidate_from_item(item) for item in self._get_rankable_items(media_type, user_id)]

    def _select_pair(
        self,
        items: Sequence[Dict[str, Any]],
        skipped_pairs: Optional[SkippedPairs],
    ) -> Optional[Tuple[Dict[str, Any], Dict[str, Any]]]:
        candidates = [candidate_from_item(item) for item in items]
        pair = self.pairing_strategy.select_pair(candidates, skipped_pairs)
        if pair is None:
            return None
        by_id = {item['id']: item for item in items}
        return by_id[pair[0].item_id], by_id[pair[1].item_id]

    def get_smart_pair(
        self,
        media_type: str,
        skipped_pairs: Optional[SkippedPairs] = None,
        user_id: Optional[str] = None,
    ) -> Optional[Tuple[Dict[str, Any], Dict[str, Any]]]:
        """选出下一组待比较的条目，无可用配对时返回None"""
        return self._select_pair(self._get_rankable_items(media_type, user_id), skipped_pairs)

    def get_smart_pair_with_stats(
        self,
        media_type: str,
        skipped_pairs: Optional[SkippedPairs] = None,
        user_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """选出配对并附带候选池统计"""
        items = self._get_rankable_items(media_type, user_id)
        pair = self._select_pair(items, skipped_pairs)
        total = len(items)
        stats = {
            'total_items': total,
            'items_needing_reranking': sum(1 for item in items if item['needs_reranking']),
            'unranked_items': sum(1 for item in items if not self._is_ranked(item['rd'])),
            'average_comparisons': round(sum(item['comparison_count'] for item in items) / total) if total else 0,
        }
        return {'pair': pair, 'stats': stats}

    # ==================== 记录比较 ====================

    @staticmethod
    def _rating_triple(record: RatingRecord) -> Dict[str, float]:
        return {'rating': record.rating, 'rd': record.rd, 'volatility': record.volatility}

    def _result_updates(self, new_record: RatingRecord, now: float) -> Dict[str, Any]:
        return {
            'rating': new_record.rating,
            'rd': new_record.rd,
            'volatility': new_record.volatility,
            'comparison_count': new_record.comparison_count,
            'total_wins': new_record.total_wins,
            'total_losses': new_record.total_losses,
            'total_ties': new_record.total_ties,
            'last_compared_at': now,
            'next_comparison_due': self._next_comparison_due(new_record.rd, now),
            'needs_reranking': False,
            'updated_at': now,
        }

    def _record_outcome(self, item1_id: int, item2_id: int, is_tie: bool) -> Dict[str, Any]:
        if item1_id == item2_id:
            raise ValueError(f"条目不能与自身比较: {item1_id}")

        item1 = self._get_item(item1_id)
        item2 = self._get_item(item2_id)
        old1 = record_from_item(item1)
        old2 = record_from_item(item2)

        if is_tie:
            new1, new2 = self.rating_algorithm.process_tie(old1, old2)
            new1 = replace(new1, comparison_count=old1.comparison_count + 1, total_ties=old1.total_ties + 1)
            new2 = replace(new2, comparison_count=old2.comparison_count + 1, total_ties=old2.total_ties + 1)
        else:
            new1, new2 = self.rating_algorithm.process_comparison(old1, old2)
            new1 = replace(new1, comparison_count=old1.comparison_count + 1, total_wins=old1.total_wins + 1)
            new2 = replace(new2, comparison_count=old2.comparison_count + 1, total_losses=old2.total_losses + 1)

        now = self.clock()
        stats = self.stats_tracker.load()
        for item, new_record in ((item1, new1), (item2, new2)):
            stats = apply_ranked_change(
                stats,
                item['media_type'],
                self._is_ranked(item['rd']),
                self._is_ranked(new_record.rd),
                now,
            )
        stats = apply_comparison(stats, is_tie, now)

        # 双方评分、比较记录、配对计数与统计在同一事务中提交
        comparison_id = self.storage.record_comparison_result(
            {
                item1_id: self._result_updates(new1, now),
                item2_id: self._result_updates(new2, now),
            },
            winner_id=item1_id,
            loser_id=item2_id,
            is_tie=is_tie,
            created_at=now,
            user_id=self.user_id,
            stats=stats.to_dict(),
            stats_user_id=self.stats_tracker.user_id,
        )

        undo_data = {
            'item1_id': item1_id,
            'item2_id': item2_id,
            'is_tie': is_tie,
            'item1_old': self._rating_triple(old1),
            'item2_old': self._rating_triple(old2),
            'item1_old_comp_count': old1.comparison_count,
            'item2_old_comp_count': old2.comparison_count,
        }
        if is_tie:
            undo_data['item1_old_ties'] = old1.total_ties
            undo_data['item2_old_ties'] = old2.total_ties
        else:
            undo_data['item1_old_wins'] = old1.total_wins
            undo_data['item2_old_losses'] = old2.total_losses

        self.logger.info(
            f"{'平局' if is_tie else '比较'}记录 #{comparison_id}: "
            f"{item1['title']}({old1.rating:.0f}->{new1.rating:.0f}, RD {old1.rd:.0f}->{new1.rd:.0f}) vs "
            f"{item2['title']}({old2.rating:.0f}->{new2.rating:.0f}, RD {old2.rd:.0f}->{new2.rd:.0f})"
        )
        return {
            'comparison_id': comparison_id,
            'item1': new1,
            'item2': new2,
            'undo_data': undo_data,
        }

    def record_comparison(self, winner_id: int, loser_id: int) -> Dict[str, Any]:
        """记录一次胜负比较，返回双方新评分及撤销数据"""
        result = self._record_outcome(winner_id, loser_id, is_tie=False)
        winner, loser = result['item1'], result['item2']
        return {
            'comparison_id': result['comparison_id'],
            'winner_new': winner.rating,
            'loser_new': loser.rating,
            'winner_rd': winner.rd,
            'loser_rd': loser.rd,
            'undo_data': result['undo_data'],
        }

    def record_tie(self, item1_id: int, item2_id: int) -> Dict[str, Any]:
        """记录一次平局，返回双方新评分及撤销数据"""
        result = self._record_outcome(item1_id, item2_id, is_tie=True)
        item1, item2 = result['item1'], result['item2']
        return {
            'comparison_id': result['comparison_id'],
            'item1_rating': item1.rating,
            'item2_rating': item2.rating,
            'item1_rd': item1.rd,
            'item2_rd': item2.rd,
            'undo_data': result['undo_data'],
        }

    # ==================== 撤销 ====================

    @staticmethod
    def _restore_updates(item: Dict[str, Any], prefix: str, undo_data: Dict[str, Any], now: float) -> Dict[str, Any]:
        old = undo_data[f'{prefix}_old']
        return {
            'rating': old['rating'],
            'rd': old['rd'],
            'volatility': old['volatility'],
            'comparison_count': undo_data[f'{prefix}_old_comp_count'],
            'total_wins': undo_data.get(f'{prefix}_old_wins', item['total_wins']),
            'total_losses': undo_data.get(f'{prefix}_old_losses', item['total_losses']),
            'total_ties': undo_data.get(f'{prefix}_old_ties', item['total_ties']),
            'updated_at': now,
        }

    def undo_comparison(self, comparison_id: int, undo_data: Dict[str, Any]) -> Dict[str, Any]:
        """撤销一次比较: 恢复双方旧评分与计数，删除比较记录，回退配对计数和统计"""
        comparison = self.storage.get_comparison(comparison_id)
        if comparison is None:
            raise ItemNotFoundError(f"比较记录不存在: {comparison_id}")
        if (comparison['winner_id'], comparison['loser_id']) != (undo_data['item1_id'], undo_data['item2_id']):
            raise ValueError(f"撤销数据与比较记录 #{comparison_id} 不匹配")

        item1 = self._get_item(undo_data['item1_id'])
        item2 = self._get_item(undo_data['item2_id'])
        now = self.clock()

        stats = self.stats_tracker.load()
        item_updates = {}
        for item, prefix in ((item1, 'item1'), (item2, 'item2')):
            item_updates[item['id']] = self._restore_updates(item, prefix, undo_data, now)
            stats = apply_ranked_change(
                stats,
                item['media_type'],
                self._is_ranked(item['rd']),
                self._is_ranked(undo_data[f'{prefix}_old']['rd']),
                now,
            )
        stats = revert_comparison(stats, bool(undo_data.get('is_tie')), now)

        self.storage.revert_comparison_result(
            comparison_id,
            item_updates,
            item1['id'],
            item2['id'],
            stats=stats.to_dict(),
            stats_user_id=self.stats_tracker.user_id,
        )

        self.logger.info(f"已撤销比较记录 #{comparison_id}: {item1['title']} vs {item2['title']}")
        return {'success': True}

    # ==================== 历史 ====================

    def get_history(self, limit: int = 50) -> List[Dict[str, Any]]:
        """最近的比较记录（新在前），附带双方条目"""
        history = []
        for comparison in self.storage.list_comparisons(limit=limit, user_id=self.user_id):
            history.append({
                **comparison,
                'winner': self.storage.get_library_item(comparison['winner_id']),
                'loser': self.storage.get_library_item(comparison['loser_id']),
            })
        return history
