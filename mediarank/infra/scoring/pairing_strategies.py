"""
配对策略模块
提供强制重排、低置信度二分定位、相近评分精细比较、随机兜底等配对策略
"""

from abc import ABC, abstractmethod
from typing import Hashable, Iterable, List, Optional, Sequence, Tuple
import random

from .constants import CLOSE_RATING_RANGE, CONFIDENCE_THRESHOLD
from .models import PairingCandidate
from mediarank.utils.logger import get_logger

logger = get_logger(__name__)

Pair = Tuple[PairingCandidate, PairingCandidate]
SkippedPairs = Iterable[Tuple[Hashable, Hashable]]


def is_pair_skipped(item1_id: Hashable, item2_id: Hashable, skipped_pairs: SkippedPairs) -> bool:
    """判断配对是否在跳过列表中，(a, b) 与 (b, a) 等价"""
    target = frozenset((item1_id, item2_id))
    return any(frozenset(pair) == target for pair in skipped_pairs)


def _last_compared_key(candidate: PairingCandidate) -> float:
    # 从未比较视为最旧
    return candidate.last_compared_at or 0


def sort_by_rating(candidates: Sequence[PairingCandidate]) -> List[PairingCandidate]:
    """按评分降序排列（稳定排序）"""
    return sorted(candidates, key=lambda c: c.rating, reverse=True)


def find_binary_search_opponent(
    primary: PairingCandidate,
    sorted_by_rating: Sequence[PairingCandidate],
) -> Optional[PairingCandidate]:
    """
    二分定位对手: 根据已比较次数逐步缩小排名区间

    - 0次: 取中位
    - 1次: 当前排名在上半区取25%分位，否则取75%分位
    - 2次及以上: 偶数次向上移动 n/4，奇数次向下移动 n/4
    目标恰为自身时取相邻位置（先+1后-1）
    """
    total = len(sorted_by_rating)
    if total < 2:
        return None

    if primary.comparison_count == 0:
        target_index = total // 2
    else:
        current_rank = next(
            (i for i, c in enumerate(sorted_by_rating) if c.item_id == primary.item_id),
            -1,
        )
        if primary.comparison_count == 1:
            if current_rank < total / 2:
                target_index = int(total * 0.25)
            else:
                target_index = int(total * 0.75)
        elif primary.comparison_count % 2 == 0:
            target_index = max(0, current_rank - total // 4)
        else:
            target_index = min(total - 1, current_rank + total // 4)

    opponent = sorted_by_rating[target_index]
    if opponent.item_id == primary.item_id:
        if target_index + 1 < total:
            return sorted_by_rating[target_index + 1]
        if target_index - 1 >= 0:
            return sorted_by_rating[target_index - 1]
        return None
    return opponent


def find_close_rating_opponent(
    primary: PairingCandidate,
    pool: Sequence[PairingCandidate],
    close_rating_range: float = CLOSE_RATING_RANGE,
) -> Optional[PairingCandidate]:
    """
    相近评分对手: 评分差在范围内的条目中取最久未比较者；
    范围内无条目时取评分差最小者
    """
    others = [c for c in pool if c.item_id != primary.item_id]
    if not others:
        return None

    close = [c for c in others if abs(c.rating - primary.rating) <= close_rating_range]
    if close:
        return min(close, key=_last_compared_key)

    return min(others, key=lambda c: abs(c.rating - primary.rating))


def find_opponent(
    primary: PairingCandidate,
    pool: Sequence[PairingCandidate],
    sorted_by_rating: Sequence[PairingCandidate],
    confidence_threshold: float = CONFIDENCE_THRESHOLD,
    close_rating_range: float = CLOSE_RATING_RANGE,
) -> Optional[PairingCandidate]:
    """根据自身RD选择二分定位或相近评分对手"""
    if primary.rd > confidence_threshold:
        return find_binary_search_opponent(primary, sorted_by_rating)
    return find_close_rating_opponent(primary, pool, close_rating_range)


class PairingStrategy(ABC):
    """配对策略基类: 定义配对策略接口"""

    def __init__(
        self,
        confidence_threshold: float = CONFIDENCE_THRESHOLD,
        close_rating_range: float = CLOSE_RATING_RANGE,
    ):
        self.confidence_threshold = confidence_threshold
        self.close_rating_range = close_rating_range

    @abstractmethod
    def select_pair(
        self,
        candidates: Sequence[PairingCandidate],
        skipped_pairs: Optional[SkippedPairs] = None,
        **kwargs
    ) -> Optional[Pair]:
        """选出下一组待比较的配对，无可用配对时返回None"""
        pass


class RerankingPairingStrategy(PairingStrategy):
    """强制重排策略: 被标记 needs_reranking 的条目优先（按原列表顺序）"""

    def select_pair(
        self,
        candidates: Sequence[PairingCandidate],
        skipped_pairs: Optional[SkippedPairs] = None,
        **kwargs
    ) -> Optional[Pair]:
        if len(candidates) < 2:
            return None
        skipped = list(skipped_pairs or [])
        sorted_by_rating = kwargs.get('sorted_by_rating') or sort_by_rating(candidates)

        for primary in candidates:
            if not primary.needs_reranking:
                continue
            opponent = find_opponent(
                primary,
                candidates,
                sorted_by_rating,
                self.confidence_threshold,
                self.close_rating_range,
            )
            if opponent and not is_pair_skipped(primary.item_id, opponent.item_id, skipped):
                return primary, opponent
        return None


class LowConfidencePairingStrategy(PairingStrategy):
    """低置信度定位策略: RD高于阈值的条目按RD降序，用二分定位寻找对手"""

    def select_pair(
        self,
        candidates: Sequence[PairingCandidate],
        skipped_pairs: Optional[SkippedPairs] = None,
        **kwargs
    ) -> Optional[Pair]:
        if len(candidates) < 2:
            return None
        skipped = list(skipped_pairs or [])
        sorted_by_rating = kwargs.get('sorted_by_rating') or sort_by_rating(candidates)

        uncertain = sorted(
            (c for c in candidates if c.rd > self.confidence_threshold),
            key=lambda c: c.rd,
            reverse=True,
        )
        for primary in uncertain:
            opponent = find_binary_search_opponent(primary, sorted_by_rating)
            if opponent and not is_pair_skipped(primary.item_id, opponent.item_id, skipped):
                return primary, opponent
        return None


class CloseRatingPairingStrategy(PairingStrategy):
    """相近评分精细比较策略: 仅在已排名条目之间，最久未比较者优先"""

    def select_pair(
        self,
        candidates: Sequence[PairingCandidate],
        skipped_pairs: Optional[SkippedPairs] = None,
        **kwargs
    ) -> Optional[Pair]:
        established = [c for c in candidates if c.rd <= self.confidence_threshold]
        if len(established) < 2:
            return None
        skipped = list(skipped_pairs or [])

        for primary in sorted(established, key=_last_compared_key):
            opponent = find_close_rating_opponent(primary, established, self.close_rating_range)
            if opponent and not is_pair_skipped(primary.item_id, opponent.item_id, skipped):
                return primary, opponent
        return None


class RandomPairingStrategy(PairingStrategy):
    """随机配对策略: 打乱后按 i<j 顺序返回第一个未跳过的配对"""

    def __init__(self, rng: Optional[random.Random] = None, **kwargs):
        super().__init__(**kwargs)
        self._rng = rng or random.Random()

    def select_pair(
        self,
        candidates: Sequence[PairingCandidate],
        skipped_pairs: Optional[SkippedPairs] = None,
        **kwargs
    ) -> Optional[Pair]:
        if len(candidates) < 2:
            return None
        skipped = list(skipped_pairs or [])

        shuffled = list(candidates)
        self._rng.shuffle(shuffled)
        for i in range(len(shuffled) - 1):
            for j in range(i + 1, len(shuffled)):
                if not is_pair_skipped(shuffled[i].item_id, shuffled[j].item_id, skipped):
                    return shuffled[i], shuffled[j]
        return None


class SmartPairingStrategy(PairingStrategy):
    """
    组合配对策略: 依次尝试 强制重排 -> 低置信度定位 -> 相近评分 -> 随机兜底，
    第一个成功的策略胜出；不修改任何输入
    """

    def __init__(
        self,
        strategies: Optional[List[PairingStrategy]] = None,
        rng: Optional[random.Random] = None,
        confidence_threshold: float = CONFIDENCE_THRESHOLD,
        close_rating_range: float = CLOSE_RATING_RANGE,
    ):
        super().__init__(confidence_threshold, close_rating_range)
        if strategies is None:
            params = {
                'confidence_threshold': confidence_threshold,
                'close_rating_range': close_rating_range,
            }
            strategies = [
                RerankingPairingStrategy(**params),
                LowConfidencePairingStrategy(**params),
                CloseRatingPairingStrategy(**params),
                RandomPairingStrategy(rng=rng, **params),
            ]
        self.strategies = strategies

    def select_pair(
        self,
        candidates: Sequence[PairingCandidate],
        skipped_pairs: Optional[SkippedPairs] = None,
        **kwargs
    ) -> Optional[Pair]:
        if len(candidates) < 2:
            return None
        skipped_list = list(skipped_pairs or [])
        sorted_by_rating = sort_by_rating(candidates)

        for strategy in self.strategies:
            pair = strategy.select_pair(
                candidates,
                skipped_list,
                sorted_by_rating=sorted_by_rating,
            )
            if pair:
                logger.debug(
                    f"配对来自 {type(strategy).__name__}: "
                    f"{pair[0].item_id}({pair[0].rating:.0f}) vs {pair[1].item_id}({pair[1].rating:.0f})"
                )
                return pair

        logger.debug(f"无可用配对 (候选数: {len(candidates)}, 跳过数: {len(skipped_list)})")
        return None


def select_pair(
    candidates: Sequence[PairingCandidate],
    skipped_pairs: Optional[SkippedPairs] = None,
    rng: Optional[random.Random] = None,
) -> Optional[Pair]:
    """选出下一组待比较配对（默认组合策略）"""
    return SmartPairingStrategy(rng=rng).select_pair(candidates, skipped_pairs)
