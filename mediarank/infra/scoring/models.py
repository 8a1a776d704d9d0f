"""
评分数据模型
评分记录、单场比赛结果、配对候选条目
"""

from dataclasses import dataclass
from typing import Any, Dict, Hashable, Optional

from .constants import (
    RATING_DEFAULT,
    RD_DEFAULT,
    VOLATILITY_DEFAULT,
)


@dataclass(frozen=True)
class RatingRecord:
    """单个条目的评分状态: Glicko-2 三元组 + 比较统计 + 调度字段"""

    rating: float = RATING_DEFAULT
    rd: float = RD_DEFAULT
    volatility: float = VOLATILITY_DEFAULT
    comparison_count: int = 0
    total_wins: int = 0
    total_losses: int = 0
    total_ties: int = 0
    last_compared_at: Optional[float] = None
    next_comparison_due: Optional[float] = None
    needs_reranking: bool = False


@dataclass(frozen=True)
class MatchResult:
    """一场比赛结果（对手评分快照 + 得分: 1胜 / 0负 / 0.5平）"""

    opponent_rating: float
    opponent_rd: float
    score: float


@dataclass(frozen=True)
class PairingCandidate:
    """配对候选: 配对选择器所需的条目字段快照"""

    item_id: Hashable
    rating: float = RATING_DEFAULT
    rd: float = RD_DEFAULT
    comparison_count: int = 0
    last_compared_at: Optional[float] = None
    needs_reranking: bool = False
    watch_status: Optional[str] = None
    media_type: Optional[str] = None


def record_from_item(item: Dict[str, Any]) -> RatingRecord:
    """从存储行（字典）构建评分记录"""
    return RatingRecord(
        rating=item.get('rating', RATING_DEFAULT),
        rd=item.get('rd', RD_DEFAULT),
        volatility=item.get('volatility', VOLATILITY_DEFAULT),
        comparison_count=item.get('comparison_count', 0) or 0,
        total_wins=item.get('total_wins', 0) or 0,
        total_losses=item.get('total_losses', 0) or 0,
        total_ties=item.get('total_ties', 0) or 0,
        last_compared_at=item.get('last_compared_at'),
        next_comparison_due=item.get('next_comparison_due'),
        needs_reranking=bool(item.get('needs_reranking', False)),
    )


def candidate_from_item(item: Dict[str, Any]) -> PairingCandidate:
    """从存储行（字典）构建配对候选"""
    return PairingCandidate(
        item_id=item['id'],
        rating=item.get('rating', RATING_DEFAULT),
        rd=item.get('rd', RD_DEFAULT),
        comparison_count=item.get('comparison_count', 0) or 0,
        last_compared_at=item.get('last_compared_at'),
        needs_reranking=bool(item.get('needs_reranking', False)),
        watch_status=item.get('watch_status'),
        media_type=item.get('media_type'),
    )
