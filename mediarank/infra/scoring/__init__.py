"""
评分系统基础设施
提供Glicko-2评分算法、配对策略和评分数据模型

排名编排器依赖存储与统计模块，需从 ranking_orchestrator 直接导入
"""

from .exceptions import (
    InvalidRatingStateError,
    ItemNotFoundError,
    RatingEngineError,
    VolatilityConvergenceError,
)
from .models import (
    MatchResult,
    PairingCandidate,
    RatingRecord,
)
from .pairing_strategies import (
    PairingStrategy,
    RerankingPairingStrategy,
    LowConfidencePairingStrategy,
    CloseRatingPairingStrategy,
    RandomPairingStrategy,
    SmartPairingStrategy,
)
from .rating_algorithms import (
    RatingAlgorithm,
    Glicko2RatingAlgorithm,
)

__all__ = [
    # 异常
    'RatingEngineError',
    'InvalidRatingStateError',
    'VolatilityConvergenceError',
    'ItemNotFoundError',
    # 数据模型
    'RatingRecord',
    'MatchResult',
    'PairingCandidate',
    # 配对策略
    'PairingStrategy',
    'RerankingPairingStrategy',
    'LowConfidencePairingStrategy',
    'CloseRatingPairingStrategy',
    'RandomPairingStrategy',
    'SmartPairingStrategy',
    # 评分算法
    'RatingAlgorithm',
    'Glicko2RatingAlgorithm',
]
