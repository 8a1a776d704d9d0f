"""
评分算法模块
提供Glicko-2评分系统: 单场/多场评分更新、平局处理、胜率预测、RD衰减
"""

from abc import ABC, abstractmethod
from dataclasses import replace
from typing import List, Optional, Sequence, Tuple
import math

from .constants import (
    CONFIDENCE_THRESHOLD,
    CONVERGENCE_TOLERANCE,
    MAX_VOLATILITY_ITERATIONS,
    RATING_DEFAULT,
    RD_DECAY_PER_DAY,
    RD_DEFAULT,
    SCALING_FACTOR,
    SCORE_LOSS,
    SCORE_TIE,
    SCORE_WIN,
    TAU,
    VOLATILITY_DEFAULT,
)
from .exceptions import InvalidRatingStateError, VolatilityConvergenceError
from .models import MatchResult, RatingRecord


def to_internal_rating(rating: float) -> float:
    """公开评分（以1500为中心）转换为内部刻度（以0为中心）"""
    return (rating - RATING_DEFAULT) / SCALING_FACTOR


def to_public_rating(internal_rating: float) -> float:
    """内部刻度转换为公开评分"""
    return internal_rating * SCALING_FACTOR + RATING_DEFAULT


def to_internal_rd(rd: float) -> float:
    """RD 公开刻度 -> 内部刻度"""
    return rd / SCALING_FACTOR


def to_public_rd(internal_rd: float) -> float:
    """RD 内部刻度 -> 公开刻度"""
    return internal_rd * SCALING_FACTOR


def g(rd: float) -> float:
    """
    Glicko-2 g(RD) 函数

    对手RD越大，g越小，该场比赛提供的信息权重越低
    """
    return 1 / math.sqrt(1 + 3 * rd * rd / (math.pi * math.pi))


def expected_score(rating: float, opponent_rating: float, opponent_rd: float) -> float:
    """
    Glicko-2 E 函数: 对某对手的期望得分（内部刻度）

    公式: E = 1 / (1 + exp(-g(RD_j) * (mu - mu_j)))
    """
    try:
        return 1 / (1 + math.exp(-g(opponent_rd) * (rating - opponent_rating)))
    except OverflowError:
        raise InvalidRatingStateError(
            f"评分差距过大，期望得分溢出: rating={rating!r}, opponent_rating={opponent_rating!r}"
        )


def pre_rating_period_rd(rd: float, volatility: float) -> float:
    """评分周期前的RD膨胀: rd' = sqrt(rd^2 + sigma^2)"""
    return math.sqrt(rd * rd + volatility * volatility)


def _require_finite(value: float, name: str) -> None:
    if not isinstance(value, (int, float)) or not math.isfinite(value):
        raise InvalidRatingStateError(f"{name} 不是有限数值: {value!r}")


class RatingAlgorithm(ABC):
    """评分算法基类: 定义评分算法接口"""

    @abstractmethod
    def update_rating(
        self,
        record: RatingRecord,
        matches: Sequence[MatchResult],
    ) -> RatingRecord:
        """根据一个评分周期内的比赛结果更新评分"""
        pass

    @abstractmethod
    def get_initial_rating(self) -> RatingRecord:
        """获取初始评分记录"""
        pass

    @abstractmethod
    def get_expected_score(
        self,
        record_a: RatingRecord,
        record_b: RatingRecord
    ) -> float:
        """计算期望得分"""
        pass

    @abstractmethod
    def process_comparison(
        self,
        winner: RatingRecord,
        loser: RatingRecord
    ) -> Tuple[RatingRecord, RatingRecord]:
        """处理一次胜负比较，返回 (新胜者记录, 新败者记录)"""
        pass

    @abstractmethod
    def process_tie(
        self,
        record_a: RatingRecord,
        record_b: RatingRecord
    ) -> Tuple[RatingRecord, RatingRecord]:
        """处理一次平局"""
        pass

    @abstractmethod
    def apply_daily_decay(self, rd: float, days: int = 1, decay_per_day: float = RD_DECAY_PER_DAY) -> float:
        """长期未比较条目的RD增长"""
        pass

    @abstractmethod
    def is_ranked(self, rd: float, threshold: Optional[float] = None) -> bool:
        """RD是否达到置信度阈值"""
        pass


class Glicko2RatingAlgorithm(RatingAlgorithm):
    """
    Glicko-2评分算法: 评分 + 评分偏差(RD) + 波动率(sigma)

    每次两两比较视为双方各自独立的一个单场评分周期，不做批量合并。
    参考 http://www.glicko.net/glicko/glicko2.pdf
    """

    def __init__(
        self,
        init_rating: float = RATING_DEFAULT,
        init_rd: float = RD_DEFAULT,
        init_volatility: float = VOLATILITY_DEFAULT,
        tau: float = TAU,
        confidence_threshold: float = CONFIDENCE_THRESHOLD,
        convergence_tolerance: float = CONVERGENCE_TOLERANCE,
        max_iterations: int = MAX_VOLATILITY_ITERATIONS,
    ):
        self.init_rating = init_rating
        self.init_rd = init_rd
        self.init_volatility = init_volatility
        self.tau = tau
        self.confidence_threshold = confidence_threshold
        self.convergence_tolerance = convergence_tolerance
        self.max_iterations = max_iterations

    def get_initial_rating(self) -> RatingRecord:
        """获取新条目的初始评分记录"""
        return RatingRecord(
            rating=self.init_rating,
            rd=self.init_rd,
            volatility=self.init_volatility,
        )

    def get_expected_score(
        self,
        record_a: RatingRecord,
        record_b: RatingRecord
    ) -> float:
        """计算A对B的期望得分（与predict_outcome相同）"""
        return self.predict_outcome(record_a, record_b)

    # ==================== 输入校验 ====================

    def _validate_record(self, record: RatingRecord) -> None:
        _require_finite(record.rating, "rating")
        _require_finite(record.rd, "rd")
        _require_finite(record.volatility, "volatility")
        if record.rd <= 0:
            raise InvalidRatingStateError(f"RD必须为正数: {record.rd}")
        if record.volatility <= 0:
            raise InvalidRatingStateError(f"波动率必须为正数: {record.volatility}")

    def _validate_match(self, match: MatchResult) -> None:
        _require_finite(match.opponent_rating, "opponent_rating")
        _require_finite(match.opponent_rd, "opponent_rd")
        _require_finite(match.score, "score")
        if match.opponent_rd <= 0:
            raise InvalidRatingStateError(f"对手RD必须为正数: {match.opponent_rd}")
        if not 0 <= match.score <= 1:
            raise InvalidRatingStateError(f"得分必须在[0, 1]之间: {match.score}")

    # ==================== Glicko-2 步骤 ====================

    def _calculate_variance(
        self,
        rating: float,
        matches: List[MatchResult]
    ) -> float:
        """步骤3: 估计方差 v = 1 / sum(g^2 * E * (1 - E))"""
        total = 0.0
        for match in matches:
            g_rd = g(match.opponent_rd)
            e = expected_score(rating, match.opponent_rating, match.opponent_rd)
            total += g_rd * g_rd * e * (1 - e)
        if total <= 0 or not math.isfinite(total):
            raise InvalidRatingStateError("比赛信息量为零，无法计算方差")
        return 1 / total

    def _score_sum(self, rating: float, matches: List[MatchResult]) -> float:
        """sum(g(RD_j) * (s_j - E_j))"""
        total = 0.0
        for match in matches:
            e = expected_score(rating, match.opponent_rating, match.opponent_rd)
            total += g(match.opponent_rd) * (match.score - e)
        return total

    def _calculate_new_volatility(
        self,
        volatility: float,
        rd: float,
        delta: float,
        variance: float
    ) -> float:
        """步骤5: Illinois 迭代求解新波动率"""
        a = math.log(volatility * volatility)
        tau = self.tau
        rd_squared = rd * rd
        delta_squared = delta * delta

        def f(x: float) -> float:
            exp_x = math.exp(x)
            denominator = rd_squared + variance + exp_x
            term1 = exp_x * (delta_squared - rd_squared - variance - exp_x) / (2 * denominator * denominator)
            term2 = (x - a) / (tau * tau)
            return term1 - term2

        A = a
        if delta_squared > rd_squared + variance:
            B = math.log(delta_squared - rd_squared - variance)
        else:
            k = 1
            while f(a - k * tau) < 0:
                k += 1
                if k > self.max_iterations:
                    raise VolatilityConvergenceError(
                        f"波动率区间搜索超过 {self.max_iterations} 次迭代"
                    )
            B = a - k * tau

        f_a = f(A)
        f_b = f(B)

        iterations = 0
        while abs(B - A) > self.convergence_tolerance:
            iterations += 1
            if iterations > self.max_iterations:
                raise VolatilityConvergenceError(
                    f"波动率迭代超过 {self.max_iterations} 次仍未收敛 (|B-A|={abs(B - A):.3e})"
                )
            C = A + (A - B) * f_a / (f_b - f_a)
            f_c = f(C)
            if f_c * f_b <= 0:
                A, f_a = B, f_b
            else:
                f_a = f_a / 2
            B, f_b = C, f_c

        return math.exp(A / 2)

    def update_rating(
        self,
        record: RatingRecord,
        matches: Sequence[MatchResult],
    ) -> RatingRecord:
        """
        一个评分周期的完整Glicko-2更新

        无比赛时仅做RD膨胀（上限为默认RD），评分与波动率不变；
        有比赛时评分与RD取整，波动率保留6位小数。
        """
        self._validate_record(record)
        for match in matches:
            self._validate_match(match)

        rating = to_internal_rating(record.rating)
        rd = to_internal_rd(record.rd)
        volatility = record.volatility

        if not matches:
            new_rd = min(to_public_rd(pre_rating_period_rd(rd, volatility)), RD_DEFAULT)
            return replace(record, rd=new_rd)

        internal_matches = [
            MatchResult(
                opponent_rating=to_internal_rating(m.opponent_rating),
                opponent_rd=to_internal_rd(m.opponent_rd),
                score=m.score,
            )
            for m in matches
        ]

        variance = self._calculate_variance(rating, internal_matches)
        score_sum = self._score_sum(rating, internal_matches)
        delta = variance * score_sum

        new_volatility = self._calculate_new_volatility(volatility, rd, delta, variance)
        pre_rd = pre_rating_period_rd(rd, new_volatility)

        new_rd_squared = 1 / (1 / (pre_rd * pre_rd) + 1 / variance)
        new_rd = math.sqrt(new_rd_squared)
        # 评分增量按新RD^2缩放（步骤7）
        new_rating = rating + new_rd_squared * score_sum

        public_rating = to_public_rating(new_rating)
        public_rd = to_public_rd(new_rd)
        for name, value in (('rating', public_rating), ('rd', public_rd), ('volatility', new_volatility)):
            if not math.isfinite(value):
                raise InvalidRatingStateError(f"评分更新产生非有限结果: {name}={value}")

        return replace(
            record,
            rating=round(public_rating),
            rd=round(public_rd),
            volatility=round(new_volatility, 6),
        )

    def process_comparison(
        self,
        winner: RatingRecord,
        loser: RatingRecord
    ) -> Tuple[RatingRecord, RatingRecord]:
        """处理一次两两比较，返回 (新胜者记录, 新败者记录)"""
        winner_match = MatchResult(opponent_rating=loser.rating, opponent_rd=loser.rd, score=SCORE_WIN)
        loser_match = MatchResult(opponent_rating=winner.rating, opponent_rd=winner.rd, score=SCORE_LOSS)
        return (
            self.update_rating(winner, [winner_match]),
            self.update_rating(loser, [loser_match]),
        )

    def process_tie(
        self,
        record_a: RatingRecord,
        record_b: RatingRecord
    ) -> Tuple[RatingRecord, RatingRecord]:
        """处理平局，双方得分均为0.5"""
        match_a = MatchResult(opponent_rating=record_b.rating, opponent_rd=record_b.rd, score=SCORE_TIE)
        match_b = MatchResult(opponent_rating=record_a.rating, opponent_rd=record_a.rd, score=SCORE_TIE)
        return (
            self.update_rating(record_a, [match_a]),
            self.update_rating(record_b, [match_b]),
        )

    def predict_outcome(self, record_a: RatingRecord, record_b: RatingRecord) -> float:
        """预测A优于B的概率，使用合并RD sqrt(rd_a^2 + rd_b^2)"""
        self._validate_record(record_a)
        self._validate_record(record_b)
        rd_a = to_internal_rd(record_a.rd)
        rd_b = to_internal_rd(record_b.rd)
        combined_rd = math.sqrt(rd_a * rd_a + rd_b * rd_b)
        return expected_score(
            to_internal_rating(record_a.rating),
            to_internal_rating(record_b.rating),
            combined_rd,
        )

    def apply_rd_decay(self, record: RatingRecord, periods: int = 1) -> RatingRecord:
        """按条目自身波动率连续做 periods 次RD膨胀，每次都以默认RD为上限"""
        self._validate_record(record)
        if periods < 0:
            raise ValueError(f"periods 不能为负数: {periods}")

        ceiling = to_internal_rd(RD_DEFAULT)
        rd = to_internal_rd(record.rd)
        for _ in range(periods):
            rd = min(pre_rating_period_rd(rd, record.volatility), ceiling)

        return replace(record, rd=min(round(to_public_rd(rd)), RD_DEFAULT))

    def apply_daily_decay(
        self,
        rd: float,
        days: int = 1,
        decay_per_day: float = RD_DECAY_PER_DAY
    ) -> float:
        """定期任务使用的公开刻度RD增长: min(RD_DEFAULT, sqrt(rd^2 + days * step^2))"""
        _require_finite(rd, "rd")
        if rd <= 0:
            raise InvalidRatingStateError(f"RD必须为正数: {rd}")
        return min(RD_DEFAULT, math.sqrt(rd * rd + days * decay_per_day * decay_per_day))

    def is_ranked(self, rd: float, threshold: Optional[float] = None) -> bool:
        """RD不高于阈值即视为已排名"""
        rd_threshold = self.confidence_threshold if threshold is None else threshold
        return rd <= rd_threshold


_default_algorithm = Glicko2RatingAlgorithm()


def update_rating(record: RatingRecord, matches: Sequence[MatchResult]) -> RatingRecord:
    return _default_algorithm.update_rating(record, matches)


def process_comparison(winner: RatingRecord, loser: RatingRecord) -> Tuple[RatingRecord, RatingRecord]:
    return _default_algorithm.process_comparison(winner, loser)


def process_tie(record_a: RatingRecord, record_b: RatingRecord) -> Tuple[RatingRecord, RatingRecord]:
    return _default_algorithm.process_tie(record_a, record_b)


def predict_outcome(record_a: RatingRecord, record_b: RatingRecord) -> float:
    return _default_algorithm.predict_outcome(record_a, record_b)


def apply_rd_decay(record: RatingRecord, periods: int = 1) -> RatingRecord:
    return _default_algorithm.apply_rd_decay(record, periods)


def is_ranked(rd: float, threshold: float = CONFIDENCE_THRESHOLD) -> bool:
    return rd <= threshold
