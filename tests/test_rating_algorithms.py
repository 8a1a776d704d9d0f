"""
评分算法单元测试
"""

import math

import pytest

from mediarank.infra.scoring.exceptions import (
    InvalidRatingStateError,
    RatingEngineError,
    VolatilityConvergenceError,
)
from mediarank.infra.scoring.models import MatchResult, RatingRecord
from mediarank.infra.scoring.rating_algorithms import (
    Glicko2RatingAlgorithm,
    RatingAlgorithm,
    apply_rd_decay,
    expected_score,
    g,
    is_ranked,
    predict_outcome,
    process_comparison,
    process_tie,
    to_internal_rating,
    to_internal_rd,
    to_public_rating,
    to_public_rd,
    update_rating,
)


@pytest.fixture
def fresh():
    """新条目的默认评分记录"""
    return RatingRecord()


def test_glicko2_algorithm_initialization():
    """测试Glicko-2算法初始化"""
    algo = Glicko2RatingAlgorithm(init_rating=1400, init_rd=300, init_volatility=0.05, tau=0.3)

    assert algo.init_rating == 1400
    assert algo.init_rd == 300
    assert algo.init_volatility == 0.05
    assert algo.tau == 0.3


def test_get_initial_rating():
    """测试获取初始评分记录"""
    record = Glicko2RatingAlgorithm().get_initial_rating()

    assert record.rating == 1500
    assert record.rd == 350
    assert record.volatility == 0.06
    assert record.comparison_count == 0
    assert record.needs_reranking is False


def test_scale_conversion_round_trip():
    """测试公开刻度与内部刻度互相转换"""
    for rating in (800, 1337.5, 1500, 2200):
        assert to_public_rating(to_internal_rating(rating)) == pytest.approx(rating)
    for rd in (30, 200, 350):
        assert to_public_rd(to_internal_rd(rd)) == pytest.approx(rd)
    assert to_internal_rating(1500) == 0


def test_g_and_expected_score():
    """测试 g 函数与期望得分"""
    assert g(0) == 1
    assert g(2.0) < g(1.0)
    assert expected_score(0, 0, 1.0) == pytest.approx(0.5)
    assert expected_score(1.0, 0, 1.0) > 0.5


def test_two_fresh_items_win(fresh):
    """测试两个新条目比较后的评分"""
    winner, loser = process_comparison(fresh, fresh)

    assert winner.rating == 1662
    assert winner.rd == 290
    assert loser.rating == 1338
    assert loser.rd == 290
    assert winner.volatility == pytest.approx(0.06, abs=1e-3)
    assert loser.volatility == pytest.approx(0.06, abs=1e-3)


def test_two_fresh_items_tie(fresh):
    """测试两个新条目平局: 评分不变，RD下降"""
    a, b = process_tie(fresh, fresh)

    assert a.rating == 1500
    assert b.rating == 1500
    assert a.rd == 290
    assert b.rd == 290


def test_comparison_symmetry():
    """测试同等条目比较时胜者增幅等于败者降幅"""
    record = RatingRecord(rating=1600, rd=120, volatility=0.06)
    winner, loser = process_comparison(record, record)

    assert winner.rating - 1600 == 1600 - loser.rating
    assert winner.rd == loser.rd


def test_tie_neutral_for_equal_items():
    """测试同等条目平局时评分不变"""
    record = RatingRecord(rating=1720, rd=80, volatility=0.06)
    a, b = process_tie(record, record)

    assert a.rating == 1720
    assert b.rating == 1720


def test_tie_moves_ratings_toward_each_other():
    """测试不同评分条目平局时评分相互靠拢"""
    high = RatingRecord(rating=1700, rd=100)
    low = RatingRecord(rating=1400, rd=100)
    new_high, new_low = process_tie(high, low)

    assert new_high.rating < 1700
    assert new_low.rating > 1400


def test_rd_decreases_after_match():
    """测试比赛后RD下降"""
    for rd in (350, 250, 120):
        record = RatingRecord(rating=1500, rd=rd)
        winner, loser = process_comparison(record, RatingRecord(rating=1520, rd=150))
        assert winner.rd < rd
        assert loser.rd < 150


def test_upset_gains_more_than_expected_win():
    """测试爆冷获胜的涨幅大于预期内获胜"""
    strong = RatingRecord(rating=1800, rd=100)
    weak = RatingRecord(rating=1300, rd=100)

    upset_winner, _ = process_comparison(weak, strong)
    expected_winner, _ = process_comparison(strong, weak)

    assert upset_winner.rating - 1300 > expected_winner.rating - 1800


def test_update_rating_rounds_results():
    """测试非空比赛结果取整: 评分/RD为整数，波动率6位小数"""
    record = RatingRecord(rating=1523, rd=187, volatility=0.061)
    result = update_rating(record, [MatchResult(opponent_rating=1478, opponent_rd=143, score=1.0)])

    assert result.rating == int(result.rating)
    assert result.rd == int(result.rd)
    assert result.volatility == round(result.volatility, 6)


def test_update_rating_multiple_matches():
    """测试一个评分周期内多场比赛"""
    record = RatingRecord(rating=1500, rd=200, volatility=0.06)
    matches = [
        MatchResult(opponent_rating=1400, opponent_rd=30, score=1.0),
        MatchResult(opponent_rating=1550, opponent_rd=100, score=0.0),
        MatchResult(opponent_rating=1700, opponent_rd=300, score=0.0),
    ]
    result = update_rating(record, matches)

    # glicko2.pdf 中的示例: 1464.06 / 151.52
    assert result.rating == 1464
    assert result.rd == 152
    assert result.volatility == pytest.approx(0.05999, abs=1e-5)


def test_update_rating_keeps_bookkeeping_fields(fresh):
    """测试评分更新不修改比较统计字段"""
    record = RatingRecord(comparison_count=3, total_wins=2, total_losses=1, last_compared_at=1000.0)
    winner, _ = process_comparison(record, fresh)

    assert winner.comparison_count == 3
    assert winner.total_wins == 2
    assert winner.last_compared_at == 1000.0


def test_empty_matches_only_inflates_rd():
    """测试无比赛时仅RD膨胀，评分与波动率不变"""
    record = RatingRecord(rating=1620, rd=100, volatility=0.06)
    result = update_rating(record, [])

    assert result.rating == 1620
    assert result.volatility == 0.06
    assert result.rd == pytest.approx(math.sqrt(100 ** 2 + (0.06 * 173.7178) ** 2))


def test_rd_never_exceeds_default(fresh):
    """测试RD不超过默认值350"""
    assert update_rating(fresh, []).rd == 350
    assert apply_rd_decay(RatingRecord(rd=349), periods=10).rd == 350


def test_empty_matches_equivalent_to_rd_decay():
    """测试两次空周期与两期RD衰减结果一致（误差不超过取整）"""
    record = RatingRecord(rating=1500, rd=100, volatility=0.06)
    twice = update_rating(update_rating(record, []), [])
    decayed = apply_rd_decay(record, periods=2)

    assert abs(twice.rd - decayed.rd) <= 0.5


def test_apply_rd_decay_zero_periods():
    """测试0期衰减不改变RD"""
    record = RatingRecord(rd=120)
    assert apply_rd_decay(record, periods=0).rd == 120


def test_apply_rd_decay_negative_periods():
    """测试负数期数抛出异常"""
    with pytest.raises(ValueError):
        apply_rd_decay(RatingRecord(), periods=-1)


def test_apply_daily_decay():
    """测试定期任务的RD增长"""
    algo = Glicko2RatingAlgorithm()

    assert algo.apply_daily_decay(100) == pytest.approx(math.sqrt(100 ** 2 + 5 ** 2))
    assert algo.apply_daily_decay(100, days=4) == pytest.approx(math.sqrt(100 ** 2 + 4 * 5 ** 2))
    assert algo.apply_daily_decay(349.99) == 350
    assert algo.apply_daily_decay(350) == 350


def test_predict_outcome():
    """测试胜率预测"""
    a = RatingRecord(rating=1700, rd=80)
    b = RatingRecord(rating=1500, rd=120)

    assert predict_outcome(a, a) == pytest.approx(0.5)
    assert predict_outcome(a, b) > 0.5
    assert predict_outcome(a, b) + predict_outcome(b, a) == pytest.approx(1.0)
    assert 0 <= predict_outcome(a, b) <= 1


def test_predict_outcome_uncertainty_pulls_toward_half():
    """测试RD越大预测越接近0.5"""
    confident = predict_outcome(RatingRecord(rating=1700, rd=50), RatingRecord(rating=1500, rd=50))
    uncertain = predict_outcome(RatingRecord(rating=1700, rd=350), RatingRecord(rating=1500, rd=350))

    assert 0.5 < uncertain < confident


def test_is_ranked():
    """测试置信度阈值判断"""
    assert is_ranked(200) is True
    assert is_ranked(201) is False
    assert is_ranked(150, threshold=100) is False
    assert Glicko2RatingAlgorithm(confidence_threshold=250).is_ranked(240) is True


@pytest.mark.parametrize("record", [
    RatingRecord(rd=0),
    RatingRecord(rd=-10),
    RatingRecord(volatility=0),
    RatingRecord(rating=float('nan')),
    RatingRecord(rd=float('inf')),
])
def test_invalid_record_rejected(record):
    """测试非法评分状态抛出异常"""
    with pytest.raises(InvalidRatingStateError):
        update_rating(record, [MatchResult(opponent_rating=1500, opponent_rd=350, score=1.0)])


def test_invalid_score_rejected(fresh):
    """测试得分超出[0, 1]抛出异常"""
    with pytest.raises(InvalidRatingStateError):
        update_rating(fresh, [MatchResult(opponent_rating=1500, opponent_rd=350, score=1.5)])


def test_invalid_state_is_value_error(fresh):
    """测试非法状态异常同时是ValueError和评分引擎异常"""
    with pytest.raises(ValueError):
        update_rating(RatingRecord(rd=0), [])
    assert issubclass(InvalidRatingStateError, RatingEngineError)


def test_volatility_iteration_cap(fresh):
    """测试波动率迭代超过上限时抛出异常"""
    algo = Glicko2RatingAlgorithm(max_iterations=1, convergence_tolerance=1e-15)

    with pytest.raises(VolatilityConvergenceError):
        algo.process_comparison(fresh, fresh)


def test_many_comparisons_stay_finite():
    """测试连续多次比较后结果仍为有限值且RD收敛"""
    a = RatingRecord()
    b = RatingRecord()
    for i in range(50):
        if i % 3 == 0:
            b, a = process_comparison(b, a)
        else:
            a, b = process_comparison(a, b)

    for record in (a, b):
        assert math.isfinite(record.rating)
        assert 0 < record.rd < 200
        assert record.volatility > 0
    assert a.rating > b.rating


def test_extreme_rating_gap_raises_invalid_state(fresh):
    """测试评分差距极大时抛出评分状态异常而非溢出"""
    with pytest.raises(InvalidRatingStateError, match="溢出"):
        expected_score(0.0, 1200.0, 0.1)

    giant = RatingRecord(rating=250000, rd=30)
    with pytest.raises(InvalidRatingStateError):
        process_comparison(fresh, giant)


def test_rating_algorithm_interface_is_complete():
    """测试评分算法基类要求实现比较、平局、衰减与排名判断"""
    class PartialAlgorithm(RatingAlgorithm):
        def update_rating(self, record, matches):
            return record

        def get_initial_rating(self):
            return RatingRecord()

        def get_expected_score(self, record_a, record_b):
            return 0.5

    with pytest.raises(TypeError):
        PartialAlgorithm()
    assert isinstance(Glicko2RatingAlgorithm(), RatingAlgorithm)
