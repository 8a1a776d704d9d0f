"""评分引擎异常类型"""


class RatingEngineError(Exception):
    """评分引擎异常基类"""


class InvalidRatingStateError(RatingEngineError, ValueError):
    """评分状态非法（RD非正、评分非有限值、结果出现NaN/Inf等），结果不可持久化"""


class VolatilityConvergenceError(RatingEngineError, RuntimeError):
    """波动率迭代求解超过最大迭代次数"""


class ItemNotFoundError(LookupError):
    """条目或比较记录不存在"""
