"""
评分系统常量
Glicko-2 参数、置信度阈值、调度与归档周期
"""

# 时间
DAY_SECONDS = 24 * 60 * 60

# Glicko-2 参数
RATING_DEFAULT = 1500
RD_DEFAULT = 350
VOLATILITY_DEFAULT = 0.06
TAU = 0.5
SCALING_FACTOR = 173.7178

# 波动率求解
CONVERGENCE_TOLERANCE = 1e-7
MAX_VOLATILITY_ITERATIONS = 100

# 置信度阈值: RD 高于此值视为 "未排名"
CONFIDENCE_THRESHOLD = 200

# 相近评分范围（精细比较）
CLOSE_RATING_RANGE = 100

# 未比较时每天的RD增长
RD_DECAY_PER_DAY = 5

# 比较调度（天）
COMPARISON_RESURFACE_DAYS_NEW = 1
COMPARISON_RESURFACE_DAYS_ESTABLISHED = 3

# 未排名条目达到此数量时提示
UNRANKED_NOTIFICATION_THRESHOLD = 3

# 比较记录保留天数
COMPARISON_RETENTION_DAYS = 90

# 比较结果得分
SCORE_WIN = 1.0
SCORE_LOSS = 0.0
SCORE_TIE = 0.5

MEDIA_TYPES = ('ANIME', 'MANGA')

WATCH_STATUSES = (
    'COMPLETED',
    'WATCHING',
    'PLAN_TO_WATCH',
    'DROPPED',
    'ON_HOLD',
)

# 可参与配对的状态（PLAN_TO_WATCH 除外）
RANKABLE_STATUSES = (
    'COMPLETED',
    'WATCHING',
    'ON_HOLD',
    'DROPPED',
)
