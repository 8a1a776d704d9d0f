"""
统一配置管理器
加载和解析YAML配置文件，支持环境变量解析、配置验证
"""

from pathlib import Path
from typing import Any, Dict, List
import yaml
import os

from mediarank.infra.scoring.constants import (
    CLOSE_RATING_RANGE,
    COMPARISON_RESURFACE_DAYS_ESTABLISHED,
    COMPARISON_RESURFACE_DAYS_NEW,
    COMPARISON_RETENTION_DAYS,
    CONFIDENCE_THRESHOLD,
    CONVERGENCE_TOLERANCE,
    MAX_VOLATILITY_ITERATIONS,
    RANKABLE_STATUSES,
    RATING_DEFAULT,
    RD_DECAY_PER_DAY,
    RD_DEFAULT,
    TAU,
    UNRANKED_NOTIFICATION_THRESHOLD,
    VOLATILITY_DEFAULT,
    WATCH_STATUSES,
)

DEFAULT_RATING_SETTINGS: Dict[str, Any] = {
    'init_rating': RATING_DEFAULT,
    'init_rd': RD_DEFAULT,
    'init_volatility': VOLATILITY_DEFAULT,
    'tau': TAU,
    'convergence_tolerance': CONVERGENCE_TOLERANCE,
    'max_iterations': MAX_VOLATILITY_ITERATIONS,
}

DEFAULT_PAIRING_SETTINGS: Dict[str, Any] = {
    'confidence_threshold': CONFIDENCE_THRESHOLD,
    'close_rating_range': CLOSE_RATING_RANGE,
    'rankable_statuses': list(RANKABLE_STATUSES),
    'random_seed': None,
}

DEFAULT_SCHEDULING_SETTINGS: Dict[str, Any] = {
    'resurface_days_new': COMPARISON_RESURFACE_DAYS_NEW,
    'resurface_days_established': COMPARISON_RESURFACE_DAYS_ESTABLISHED,
    'unranked_notification_threshold': UNRANKED_NOTIFICATION_THRESHOLD,
}

DEFAULT_MAINTENANCE_SETTINGS: Dict[str, Any] = {
    'rd_decay_per_day': RD_DECAY_PER_DAY,
    'comparison_retention_days': COMPARISON_RETENTION_DAYS,
}

DEFAULT_LOGGING_SETTINGS: Dict[str, Any] = {
    'level': 'INFO',
    'log_to_file': True,
    'log_to_console': True,
}


class ConfigManager:
    """统一配置管理器: 加载YAML配置、解析环境变量、提供配置访问接口"""

    def __init__(self, config_path: str):
        self.config_path = Path(config_path)
        if not self.config_path.exists():
            raise FileNotFoundError(f"配置文件不存在: {config_path}")

        self._config = self._load_config()

    def _load_config(self) -> dict:
        """加载配置文件"""
        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                config = yaml.safe_load(f)
                if not config:
                    raise ValueError("配置文件为空")
                if not isinstance(config, dict):
                    raise ValueError("配置文件顶层必须是映射")
                return config
        except yaml.YAMLError as e:
            raise ValueError(f"配置文件格式错误: {e}")

    def _resolve_env_var(self, value: Any) -> Any:
        """解析环境变量格式的配置值，支持格式: env_var:VARIABLE_NAME"""
        if isinstance(value, str) and value.startswith("env_var:"):
            env_key = value[8:]  # 移除 "env_var:" 前缀
            env_value = os.getenv(env_key)
            if env_value is None:
                raise ValueError(f"环境变量 {env_key} 未设置")
            return env_value
        return value

    def _get_section(self, name: str, defaults: Dict[str, Any]) -> Dict[str, Any]:
        section = self._config.get(name) or {}
        # 配置文件中的值优先生效，未覆盖部分使用默认值
        merged = {**defaults, **section}
        return {key: self._resolve_env_var(value) for key, value in merged.items()}

    def get_raw_config(self) -> dict:
        """获取原始配置字典"""
        return self._config

    def get_run_name(self) -> str:
        """获取运行名称"""
        return self._config.get('run_name', 'MediaRank')

    def get_description(self) -> str:
        return self._config.get('description', '')

    def get_rating_settings(self) -> Dict[str, Any]:
        """获取Glicko-2评分设置"""
        return self._get_section('rating', DEFAULT_RATING_SETTINGS)

    def get_pairing_settings(self) -> Dict[str, Any]:
        """获取配对设置"""
        return self._get_section('pairing', DEFAULT_PAIRING_SETTINGS)

    def get_scheduling_settings(self) -> Dict[str, Any]:
        """获取比较调度设置"""
        return self._get_section('scheduling', DEFAULT_SCHEDULING_SETTINGS)

    def get_maintenance_settings(self) -> Dict[str, Any]:
        """获取定期维护任务设置（RD衰减、比较记录归档）"""
        return self._get_section('maintenance', DEFAULT_MAINTENANCE_SETTINGS)

    def get_logging_settings(self) -> Dict[str, Any]:
        return self._get_section('logging', DEFAULT_LOGGING_SETTINGS)

    # ==================== 存储相关配置 ====================

    def get_storage_config(self) -> Dict:
        """获取存储配置"""
        return self._config.get('storage', {}) or {}

    def get_storage_db_path(self) -> str:
        """获取SQLite数据库路径"""
        sqlite_config = self.get_storage_config().get('sqlite', {}) or {}
        return self._resolve_env_var(sqlite_config.get('db_path', 'data/mediarank.db'))

    def get_storage_tables(self) -> Dict[str, str]:
        """获取存储表名配置"""
        sqlite_config = self.get_storage_config().get('sqlite', {}) or {}
        return {
            'library_table': sqlite_config.get('library_table', 'library_items'),
            'comparisons_table': sqlite_config.get('comparisons_table', 'comparisons'),
            'comparison_pairs_table': sqlite_config.get('comparison_pairs_table', 'comparison_pairs'),
            'stats_table': sqlite_config.get('stats_table', 'user_stats'),
        }

    def get_user_id(self):
        """获取当前用户ID，未配置时为 None（单用户）"""
        return self._resolve_env_var(self._config.get('user_id'))

    def validate_config(self) -> List[str]:
        """验证配置文件的完整性和有效性"""
        errors = []

        if not self._config.get('run_name'):
            errors.append("缺少必要配置: run_name")

        rating = self.get_rating_settings()
        for key in ('init_rd', 'init_volatility', 'tau', 'convergence_tolerance', 'max_iterations'):
            value = rating.get(key)
            if not isinstance(value, (int, float)) or value <= 0:
                errors.append(f"rating.{key} 必须为正数: {value!r}")

        pairing = self.get_pairing_settings()
        threshold = pairing.get('confidence_threshold')
        if not isinstance(threshold, (int, float)) or threshold <= 0:
            errors.append(f"pairing.confidence_threshold 必须为正数: {threshold!r}")
        elif isinstance(rating.get('init_rd'), (int, float)) and threshold > rating['init_rd']:
            errors.append("pairing.confidence_threshold 不能大于 rating.init_rd")
        close_range = pairing.get('close_rating_range')
        if not isinstance(close_range, (int, float)) or close_range < 0:
            errors.append(f"pairing.close_rating_range 不能为负数: {close_range!r}")
        for status in pairing.get('rankable_statuses') or []:
            if status not in WATCH_STATUSES:
                errors.append(f"pairing.rankable_statuses 包含未知状态: {status}")

        maintenance = self.get_maintenance_settings()
        if maintenance.get('comparison_retention_days', 0) <= 0:
            errors.append("maintenance.comparison_retention_days 必须为正数")
        if maintenance.get('rd_decay_per_day', -1) < 0:
            errors.append("maintenance.rd_decay_per_day 不能为负数")

        if not self.get_storage_db_path():
            errors.append("storage.sqlite 缺少 db_path")

        return errors
