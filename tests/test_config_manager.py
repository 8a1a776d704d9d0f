"""
ConfigManager单元测试
"""

import os
import tempfile
from pathlib import Path

import pytest
import yaml

from mediarank.infra.config.config_manager import ConfigManager

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / 'mediarank' / 'configs' / 'default.yaml'


@pytest.fixture
def sample_config():
    """创建示例配置"""
    return {
        'run_name': 'test_run',
        'rating': {
            'init_rd': 300,
            'tau': 0.4,
        },
        'pairing': {
            'confidence_threshold': 180,
            'rankable_statuses': ['COMPLETED', 'WATCHING'],
        },
        'maintenance': {
            'comparison_retention_days': 30,
        },
        'storage': {
            'sqlite': {
                'db_path': 'env_var:TEST_MEDIARANK_DB',
                'library_table': 'items',
            }
        },
    }


@pytest.fixture
def config_file(sample_config):
    """创建临时配置文件"""
    with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
        yaml.dump(sample_config, f)
        config_path = f.name

    yield config_path

    # 清理
    os.unlink(config_path)


@pytest.fixture
def env_keys(monkeypatch):
    """为依赖环境变量的测试提供默认值"""
    monkeypatch.setenv('TEST_MEDIARANK_DB', 'data/test.db')
    yield
    monkeypatch.delenv('TEST_MEDIARANK_DB', raising=False)


def write_config(tmp_path, content):
    path = tmp_path / 'config.yaml'
    path.write_text(content, encoding='utf-8')
    return str(path)


def test_config_manager_initialization(config_file):
    """测试ConfigManager初始化"""
    manager = ConfigManager(config_file)
    assert manager.config_path.exists()
    assert manager.get_raw_config()['run_name'] == 'test_run'
    assert manager.get_run_name() == 'test_run'


def test_missing_config_file(tmp_path):
    """测试配置文件不存在"""
    with pytest.raises(FileNotFoundError):
        ConfigManager(str(tmp_path / 'missing.yaml'))


def test_empty_config_file(tmp_path):
    """测试空配置文件"""
    with pytest.raises(ValueError, match="配置文件为空"):
        ConfigManager(write_config(tmp_path, ''))


def test_malformed_config_file(tmp_path):
    """测试格式错误的配置文件"""
    with pytest.raises(ValueError, match="配置文件格式错误"):
        ConfigManager(write_config(tmp_path, 'rating: [1, 2\n'))


def test_rating_settings_merged_over_defaults(config_file):
    """测试评分设置与默认值合并"""
    settings = ConfigManager(config_file).get_rating_settings()

    assert settings['init_rd'] == 300
    assert settings['tau'] == 0.4
    assert settings['init_rating'] == 1500
    assert settings['init_volatility'] == 0.06
    assert settings['max_iterations'] == 100


def test_pairing_and_scheduling_settings(config_file):
    """测试配对与调度设置"""
    manager = ConfigManager(config_file)
    pairing = manager.get_pairing_settings()
    scheduling = manager.get_scheduling_settings()

    assert pairing['confidence_threshold'] == 180
    assert pairing['close_rating_range'] == 100
    assert pairing['rankable_statuses'] == ['COMPLETED', 'WATCHING']
    assert scheduling['resurface_days_new'] == 1
    assert scheduling['resurface_days_established'] == 3


def test_maintenance_and_logging_settings(config_file):
    """测试维护与日志设置"""
    manager = ConfigManager(config_file)

    assert manager.get_maintenance_settings() == {'rd_decay_per_day': 5, 'comparison_retention_days': 30}
    assert manager.get_logging_settings()['level'] == 'INFO'


def test_get_storage_db_path(config_file, env_keys):
    """测试获取存储数据库路径（环境变量解析）"""
    manager = ConfigManager(config_file)
    assert manager.get_storage_db_path() == 'data/test.db'


def test_resolve_env_var_missing(config_file, monkeypatch):
    """测试缺失的环境变量"""
    monkeypatch.delenv('TEST_MEDIARANK_DB', raising=False)
    manager = ConfigManager(config_file)

    with pytest.raises(ValueError, match="环境变量.*未设置"):
        manager.get_storage_db_path()


def test_get_storage_tables(config_file):
    """测试获取存储表名"""
    tables = ConfigManager(config_file).get_storage_tables()

    assert tables['library_table'] == 'items'
    assert tables['comparisons_table'] == 'comparisons'
    assert tables['comparison_pairs_table'] == 'comparison_pairs'
    assert tables['stats_table'] == 'user_stats'


def test_validate_config_valid(config_file, env_keys):
    """测试配置验证 - 有效配置"""
    assert ConfigManager(config_file).validate_config() == []


def test_default_config_is_valid():
    """测试随包发布的默认配置有效"""
    manager = ConfigManager(str(DEFAULT_CONFIG_PATH))

    assert manager.validate_config() == []
    assert manager.get_user_id() is None
    assert manager.get_storage_db_path() == 'data/mediarank.db'


def test_validate_config_errors(tmp_path):
    """测试配置验证 - 非法配置"""
    config = {
        'rating': {'init_rd': 150, 'tau': -1},
        'pairing': {'confidence_threshold': 200, 'rankable_statuses': ['COMPLETED', 'FINISHED']},
        'maintenance': {'comparison_retention_days': 0},
        'storage': {'sqlite': {'db_path': ''}},
    }
    manager = ConfigManager(write_config(tmp_path, yaml.dump(config)))
    errors = manager.validate_config()

    assert any('run_name' in e for e in errors)
    assert any('rating.tau' in e for e in errors)
    assert any('不能大于 rating.init_rd' in e for e in errors)
    assert any('FINISHED' in e for e in errors)
    assert any('comparison_retention_days' in e for e in errors)
    assert any('db_path' in e for e in errors)
