"""
结构化事件日志单元测试
"""

import json
import logging

from mediarank.utils.logger import apply_logging_settings, log_event, setup_logger


def test_log_event_writes_json_line(caplog):
    """测试事件日志输出单行JSON"""
    logger = logging.getLogger('mediarank.tests.events')
    caplog.set_level(logging.INFO, logger='mediarank.tests.events')

    payload = log_event(logger, 'INFO', 'rd_decay_completed', decayed_count=3)

    assert payload['event'] == 'rd_decay_completed'
    assert payload['level'] == 'info'
    assert payload['decayed_count'] == 3
    assert 'timestamp' in payload

    records = [r for r in caplog.records if r.name == 'mediarank.tests.events']
    assert len(records) == 1
    assert records[0].levelno == logging.INFO
    assert json.loads(records[0].getMessage()) == payload


def test_log_event_level_mapping(caplog):
    """测试日志级别映射"""
    logger = logging.getLogger('mediarank.tests.events_warning')
    caplog.set_level(logging.DEBUG, logger='mediarank.tests.events_warning')

    log_event(logger, 'warning', 'comparisons_archived', archived_count=0)

    records = [r for r in caplog.records if r.name == 'mediarank.tests.events_warning']
    assert records[0].levelno == logging.WARNING
    assert json.loads(records[0].getMessage())['level'] == 'warning'


def test_apply_logging_settings_drops_disabled_outputs():
    """测试按配置调整级别并移除被关闭的文件输出"""
    name = 'mediarank.tests.settings'
    logger = setup_logger(name=name, level='INFO', log_file_name='settings_test.log')
    assert any(type(h) is logging.FileHandler for h in logger.handlers)

    apply_logging_settings('WARNING', log_to_file=False, log_to_console=True, prefix=name, include_root=False)

    assert logger.level == logging.WARNING
    assert not any(type(h) is logging.FileHandler for h in logger.handlers)
    console = [h for h in logger.handlers if type(h) is logging.StreamHandler]
    assert len(console) == 1
    assert console[0].level == logging.WARNING
