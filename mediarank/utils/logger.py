"""
全局日志配置模块
提供统一的日志配置、管理功能和结构化事件日志
"""
import json
import logging
import os
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional


PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
LOGS_DIR = Path(os.getenv("MEDIARANK_LOGS_DIR", PROJECT_ROOT / "mediarank" / "logs"))
LOGS_DIR.mkdir(parents=True, exist_ok=True)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

LOG_LEVELS = {
    'DEBUG': logging.DEBUG,
    'INFO': logging.INFO,
    'WARNING': logging.WARNING,
    'ERROR': logging.ERROR,
    'CRITICAL': logging.CRITICAL,
}

_log_configured = False


def setup_logger(
    name: Optional[str] = None,
    level: str = 'INFO',
    log_to_file: bool = True,
    log_to_console: bool = True,
    log_file_name: Optional[str] = None,
    encoding: str = 'utf-8'
) -> logging.Logger:
    """设置并返回一个配置好的日志记录器"""
    logger = logging.getLogger(name) if name else logging.getLogger()
    
    if logger.handlers:
        return logger
    
    log_level = LOG_LEVELS.get(level.upper(), logging.INFO)
    logger.setLevel(log_level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    
    if log_to_console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(log_level)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)
    
    if log_to_file:
        if log_file_name is None:
            today = time.strftime('%Y_%m_%d', time.localtime())
            log_file_name = f"{today}.log"
        
        log_file_path = LOGS_DIR / log_file_name
        file_handler = logging.FileHandler(log_file_path, encoding=encoding, mode='a')
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    
    logger.propagate = False
    
    return logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """获取日志记录器（如果未配置则使用默认配置初始化）"""
    logger = logging.getLogger(name) if name else logging.getLogger()
    
    if not logger.handlers:
        return setup_logger(name=name)
    
    return logger


def configure_root_logger(
    level: str = 'INFO',
    log_to_file: bool = True,
    log_to_console: bool = True,
    log_file_name: Optional[str] = None
) -> None:
    """配置根日志记录器（应在程序启动时调用一次）"""
    global _log_configured
    
    if _log_configured:
        return
    
    setup_logger(
        name=None,
        level=level,
        log_to_file=log_to_file,
        log_to_console=log_to_console,
        log_file_name=log_file_name
    )
    
    _log_configured = True


def apply_logging_settings(
    level: str = 'INFO',
    log_to_file: bool = True,
    log_to_console: bool = True,
    prefix: str = 'mediarank',
    include_root: bool = True,
) -> None:
    """
    按配置调整根日志记录器和项目内已配置的日志记录器

    设置级别，并移除被关闭的控制台/文件输出
    """
    log_level = LOG_LEVELS.get(level.upper(), logging.INFO)
    loggers = [logging.getLogger()] if include_root else []
    loggers += [
        logging.getLogger(name)
        for name in list(logging.Logger.manager.loggerDict)
        if name == prefix or name.startswith(f"{prefix}.")
    ]

    for logger in loggers:
        if not logger.handlers:
            continue
        logger.setLevel(log_level)
        for handler in list(logger.handlers):
            # 只处理 setup_logger 创建的处理器
            if type(handler) is logging.FileHandler:
                enabled = log_to_file
            elif type(handler) is logging.StreamHandler:
                enabled = log_to_console
            else:
                continue
            if enabled:
                handler.setLevel(log_level)
            else:
                logger.removeHandler(handler)
                handler.close()


def log_event(logger: logging.Logger, level: str, event: str, **fields: Any) -> dict:
    """
    输出一行JSON格式的结构化事件日志，便于定时任务结果的检索和统计

    返回写入的事件字典
    """
    payload = {
        **fields,
        'event': event,
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'level': level.lower(),
    }
    logger.log(LOG_LEVELS.get(level.upper(), logging.INFO), json.dumps(payload, ensure_ascii=False, default=str))
    return payload
