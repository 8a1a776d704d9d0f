"""
配置管理
"""

from .config_manager import ConfigManager

__all__ = ['ConfigManager']
