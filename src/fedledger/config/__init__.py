"""Configuration loading and validated run settings."""

from fedledger.config.manager import ConfigManager
from fedledger.config.settings import OrchestratorConfig, PrecheckPolicy

__all__ = ['ConfigManager', 'OrchestratorConfig', 'PrecheckPolicy']
