"""
Core module - Contains configuration, logging, and the authentication engine.
"""

from agentauth.core.config import AuthCoreConfig
from agentauth.core.logging import CorrelationAdapter, SecureLogFilter, get_secure_logger

__all__ = ["AuthCoreConfig", "CorrelationAdapter", "SecureLogFilter", "get_secure_logger"]
