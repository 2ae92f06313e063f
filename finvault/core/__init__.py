"""
Core module - Configuration, logging, errors and the auth data model.
"""

from finvault.core.config import SecureConfig
from finvault.core.logging import get_secure_logger, SecureLogFilter

__all__ = ["SecureConfig", "get_secure_logger", "SecureLogFilter"]
