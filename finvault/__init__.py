"""
FinVault - Credential and Session Core
======================================

Registration, login with lockout, bearer tokens, server-side sessions,
password reset and email verification for the FinVault record keeper.

Security Notice:
- No passwords or tokens are logged
- Unknown accounts and wrong passwords are indistinguishable
- Every outcome is audited
"""

from finvault.core.config import SecureConfig
from finvault.core.logging import get_secure_logger

__version__ = "0.1.0"
__author__ = "FinVault Team"

__all__ = ["SecureConfig", "get_secure_logger", "__version__"]
