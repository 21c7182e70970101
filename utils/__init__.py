"""
Utils package - Shared utility functions.
"""

from utils.backoff import Backoff, BackoffCancelled, BackoffExhausted
from utils.logger import setup_logging

__all__ = ['Backoff', 'BackoffCancelled', 'BackoffExhausted', 'setup_logging']
