"""
Handlers package - Directory listing retrieval methods.
"""

from handlers.base_handler import BaseListingHandler
from handlers.bs4_handler import BS4ListingHandler
from handlers.api_handler import JSONListingHandler

__all__ = [
    'BaseListingHandler',
    'BS4ListingHandler',
    'JSONListingHandler',
]
