"""
Transport package - Messaging homeserver connections.
"""

from transport.base_transport import BaseTransport
from transport.matrix_transport import MatrixTransport

__all__ = ['BaseTransport', 'MatrixTransport']
