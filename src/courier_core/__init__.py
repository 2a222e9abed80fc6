"""
Courier Core - load lifecycle and pricing engine for medical courier operations.
"""

__version__ = "0.1.0"
