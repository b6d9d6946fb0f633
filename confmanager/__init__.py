"""
confmanager - runtime configuration broker and client
"""

__version__ = "1.0.0"
