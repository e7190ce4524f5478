"""
Support Chat Backend
"""

__version__ = "1.0.0"
