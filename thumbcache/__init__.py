"""
Thumbcache: cache-aside thumbnail service.
Resizes source images on demand and keeps the results in Redis/Valkey.
"""

__version__ = "1.0.0"
