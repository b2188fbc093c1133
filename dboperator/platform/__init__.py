"""
Platform access layer.
"""
from dboperator.platform.base import OWNED_KINDS, Kind, PlatformClient, WatchEvent  # noqa: F401
