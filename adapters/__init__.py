"""FanZone - Platform adapters."""
from adapters.platform import PlatformAdapter, StaticPlatformAdapter

__all__ = ["PlatformAdapter", "StaticPlatformAdapter"]
