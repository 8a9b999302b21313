from . import api_keys, events, feed, media, monitoring, storage

__all__ = ["api_keys", "events", "feed", "media", "monitoring", "storage"]
