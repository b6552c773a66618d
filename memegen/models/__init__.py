from memegen.models.meme_cache import MemeCache
from memegen.models.request_log import RequestLog

__all__ = [
    "MemeCache",
    "RequestLog",
]
