from app.utils.redis_client import get_redis_client
from app.utils.templating import render_template

__all__ = [
    "get_redis_client",
    "render_template",
]
