import json
import logging

import redis

from .settings import settings

logger = logging.getLogger(__name__)

redis_client: redis.Redis | None = None


def get_redis() -> redis.Redis | None:
    global redis_client
    if not settings.redis_url:
        return None
    if redis_client is None:
        try:
            redis_client = redis.from_url(settings.redis_url)
            redis_client.ping()
        except Exception as e:
            logger.warning(f"Redis unavailable, order events disabled: {e}")
            redis_client = None
    return redis_client


def publish_order_update(order_data: dict, department_codes: list[str] | None = None) -> None:
    """Publish an order update for dashboards.

    Publishes to:
    - orders:all - every order change
    - orders:department:{code} - once per department/section the order touches
    """
    r = get_redis()
    if not r:
        return
    payload = json.dumps(order_data, default=str)
    try:
        r.publish("orders:all", payload)
        for code in department_codes or []:
            r.publish(f"orders:department:{code}", payload)
    except Exception as e:
        logger.warning(f"Failed to publish order update {order_data.get('id')}: {e}")
