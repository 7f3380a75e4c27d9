import json
import logging

import redis.asyncio as redis
from redis.exceptions import RedisError

from config import REDIS_URL

logger = logging.getLogger(__name__)

r = redis.from_url(REDIS_URL, decode_responses=True)


def channel_for(auction_id: int) -> str:
    return f"auction_{auction_id}"


async def publish(auction_id: int, message: dict):
    """Publish a live event for one auction.

    Called after the change is committed, so a Redis outage only costs the
    live update and is logged rather than raised.
    """
    try:
        await r.publish(channel_for(auction_id), json.dumps(message, default=str))
    except RedisError:
        logger.warning(
            "Could not publish %s event for auction %s",
            message.get("type"),
            auction_id,
            exc_info=True,
        )
