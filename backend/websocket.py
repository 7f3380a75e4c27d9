import json
import logging

from fastapi import HTTPException, WebSocket, WebSocketDisconnect

from auth import verify_token
from database import AsyncSessionLocal
from errors import NotFound
import redis_client
from store import AuctionStore

logger = logging.getLogger(__name__)


async def auction_ws(websocket: WebSocket, auction_id: int, session_factory=AsyncSessionLocal):
    """Stream live bid and close events of one auction to a client."""

    token = websocket.query_params.get("token")

    if not token:
        await websocket.close(code=1008)
        return

    try:
        verify_token(token)
    except HTTPException:
        await websocket.close(code=1008)
        return

    async with session_factory() as db:
        try:
            auction = await AuctionStore(db).get_by_id(auction_id)
        except NotFound:
            await websocket.close(code=1008)
            return

        snapshot = {
            "type": "snapshot",
            "auction_id": auction.id,
            "current_bid": str(auction.current_bid),
            "highest_bidder_id": auction.highest_bidder_id,
            "bid_count": len(auction.bids),
            "is_closed": auction.is_closed,
            "closing_time": auction.closing_time.isoformat(),
        }

    await websocket.accept()

    # send initial state
    await websocket.send_text(json.dumps(snapshot))

    pubsub = redis_client.r.pubsub()
    await pubsub.subscribe(redis_client.channel_for(auction_id))

    try:
        while True:
            message = await pubsub.get_message(
                ignore_subscribe_messages=True,
                timeout=1.0
            )

            if message:
                data = message["data"]
                if isinstance(data, bytes):
                    data = data.decode()

                await websocket.send_text(data)

    except WebSocketDisconnect:
        logger.debug("Subscriber left auction %s", auction_id)

    finally:
        await pubsub.unsubscribe(redis_client.channel_for(auction_id))
        await pubsub.aclose()
