import logging
from collections import defaultdict
from typing import Dict, Set
from fastapi import WebSocket

logger = logging.getLogger(__name__)

class ChatHub:
    """Open chat sockets, grouped by group id."""

    def __init__(self):
        self._sockets: Dict[int, Set[WebSocket]] = defaultdict(set)

    def connect(self, group_id: int, websocket: WebSocket):
        self._sockets[group_id].add(websocket)
        logger.info("chat socket joined group %s (%d open)", group_id, len(self._sockets[group_id]))

    def disconnect(self, group_id: int, websocket: WebSocket):
        sockets = self._sockets.get(group_id)
        if not sockets:
            return
        sockets.discard(websocket)
        if not sockets:
            del self._sockets[group_id]
        logger.info("chat socket left group %s", group_id)

    def connection_count(self, group_id: int) -> int:
        return len(self._sockets.get(group_id, ()))

    async def broadcast(self, group_id: int, payload: dict):
        for websocket in list(self._sockets.get(group_id, ())):
            try:
                await websocket.send_json(payload)
            except Exception:
                # the peer is gone; its receive loop will clean up too
                logger.warning("dropping dead chat socket in group %s", group_id, exc_info=True)
                self.disconnect(group_id, websocket)

chat_hub = ChatHub()
