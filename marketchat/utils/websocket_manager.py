from typing import Dict, List, Optional, Set

from fastapi import WebSocket


class ConnectionManager:
    """Websocket bookkeeping: one room per account, one room per conversation."""

    def __init__(self) -> None:
        self.active_connections: Dict[str, List[WebSocket]] = {}
        self.conversation_rooms: Dict[str, Set[WebSocket]] = {}

    async def accept(self, websocket: WebSocket) -> None:
        await websocket.accept()

    def connect(self, account_id: str, websocket: WebSocket) -> None:
        if account_id not in self.active_connections:
            self.active_connections[account_id] = []
        if websocket not in self.active_connections[account_id]:
            self.active_connections[account_id].append(websocket)

    def disconnect(self, account_id: str, websocket: WebSocket) -> bool:
        """Drop a connection from every room. Returns True if the account has none left."""
        if account_id in self.active_connections:
            try:
                self.active_connections[account_id].remove(websocket)
            except ValueError:
                pass
            if not self.active_connections[account_id]:
                del self.active_connections[account_id]
        for room in list(self.conversation_rooms):
            self.leave(room, websocket)
        return account_id not in self.active_connections

    def join(self, conversation_id: str, websocket: WebSocket) -> None:
        self.conversation_rooms.setdefault(conversation_id, set()).add(websocket)

    def leave(self, conversation_id: str, websocket: WebSocket) -> None:
        members = self.conversation_rooms.get(conversation_id)
        if members is None:
            return
        members.discard(websocket)
        if not members:
            del self.conversation_rooms[conversation_id]

    def connections_for(self, account_id: str) -> List[WebSocket]:
        return list(self.active_connections.get(account_id, []))

    def in_room(self, conversation_id: str, websocket: WebSocket) -> bool:
        return websocket in self.conversation_rooms.get(conversation_id, set())

    def room_members(self, conversation_id: str, exclude: Optional[WebSocket] = None) -> List[WebSocket]:
        return [ws for ws in self.conversation_rooms.get(conversation_id, set()) if ws is not exclude]

    def all_connections(self) -> List[WebSocket]:
        seen: List[WebSocket] = []
        for conns in self.active_connections.values():
            for conn in conns:
                if conn not in seen:
                    seen.append(conn)
        return seen
