# broadcast channel: rooms, fire-and-forget fan-out to peers, internal endpoints
import asyncio
import copy
import logging
from typing import Any, Callable, Dict, List, Optional, Protocol, Set, Tuple

import httpx
from fastapi import APIRouter, Request

from .config import NODE_ID, PEERS, PORT, RECONNECTION_ATTEMPTS, RECONNECTION_DELAY
from .models import RoomMessage

_logger = logging.getLogger(__name__)

router = APIRouter()

Handler = Callable[[Any], None]


class Transport(Protocol):
    """What the store needs from the outside world: a duplex event pipe."""

    def join(self, room: str) -> None: ...

    def emit(self, event: str, payload: Dict[str, Any]) -> None: ...

    def on(self, event: str, handler: Handler) -> None: ...


class _Channel:
    def __init__(self) -> None:
        self.rooms: Set[str] = set()
        self._handlers: Dict[str, List[Handler]] = {}

    def on(self, event: str, handler: Handler) -> None:
        self._handlers.setdefault(event, []).append(handler)

    def deliver(self, room: str, event: str, payload: Dict[str, Any]) -> bool:
        """
        Hand an incoming event to the local handlers.
        Returns False when the event belongs to a room we are not in.
        """
        if room not in self.rooms:
            _logger.debug("Ignoring %s for room %s (not joined)", event, room)
            return False
        for handler in list(self._handlers.get(event, [])):
            try:
                handler(payload)
            except Exception:
                # un handler rotto non deve fermare il canale
                _logger.exception("Handler for %s failed", event)
        return True


class LocalHub:
    """In-process room registry; every channel in a room sees every emit, sender included."""

    def __init__(self) -> None:
        self._members: Dict[str, List["LocalChannel"]] = {}

    def channel(self) -> "LocalChannel":
        return LocalChannel(self)

    def add(self, room: str, channel: "LocalChannel") -> None:
        members = self._members.setdefault(room, [])
        if channel not in members:
            members.append(channel)

    def publish(self, room: str, event: str, payload: Dict[str, Any]) -> None:
        for member in list(self._members.get(room, [])):
            member.deliver(room, event, copy.deepcopy(payload))


class LocalChannel(_Channel):
    def __init__(self, hub: LocalHub) -> None:
        super().__init__()
        self.hub = hub

    def join(self, room: str) -> None:
        self.rooms.add(room)
        self.hub.add(room, self)

    def emit(self, event: str, payload: Dict[str, Any]) -> None:
        for room in sorted(self.rooms):
            self.hub.publish(room, event, payload)


class PeerChannel(_Channel):
    """
    Channel between nodes over HTTP.

    emit() only queues the message; broadcast_loop() sends it to every peer
    (best effort, no ack, no retry) and then delivers it locally, so the
    sender sees its own broadcast like everyone else in the room.
    """

    def __init__(
        self,
        node_id: str = NODE_ID,
        peers: Optional[List[str]] = None,
        address: Optional[str] = None,
        attempts: int = RECONNECTION_ATTEMPTS,
        delay: float = RECONNECTION_DELAY,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__()
        self.node_id = node_id
        self.peers = list(PEERS if peers is None else peers)
        self.address = address or f"http://{node_id}:{PORT}"
        self.attempts = attempts
        self.delay = delay
        self.members: Dict[str, Set[str]] = {}
        self._transport = transport
        self._outbox: "asyncio.Queue[Tuple[str, str, Dict[str, Any]]]" = asyncio.Queue()

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self._transport)

    def join(self, room: str) -> None:
        # local membership is immediate; peers are told by announce()
        self.rooms.add(room)

    def emit(self, event: str, payload: Dict[str, Any]) -> None:
        for room in sorted(self.rooms):
            self._outbox.put_nowait((room, event, payload))

    def pending(self) -> int:
        return self._outbox.qsize()

    def add_member(self, room: str, sender: str) -> bool:
        """Only configured peers are tracked; other senders are ignored."""
        if sender not in self.peers:
            _logger.debug("Join of %s from unknown sender %s ignored", room, sender)
            return False
        self.members.setdefault(room, set()).add(sender)
        return True

    async def _join_peer(self, client: httpx.AsyncClient, peer: str, room: str) -> bool:
        for attempt in range(1, self.attempts + 1):
            try:
                resp = await client.post(
                    f"{peer}/internal/rooms/{room}/join",
                    params={"sender": self.address},
                )
                resp.raise_for_status()
                _logger.info("Joined room %s on %s", room, peer)
                return True
            except httpx.HTTPError:
                _logger.debug("Join %s on %s failed (attempt %d)", room, peer, attempt, exc_info=True)
                if attempt < self.attempts:
                    await asyncio.sleep(self.delay)

        _logger.warning("Giving up joining room %s on %s after %d attempts", room, peer, self.attempts)
        return False

    async def announce(self) -> Dict[str, bool]:
        """
        Tell every peer which rooms we are in, with the fixed retry policy.
        Returns peer -> joined.
        """
        if not self.peers:
            return {}

        async with self._client(timeout=1.0) as client:
            results = {}
            for peer in self.peers:
                ok = True
                for room in sorted(self.rooms):
                    ok = await self._join_peer(client, peer, room) and ok
                results[peer] = ok
            return results

    async def _send(self, client: httpx.AsyncClient, room: str, event: str, payload: Dict[str, Any]) -> None:
        if self.peers:
            msg = RoomMessage(sender=self.address, payload=payload)
            tasks = [
                client.post(f"{peer}/internal/rooms/{room}/events/{event}", json=msg.model_dump())
                for peer in self.peers
            ]
            results = await asyncio.gather(*tasks, return_exceptions=True)
            for peer, res in zip(self.peers, results):
                if isinstance(res, Exception):
                    _logger.debug("Broadcast of %s to %s failed: %r", event, peer, res)

        self.deliver(room, event, payload)

    async def flush(self) -> int:
        """Send everything queued right now; returns how many messages went out."""
        sent = 0
        async with self._client(timeout=1.5) as client:
            while not self._outbox.empty():
                room, event, payload = self._outbox.get_nowait()
                await self._send(client, room, event, payload)
                sent += 1
        return sent

    async def broadcast_loop(self) -> None:
        """
        Loop in background: drain the outbox forever.
        """
        async with self._client(timeout=1.5) as client:
            while True:
                room, event, payload = await self._outbox.get()
                await self._send(client, room, event, payload)


# ----------- internal endpoints (node-to-node) -----------

@router.post("/internal/rooms/{room}/join")
def internal_join(room: str, sender: str, request: Request):
    channel: PeerChannel = request.app.state.channel
    tracked = channel.add_member(room, sender)
    return {"ok": True, "node": channel.node_id, "room": room, "joined": room in channel.rooms, "tracked": tracked}


@router.post("/internal/rooms/{room}/events/{event}")
async def internal_event(room: str, event: str, msg: RoomMessage, request: Request):
    # async: handlers touch the store, which lives on the event loop thread
    channel: PeerChannel = request.app.state.channel
    delivered = channel.deliver(room, event, msg.payload)
    return {"ok": True, "delivered": delivered, "node": channel.node_id, "from": msg.sender}
