# heartbeat loop + peer status computation
import asyncio
import logging
import time
from typing import Callable, Dict, List, Optional

import httpx
from fastapi import APIRouter, Request

from .config import DEAD_TIMEOUT, HEARTBEAT_INTERVAL, NODE_ID, PEERS, PORT, SUSPECT_TIMEOUT

_logger = logging.getLogger(__name__)

router = APIRouter()


class PeerLiveness:
    """
    Last-seen bookkeeping for the configured peers only.
    Unknown senders are ignored so the table never grows.
    """

    def __init__(
        self,
        peers: Optional[List[str]] = None,
        clock: Callable[[], float] = time.monotonic,
        suspect_timeout: float = SUSPECT_TIMEOUT,
        dead_timeout: float = DEAD_TIMEOUT,
    ) -> None:
        self.peers = list(PEERS if peers is None else peers)
        self.clock = clock
        self.suspect_timeout = suspect_timeout
        self.dead_timeout = dead_timeout
        self.last_seen: Dict[str, float] = {peer: 0.0 for peer in self.peers}

    def normalize_sender(self, sender: str) -> str:
        """
        http://node2 -> http://node2:8002 when a known peer matches.
        Anything else is returned as is.
        """
        sender = sender.strip()
        if ":" in sender.replace("http://", "").replace("https://", ""):
            return sender
        for p in self.peers:
            if p.startswith(sender + ":"):
                return p
        return sender

    def seen(self, sender: str) -> str:
        sender = self.normalize_sender(sender)
        if sender in self.last_seen:
            self.last_seen[sender] = self.clock()
        return sender

    def peer_state(self, last: float, now: float) -> str:
        if last == 0.0:
            return "UNKNOWN"
        age = now - last
        if age <= self.suspect_timeout:
            return "ALIVE"
        if age <= self.dead_timeout:
            return "SUSPECT"
        return "DEAD"

    def report(self, members: Optional[Dict[str, set]] = None) -> List[dict]:
        now = self.clock()
        members = members or {}
        result = []
        for peer, last in self.last_seen.items():
            age = None if last == 0.0 else now - last
            result.append(
                {
                    "peer": peer,
                    "state": self.peer_state(last, now),
                    "last_seen_seconds_ago": None if age is None else round(age, 2),
                    "rooms": sorted(room for room, senders in members.items() if peer in senders),
                }
            )
        return result


@router.post("/internal/heartbeat")
def internal_heartbeat(sender: str, request: Request):
    liveness: PeerLiveness = request.app.state.liveness
    sender = liveness.seen(sender)
    return {"ok": True, "node": request.app.state.channel.node_id, "received_from": sender}


async def heartbeat_loop(
    liveness: PeerLiveness,
    sender: str = f"http://{NODE_ID}:{PORT}",
    interval: float = HEARTBEAT_INTERVAL,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> None:
    """
    Loop in background: send a heartbeat to every peer (best effort).
    sender is this node's own address, the one peers know us by.
    """
    if not liveness.peers:
        return

    async with httpx.AsyncClient(timeout=1.0, transport=transport) as client:
        while True:
            for peer in liveness.peers:
                try:
                    await client.post(f"{peer}/internal/heartbeat", params={"sender": sender})
                except httpx.HTTPError:
                    # peer giù: lo segneranno SUSPECT/DEAD i timeout
                    _logger.debug("Heartbeat to %s failed", peer)

            await asyncio.sleep(interval)


@router.get("/status")
def status(request: Request):
    liveness: PeerLiveness = request.app.state.liveness
    channel = request.app.state.channel
    return {
        "node": channel.node_id,
        "rooms": sorted(channel.rooms),
        "pending_broadcasts": channel.pending(),
        "peers": liveness.report(channel.members),
    }
