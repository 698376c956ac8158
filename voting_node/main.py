import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Dict, List, Optional

from fastapi import FastAPI, Request

from .config import LOG_LEVEL, PORT, STORAGE_PATH
from .failure import PeerLiveness, heartbeat_loop, router as failure_router
from .models import (
    CumulativeVotes,
    CurrentDateIn,
    Place,
    StoreState,
    VotingDataIn,
    VotingDataRecord,
    VotingDate,
    ZonalData,
)
from .replication import PeerChannel, router as replication_router
from .state import PLACES
from .storage import JsonFileStorage
from .store import VotingStore

_logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    channel: PeerChannel = app.state.channel

    # Startup: background tasks
    tasks = [
        asyncio.create_task(channel.broadcast_loop()),
        asyncio.create_task(channel.announce()),
        asyncio.create_task(heartbeat_loop(app.state.liveness, channel.address)),
    ]
    _logger.info("Node %s up, rooms=%s, peers=%s", channel.node_id, sorted(channel.rooms), channel.peers)
    yield
    for t in tasks:
        t.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)


def create_app(
    store: Optional[VotingStore] = None,
    channel: Optional[PeerChannel] = None,
    liveness: Optional[PeerLiveness] = None,
) -> FastAPI:
    channel = channel or PeerChannel()
    if store is None:
        store = VotingStore(channel, JsonFileStorage(STORAGE_PATH))

    app = FastAPI(title=f"Voting Node ({channel.node_id})", lifespan=lifespan)
    app.state.channel = channel
    app.state.store = store
    app.state.liveness = liveness or PeerLiveness(peers=channel.peers)

    app.include_router(replication_router)
    app.include_router(failure_router)

    # Store endpoints are coroutines: the store is only touched from the event loop.

    @app.get("/places")
    def get_places() -> List[Place]:
        return list(PLACES)

    @app.get("/state")
    async def get_state(request: Request) -> StoreState:
        return request.app.state.store.get_state()

    @app.post("/voting-data")
    async def submit(data: VotingDataIn, request: Request) -> VotingDataRecord:
        return request.app.state.store.add_voting_data(data)

    @app.get("/places/{place_id}/voting-data")
    async def place_data(place_id: int, request: Request, date: Optional[str] = None) -> List[VotingDataRecord]:
        return request.app.state.store.get_place_data(place_id, date)

    @app.get("/zonal")
    async def zonal(request: Request, date: Optional[str] = None) -> ZonalData:
        return request.app.state.store.get_zonal_data(date)

    @app.get("/cumulative")
    async def cumulative(request: Request, up_to: Optional[str] = None) -> CumulativeVotes:
        return request.app.state.store.get_cumulative_votes(up_to)

    @app.post("/dates/{date}/active")
    async def date_active(date: str, value: bool, request: Request) -> List[VotingDate]:
        s: VotingStore = request.app.state.store
        s.set_date_active(date, value)
        return s.state.voting_dates

    @app.post("/dates/{date}/complete")
    async def date_complete(date: str, value: bool, request: Request) -> List[VotingDate]:
        s: VotingStore = request.app.state.store
        s.set_date_complete(date, value)
        return s.state.voting_dates

    @app.put("/current-date")
    async def current_date(body: CurrentDateIn, request: Request) -> Dict[str, Optional[str]]:
        s: VotingStore = request.app.state.store
        s.set_current_date(body.current_date)
        return {"currentDate": s.state.current_date}

    @app.post("/reset")
    async def reset(request: Request) -> StoreState:
        s: VotingStore = request.app.state.store
        s.reset()
        return s.get_state()

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("voting_node.main:app", host="0.0.0.0", port=PORT, log_level=LOG_LEVEL.lower())
