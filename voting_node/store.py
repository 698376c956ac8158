"""
The node's voting store.

Owns the current StoreState and is the only place where it changes. Every
change is written to local storage, pushed to listeners and, except for the
current-date selection, broadcast to the room. Incoming votingUpdate events
are merged by plain overwrite, so the last broadcast wins.
"""

import logging
import time
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from . import state as st
from .config import ROOM, STORAGE_KEY, UPDATE_EVENT
from .models import CumulativeVotes, StatePatch, StoreState, VotingDataIn, VotingDataRecord, ZonalData
from .replication import Transport
from .storage import KeyValueStorage, load_state, save_state

_logger = logging.getLogger(__name__)

Listener = Callable[[StoreState], None]


def _now_ms() -> int:
    return int(time.time() * 1000)


class VotingStore:
    def __init__(
        self,
        transport: Transport,
        storage: KeyValueStorage,
        clock: Callable[[], int] = _now_ms,
        room: str = ROOM,
        storage_key: str = STORAGE_KEY,
    ) -> None:
        self._transport = transport
        self._storage = storage
        self._clock = clock
        self._storage_key = storage_key
        self._listeners: List[Listener] = []

        persisted = load_state(storage, storage_key)
        self._state = st.initial_state(persisted)
        if persisted is not None:
            _logger.info("Restored %d voting records from local storage", len(persisted.voting_data))

        transport.join(room)
        transport.on(UPDATE_EVENT, self.apply_update)

    # ----------- plumbing -----------

    @property
    def state(self) -> StoreState:
        return self._state

    def get_state(self) -> StoreState:
        return self._state.model_copy(deep=True)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _commit(self, new_state: StoreState, patch: Optional[StatePatch] = None) -> None:
        # persist first: a slice that cannot be saved never becomes the state
        save_state(self._storage, self._storage_key, st.persisted_slice(new_state))
        self._state = new_state
        for listener in list(self._listeners):
            try:
                listener(new_state)
            except Exception:
                _logger.exception("Store listener failed")
        if patch is not None:
            self._transport.emit(UPDATE_EVENT, patch.to_wire())

    # ----------- mutations -----------

    def add_voting_data(self, data: VotingDataIn) -> VotingDataRecord:
        new_state, patch = st.add_voting_data(self._state, data, self._clock())
        record = new_state.voting_data[-1]
        _logger.info(
            "Votes submitted: place=%s date=%s votes=%d by %s",
            record.place_id, record.date, record.votes_count, record.submitted_by.role,
        )
        self._commit(new_state, patch)
        return record

    def set_date_active(self, date: str, is_active: bool) -> None:
        new_state, patch = st.set_date_active(self._state, date, is_active)
        _logger.info("Date %s active=%s", date, is_active)
        self._commit(new_state, patch)

    def set_date_complete(self, date: str, is_complete: bool) -> None:
        new_state, patch = st.set_date_complete(self._state, date, is_complete)
        _logger.info("Date %s complete=%s", date, is_complete)
        self._commit(new_state, patch)

    def set_current_date(self, date: Optional[str]) -> None:
        # local selection only, never broadcast
        self._commit(st.set_current_date(self._state, date))

    def reset(self) -> None:
        new_state, patch = st.reset(self._state)
        _logger.info("Store reset")
        self._commit(new_state, patch)

    def apply_update(self, payload: Dict[str, Any]) -> None:
        """
        votingUpdate handler. Overwrites whatever fields the payload carries;
        our own broadcasts come back here too and change nothing.
        """
        try:
            patch = StatePatch.model_validate(payload)
        except ValidationError:
            _logger.warning("Dropping malformed votingUpdate payload", exc_info=True)
            return
        self._commit(st.merge(self._state, patch))

    # ----------- queries -----------

    def get_place_data(self, place_id: int, date: Optional[str] = None) -> List[VotingDataRecord]:
        return st.get_place_data(self._state, place_id, date)

    def get_zonal_data(self, date: Optional[str] = None) -> ZonalData:
        return st.get_zonal_data(self._state, date)

    def get_cumulative_votes(self, up_to_date: Optional[str] = None) -> CumulativeVotes:
        return st.get_cumulative_votes(self._state, up_to_date)
