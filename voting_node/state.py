# pure state: constants, transitions, queries (no I/O here)
from typing import Dict, List, Optional, Tuple

from .models import (
    ActivityLogEntry,
    CumulativeVotes,
    PersistedState,
    Place,
    StatePatch,
    StoreState,
    VotingDataIn,
    VotingDataRecord,
    VotingDate,
    ZonalData,
)

PLACES: Tuple[Place, ...] = (
    Place(id=1, name="Headquarter", total_voters=3296),
    Place(id=2, name="Malda Division", total_voters=9962),
    Place(id=3, name="Howrah Division", total_voters=25224),
    Place(id=4, name="Sealdah Division", total_voters=21038),
    Place(id=5, name="Liluah Workshop", total_voters=6709),
    Place(id=6, name="Kanchrapara Workshop", total_voters=7346),
    Place(id=7, name="Jamalpur Workshop", total_voters=6909),
    Place(id=8, name="Asansol Division", total_voters=17257),
)

SEED_DATES: Tuple[str, ...] = ("2024-12-04", "2024-12-05", "2024-12-06", "2024-12-10")


def seed_voting_dates() -> List[VotingDate]:
    return [VotingDate(date=d, is_active=False, is_complete=False) for d in SEED_DATES]


def initial_state(persisted: Optional[PersistedState] = None) -> StoreState:
    """
    Fresh state, hydrated from the persisted slice when there is one.
    Only the fields actually stored replace the seed values.
    """
    state = StoreState(
        places=list(PLACES),
        voting_data=[],
        activity_logs=[],
        voting_dates=seed_voting_dates(),
        current_date=SEED_DATES[0],
    )
    if persisted is None:
        return state
    return state.model_copy(update={name: getattr(persisted, name) for name in persisted.model_fields_set})


def persisted_slice(state: StoreState) -> PersistedState:
    return PersistedState(
        voting_data=state.voting_data,
        activity_logs=state.activity_logs,
        voting_dates=state.voting_dates,
        current_date=state.current_date,
    )


def place_name(place_id: int) -> str:
    for p in PLACES:
        if p.id == place_id:
            return p.name
    # unknown place: empty name, not an error
    return ""


# ----------- transitions -----------
# Each returns (new_state, patch); the patch is the slice peers receive.

def add_voting_data(state: StoreState, data: VotingDataIn, timestamp: int) -> Tuple[StoreState, StatePatch]:
    record = VotingDataRecord(**dict(data), timestamp=timestamp)
    entry = ActivityLogEntry(
        id=str(timestamp),
        timestamp=timestamp,
        place_name=place_name(data.place_id),
        role=data.submitted_by.role,
        votes_count=data.votes_count,
        male_voters=data.male_voters,
        female_voters=data.female_voters,
        date=data.date,
    )
    patch = StatePatch(
        voting_data=[*state.voting_data, record],
        activity_logs=[entry, *state.activity_logs],
    )
    return merge(state, patch), patch


def set_date_active(state: StoreState, date: str, is_active: bool) -> Tuple[StoreState, StatePatch]:
    dates = []
    for d in state.voting_dates:
        if d.date == date:
            active = is_active
        elif is_active:
            # single active date
            active = False
        else:
            active = d.is_active
        dates.append(d.model_copy(update={"is_active": active}))
    patch = StatePatch(voting_dates=dates)
    return merge(state, patch), patch


def set_date_complete(state: StoreState, date: str, is_complete: bool) -> Tuple[StoreState, StatePatch]:
    dates = [
        d.model_copy(update={"is_complete": is_complete}) if d.date == date else d.model_copy()
        for d in state.voting_dates
    ]
    patch = StatePatch(voting_dates=dates)
    return merge(state, patch), patch


def set_current_date(state: StoreState, date: Optional[str]) -> StoreState:
    return state.model_copy(update={"current_date": date})


def reset(state: StoreState) -> Tuple[StoreState, StatePatch]:
    patch = StatePatch(
        voting_data=[],
        activity_logs=[],
        voting_dates=seed_voting_dates(),
        current_date=SEED_DATES[0],
    )
    return merge(state, patch), patch


def merge(state: StoreState, patch: StatePatch) -> StoreState:
    """
    Shallow overwrite: every field present in the patch replaces the local one.
    No versions, no conflict detection; applying the same patch twice is a no-op.
    """
    fields = {name: getattr(patch, name) for name in patch.model_fields_set}
    return state.model_copy(update=fields)


# ----------- queries -----------

def get_place_data(state: StoreState, place_id: int, date: Optional[str] = None) -> List[VotingDataRecord]:
    return [
        r for r in state.voting_data
        if r.place_id == place_id and (not date or r.date == date)
    ]


def total_voters(places=PLACES) -> int:
    return sum(p.total_voters for p in places)


def get_zonal_data(state: StoreState, date: Optional[str] = None) -> ZonalData:
    """
    Totals over the records of one date (all dates when date is empty).
    The percentage denominator is always the voter count of every place,
    whatever the date filter; with no voters at all it is 0.0.
    """
    rows = [r for r in state.voting_data if not date or r.date == date]
    votes = sum(r.votes_count for r in rows)
    male = sum(r.male_voters for r in rows)
    female = sum(r.female_voters for r in rows)

    denominator = total_voters(state.places)
    percentage = (votes / denominator) * 100 if denominator else 0.0

    return ZonalData(
        total_votes=votes,
        total_male=male,
        total_female=female,
        voting_percentage=percentage,
    )


def get_cumulative_votes(state: StoreState, up_to_date: Optional[str] = None) -> CumulativeVotes:
    """
    Votes per place over every date <= up_to_date.
    ISO dates compare correctly as strings.
    """
    by_place: Dict[int, int] = {}
    for r in state.voting_data:
        if up_to_date and r.date > up_to_date:
            continue
        by_place[r.place_id] = by_place.get(r.place_id, 0) + r.votes_count

    return CumulativeVotes(by_place=by_place, total=sum(by_place.values()))
