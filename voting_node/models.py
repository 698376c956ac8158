from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """
    Base for everything that goes on the wire or into local storage:
    snake_case in Python, camelCase in JSON.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class Role(str, Enum):
    APO = "APO"
    PO = "PO"
    SUPER_ADMIN = "SUPER_ADMIN"


class Place(CamelModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    total_voters: int


class VotingDate(CamelModel):
    date: str = Field(..., examples=["2024-12-04"])
    is_active: bool = False
    is_complete: bool = False


class SubmittedBy(CamelModel):
    user_id: int
    # Role values are not enforced: submissions are accepted as sent.
    role: str = Field(..., examples=[Role.APO.value])
    place_name: str


class VotingDataIn(CamelModel):
    """
    A submission as sent by a client. Counts are not range-checked and
    place_id is not checked against the place list.
    """
    place_id: int = Field(..., examples=[1])
    votes_count: int = Field(..., examples=[100])
    male_voters: int = Field(..., examples=[60])
    female_voters: int = Field(..., examples=[40])
    date: str = Field(..., examples=["2024-12-04"])
    submitted_by: SubmittedBy


class VotingDataRecord(VotingDataIn):
    """Stored submission; timestamp is epoch milliseconds assigned by the store."""
    timestamp: int


class ActivityLogEntry(CamelModel):
    id: str
    timestamp: int
    place_name: str
    role: str
    votes_count: int
    male_voters: int
    female_voters: int
    date: str


class PersistedState(CamelModel):
    """The part of the state written to local storage (places are compiled in)."""
    voting_data: List[VotingDataRecord] = Field(default_factory=list)
    activity_logs: List[ActivityLogEntry] = Field(default_factory=list)
    voting_dates: List[VotingDate] = Field(default_factory=list)
    current_date: Optional[str] = None


class StoreState(PersistedState):
    places: List[Place] = Field(default_factory=list)


class StatePatch(CamelModel):
    """
    Partial state carried by a votingUpdate broadcast.
    Only the fields actually present in the payload are merged.
    """
    voting_data: Optional[List[VotingDataRecord]] = None
    activity_logs: Optional[List[ActivityLogEntry]] = None
    voting_dates: Optional[List[VotingDate]] = None
    current_date: Optional[str] = None

    @field_validator("voting_data", "activity_logs", "voting_dates")
    @classmethod
    def _lists_not_null(cls, value):
        # absent means "unchanged"; an explicit null would wipe the list
        if value is None:
            raise ValueError("must be a list, not null")
        return value

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_unset=True)


class ZonalData(CamelModel):
    total_votes: int
    total_male: int
    total_female: int
    voting_percentage: float


class CumulativeVotes(CamelModel):
    by_place: Dict[int, int]
    total: int


class CurrentDateIn(CamelModel):
    current_date: Optional[str] = None


class RoomMessage(BaseModel):
    """Envelope for node-to-node event delivery."""
    sender: str
    payload: dict
