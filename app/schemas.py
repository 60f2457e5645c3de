from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field


class PresenceSnapshotRead(BaseModel):
    id: int
    organization_id: int
    person_id: int
    day_date: date = Field(serialization_alias="date")
    status: str
    start_time: str
    end_time: str
    captured_at: datetime
    snapshot_definition_time: str

    model_config = ConfigDict(from_attributes=True)


class UnavailableBlockRead(BaseModel):
    start: str
    end: str
    kind: str
    reason: str | None = None


class PersonPresenceRead(BaseModel):
    person_id: int
    organization_id: int
    day_date: date = Field(serialization_alias="date")
    status: str
    start_time: str
    end_time: str
    source: str
    unavailable_blocks: list[UnavailableBlockRead] = Field(default_factory=list)
