from __future__ import annotations

import enum
from datetime import date, datetime, time

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Time,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base


class PresenceStatus(str, enum.Enum):
    BASE = "base"
    HOME = "home"
    ARRIVAL = "arrival"
    DEPARTURE = "departure"
    UNAVAILABLE = "unavailable"


class AbsenceStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class OrganizationGroup(Base):
    __tablename__ = "battalions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    # Local "HH:MM"; NULL disables scheduled capture for the group.
    morning_report_time: Mapped[str | None] = mapped_column(String(5), nullable=True)

    organizations: Mapped[list[Organization]] = relationship(back_populates="group")


class Organization(Base):
    __tablename__ = "organizations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    battalion_id: Mapped[int | None] = mapped_column(
        ForeignKey("battalions.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    group: Mapped[OrganizationGroup | None] = relationship(back_populates="organizations")
    teams: Mapped[list[Team]] = relationship(back_populates="organization")
    people: Mapped[list[Person]] = relationship(back_populates="organization")


class Team(Base):
    __tablename__ = "teams"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    organization_id: Mapped[int] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    organization: Mapped[Organization] = relationship(back_populates="teams")
    members: Mapped[list[Person]] = relationship(back_populates="team")
    rotation: Mapped[TeamRotation | None] = relationship(back_populates="team", uselist=False)


class Person(Base):
    __tablename__ = "people"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    organization_id: Mapped[int] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    team_id: Mapped[int | None] = mapped_column(
        ForeignKey("teams.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    full_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))

    organization: Mapped[Organization] = relationship(back_populates="people")
    team: Mapped[Team | None] = relationship(back_populates="members")
    absences: Mapped[list[Absence]] = relationship(back_populates="person")
    presence_overrides: Mapped[list[PresenceOverride]] = relationship(back_populates="person")
    hourly_blockages: Mapped[list[HourlyBlockage]] = relationship(back_populates="person")


class TeamRotation(Base):
    __tablename__ = "team_rotations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    organization_id: Mapped[int] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    team_id: Mapped[int] = mapped_column(
        ForeignKey("teams.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    days_on_base: Mapped[int] = mapped_column(Integer, nullable=False)
    days_at_home: Mapped[int] = mapped_column(Integer, nullable=False)
    arrival_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    departure_time: Mapped[time | None] = mapped_column(Time, nullable=True)

    team: Mapped[Team] = relationship(back_populates="rotation")


class Absence(Base):
    __tablename__ = "absences"
    __table_args__ = (Index("ix_absences_org_range", "organization_id", "start_date", "end_date"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    person_id: Mapped[int] = mapped_column(ForeignKey("people.id", ondelete="CASCADE"), nullable=False, index=True)
    organization_id: Mapped[int] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    # NULL means the boundary day is covered from 00:00 / until 23:59.
    start_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    end_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=AbsenceStatus.PENDING.value,
        server_default=text("'pending'"),
    )
    reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    person: Mapped[Person] = relationship(back_populates="absences")


class PresenceOverride(Base):
    __tablename__ = "unified_presence"
    __table_args__ = (UniqueConstraint("person_id", "date", name="uq_unified_presence_person_date"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    person_id: Mapped[int] = mapped_column(ForeignKey("people.id", ondelete="CASCADE"), nullable=False)
    organization_id: Mapped[int] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    day_date: Mapped[date] = mapped_column("date", Date, nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    start_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    end_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    source: Mapped[str] = mapped_column(String(32), nullable=False, default="manual", server_default=text("'manual'"))

    person: Mapped[Person] = relationship(back_populates="presence_overrides")


class HourlyBlockage(Base):
    __tablename__ = "hourly_blockages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    person_id: Mapped[int] = mapped_column(ForeignKey("people.id", ondelete="CASCADE"), nullable=False, index=True)
    organization_id: Mapped[int] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    day_date: Mapped[date] = mapped_column("date", Date, nullable=False, index=True)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    person: Mapped[Person] = relationship(back_populates="hourly_blockages")


class PresenceSnapshot(Base):
    __tablename__ = "daily_attendance_snapshots"
    __table_args__ = (Index("ix_daily_attendance_snapshots_org_date", "organization_id", "date"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    organization_id: Mapped[int] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    person_id: Mapped[int] = mapped_column(ForeignKey("people.id", ondelete="CASCADE"), nullable=False, index=True)
    day_date: Mapped[date] = mapped_column("date", Date, nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    captured_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    snapshot_definition_time: Mapped[str] = mapped_column(String(5), nullable=False)
