from __future__ import annotations

import unittest
from datetime import date, time

from app.models import Absence, HourlyBlockage, Person, PresenceOverride, TeamRotation
from app.services.day_clock import DAY_END, DAY_START
from app.services.presence import (
    BLOCK_KIND_ABSENCE,
    BLOCK_KIND_HOURLY,
    SOURCE_ABSENCE,
    SOURCE_DEFAULT,
    SOURCE_OVERRIDE,
    SOURCE_ROTATION,
    build_presence_sources,
    full_day_absence_rule,
    manual_override_rule,
    resolve_presence,
    rotation_rule,
)


def _person(person_id: int = 1, team_id: int | None = 5) -> Person:
    return Person(id=person_id, organization_id=10, team_id=team_id, full_name="Test Person", is_active=True)


def _rotation(**overrides) -> TeamRotation:  # type: ignore[no-untyped-def]
    values = {
        "id": 1,
        "organization_id": 10,
        "team_id": 5,
        "start_date": date(2024, 1, 1),
        "days_on_base": 11,
        "days_at_home": 3,
        "arrival_time": time(10, 0),
        "departure_time": time(14, 0),
    }
    values.update(overrides)
    return TeamRotation(**values)


def _absence(**overrides) -> Absence:  # type: ignore[no-untyped-def]
    values = {
        "id": 1,
        "person_id": 1,
        "organization_id": 10,
        "start_date": date(2024, 2, 1),
        "end_date": date(2024, 2, 1),
        "start_time": None,
        "end_time": None,
        "status": "approved",
        "reason": "Leave",
    }
    values.update(overrides)
    return Absence(**values)


class PresencePrecedenceTests(unittest.TestCase):
    def test_override_wins_over_absence_and_rotation(self) -> None:
        override = PresenceOverride(
            person_id=1,
            organization_id=10,
            day_date=date(2024, 2, 1),
            status="unavailable",
            start_time=None,
            end_time=None,
            source="manual",
        )

        resolved = resolve_presence(
            _person(),
            date(2024, 2, 1),
            overrides=[override],
            absences=[_absence()],
            rotations=[_rotation()],
        )

        self.assertEqual(resolved.status, "unavailable")
        self.assertEqual(resolved.source, SOURCE_OVERRIDE)
        self.assertEqual((resolved.start_time, resolved.end_time), (DAY_START, DAY_END))

    def test_override_window_is_taken_verbatim_with_midnight_end_as_end_of_day(self) -> None:
        override = PresenceOverride(
            person_id=1,
            organization_id=10,
            day_date=date(2024, 2, 1),
            status="arrival",
            start_time=time(8, 30, 15),
            end_time=time(0, 0),
        )

        resolved = resolve_presence(_person(), date(2024, 2, 1), overrides=[override])

        self.assertEqual(resolved.status, "arrival")
        self.assertEqual(resolved.window.as_strings(), ("08:30", "23:59"))

    def test_override_for_another_day_is_ignored(self) -> None:
        override = PresenceOverride(person_id=1, organization_id=10, day_date=date(2024, 2, 2), status="home")

        resolved = resolve_presence(_person(team_id=None), date(2024, 2, 1), overrides=[override])

        self.assertEqual(resolved.status, "base")
        self.assertEqual(resolved.source, SOURCE_DEFAULT)

    def test_full_day_absence_wins_over_rotation(self) -> None:
        # 2024-02-01 is an ordinary on-duty day of the 11/3 cycle.
        resolved = resolve_presence(
            _person(),
            date(2024, 2, 1),
            absences=[_absence()],
            rotations=[_rotation()],
        )

        self.assertEqual(resolved.status, "home")
        self.assertEqual(resolved.source, SOURCE_ABSENCE)
        self.assertEqual(resolved.window.as_strings(), ("00:00", "23:59"))

    def test_explicit_full_day_times_count_as_full_day(self) -> None:
        absence = _absence(start_time=time(0, 0), end_time=time(23, 59))

        resolved = resolve_presence(_person(team_id=None), date(2024, 2, 1), absences=[absence])

        self.assertEqual(resolved.status, "home")

    def test_unreadable_boundary_time_is_a_partial_day(self) -> None:
        absence = _absence(start_time="soon", reason="Errand")

        resolved = resolve_presence(_person(team_id=None), date(2024, 2, 1), absences=[absence])

        self.assertEqual(resolved.status, "base")
        self.assertEqual(resolved.source, SOURCE_DEFAULT)
        self.assertEqual(
            [(block.kind, block.reason) for block in resolved.unavailable_blocks],
            [(BLOCK_KIND_ABSENCE, "Errand")],
        )

    def test_unreadable_time_on_a_middle_day_is_still_full_day(self) -> None:
        absence = _absence(end_date=date(2024, 2, 3), start_time="soon", end_time="later")

        resolved = resolve_presence(_person(team_id=None), date(2024, 2, 2), absences=[absence])

        self.assertEqual(resolved.status, "home")

    def test_unapproved_absences_are_ignored(self) -> None:
        for status in ("pending", "rejected"):
            resolved = resolve_presence(
                _person(team_id=None),
                date(2024, 2, 1),
                absences=[_absence(status=status)],
            )
            self.assertEqual(resolved.status, "base", status)
            self.assertEqual(resolved.source, SOURCE_DEFAULT, status)

    def test_middle_day_of_multi_day_absence_is_full_day(self) -> None:
        absence = _absence(
            start_date=date(2024, 2, 1),
            end_date=date(2024, 2, 5),
            start_time=time(15, 0),
            end_time=time(9, 0),
        )

        middle = resolve_presence(_person(team_id=None), date(2024, 2, 3), absences=[absence])
        first = resolve_presence(_person(team_id=None), date(2024, 2, 1), absences=[absence])
        last = resolve_presence(_person(team_id=None), date(2024, 2, 5), absences=[absence])

        self.assertEqual(middle.status, "home")
        self.assertEqual(first.status, "base")
        self.assertEqual(last.status, "base")

    def test_partial_day_absence_does_not_flip_status_but_is_reported(self) -> None:
        # 2024-01-29 starts the third cycle: an arrival day.
        absence = _absence(
            start_date=date(2024, 1, 29),
            end_date=date(2024, 1, 29),
            start_time=time(12, 0),
            reason="Clinic",
        )

        resolved = resolve_presence(_person(), date(2024, 1, 29), absences=[absence], rotations=[_rotation()])

        self.assertEqual(resolved.status, "arrival")
        self.assertEqual(resolved.source, SOURCE_ROTATION)
        self.assertEqual(resolved.window.as_strings(), ("10:00", "23:59"))
        self.assertEqual(len(resolved.unavailable_blocks), 1)
        block = resolved.unavailable_blocks[0]
        self.assertEqual(
            (block.start, block.end, block.kind, block.reason),
            (time(12, 0), DAY_END, BLOCK_KIND_ABSENCE, "Clinic"),
        )

    def test_hourly_blockages_are_reported_without_changing_status(self) -> None:
        blockage = HourlyBlockage(
            person_id=1,
            organization_id=10,
            day_date=date(2024, 2, 2),
            start_time=time(16, 0),
            end_time=time(18, 0),
            reason="Course",
        )
        other_day = HourlyBlockage(
            person_id=1,
            organization_id=10,
            day_date=date(2024, 2, 3),
            start_time=time(9, 0),
            end_time=time(10, 0),
        )

        resolved = resolve_presence(_person(team_id=None), date(2024, 2, 2), blockages=[blockage, other_day])

        self.assertEqual(resolved.status, "base")
        self.assertEqual([item.kind for item in resolved.unavailable_blocks], [BLOCK_KIND_HOURLY])
        self.assertEqual(resolved.to_dict()["unavailable_blocks"][0]["start"], "16:00")


class RotationLayerTests(unittest.TestCase):
    def test_rotation_phases_map_to_presence_status_and_window(self) -> None:
        rotation = _rotation()
        expectations = {
            date(2024, 1, 1): ("arrival", "10:00", "23:59"),
            date(2024, 1, 5): ("base", "00:00", "23:59"),
            date(2024, 1, 11): ("departure", "00:00", "14:00"),
            date(2024, 1, 13): ("home", "00:00", "23:59"),
        }
        for day, (status, start, end) in expectations.items():
            resolved = resolve_presence(_person(), day, rotations=[rotation])
            self.assertEqual(resolved.status, status, day)
            self.assertEqual(resolved.window.as_strings(), (start, end), day)
            self.assertEqual(resolved.source, SOURCE_ROTATION, day)

    def test_rotation_not_started_falls_back_to_default(self) -> None:
        resolved = resolve_presence(_person(), date(2023, 12, 31), rotations=[_rotation()])

        self.assertEqual(resolved.status, "base")
        self.assertEqual(resolved.source, SOURCE_DEFAULT)
        self.assertTrue(resolved.window.is_full_day)

    def test_rotation_past_end_date_falls_back_to_default(self) -> None:
        resolved = resolve_presence(
            _person(),
            date(2024, 1, 13),
            rotations=[_rotation(end_date=date(2024, 1, 12))],
        )

        self.assertEqual(resolved.source, SOURCE_DEFAULT)

    def test_malformed_rotation_is_treated_as_missing(self) -> None:
        resolved = resolve_presence(
            _person(),
            date(2024, 1, 13),
            rotations=[_rotation(days_on_base=0, days_at_home=0)],
        )

        self.assertEqual(resolved.status, "base")
        self.assertEqual(resolved.source, SOURCE_DEFAULT)

    def test_rotation_of_another_team_does_not_apply(self) -> None:
        resolved = resolve_presence(_person(team_id=6), date(2024, 1, 13), rotations=[_rotation()])

        self.assertEqual(resolved.source, SOURCE_DEFAULT)

    def test_person_without_any_signal_is_on_base_all_day(self) -> None:
        resolved = resolve_presence(_person(team_id=None), date(2024, 5, 5))

        self.assertEqual(resolved.to_dict()["status"], "base")
        self.assertEqual(resolved.window.as_strings(), ("00:00", "23:59"))
        self.assertEqual(resolved.unavailable_blocks, ())


class PresenceRuleTests(unittest.TestCase):
    def test_each_rule_returns_none_without_its_signal(self) -> None:
        sources = build_presence_sources()
        person = _person()

        self.assertIsNone(manual_override_rule(person, date(2024, 1, 1), sources))
        self.assertIsNone(full_day_absence_rule(person, date(2024, 1, 1), sources))
        self.assertIsNone(rotation_rule(person, date(2024, 1, 1), sources))

    def test_build_presence_sources_keeps_first_override_per_person_day(self) -> None:
        first = PresenceOverride(person_id=1, organization_id=10, day_date=date(2024, 1, 1), status="home")
        second = PresenceOverride(person_id=1, organization_id=10, day_date=date(2024, 1, 1), status="base")

        sources = build_presence_sources(overrides=[first, second], absences=[_absence(status="pending")])

        self.assertIs(sources.overrides[(1, date(2024, 1, 1))], first)
        self.assertEqual(sources.absences_by_person, {})


if __name__ == "__main__":
    unittest.main()
