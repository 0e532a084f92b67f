"""Operating-hours parsers, one per source syntax.

Every parser returns a list ordered Monday..Sunday and returns [] for absent
or unparseable input instead of raising; a bad schedule never costs the rest
of the record.
"""
import logging
import re
from typing import Any, Dict, List, Optional

from carefinder.core.models import Day, OperatingHours

logger = logging.getLogger(__name__)

DAY_ORDER = list(Day)
OSM_DAYS = {"mo": Day.MONDAY, "tu": Day.TUESDAY, "we": Day.WEDNESDAY, "th": Day.THURSDAY,
            "fr": Day.FRIDAY, "sa": Day.SATURDAY, "su": Day.SUNDAY}

_OSM_RULE = re.compile(r"^(?:(?P<days>[A-Za-z]{2}(?:\s*[-,]\s*[A-Za-z]{2})*)\s+)?(?P<times>.+)$")
_OSM_SPAN = re.compile(r"^(\d{1,2}):(\d{2})\s*-\s*(\d{1,2}):(\d{2})$")


def _all_day(day: Day) -> OperatingHours:
    return OperatingHours(day=day, open="00:00", close="23:59", is_24_hours=True)


def _sorted(hours: List[OperatingHours]) -> List[OperatingHours]:
    return sorted(hours, key=lambda h: (DAY_ORDER.index(h.day), h.open))


def _clock(hours: int, minutes: int) -> str:
    if not (0 <= hours <= 24 and 0 <= minutes < 60) or (hours == 24 and minutes):
        raise ValueError(f"bad time {hours}:{minutes}")
    return f"{hours:02d}:{minutes:02d}"


def _compact(value: str) -> str:
    """'0800' -> '08:00'. Foursquare marks next-day closes with a leading '+'."""
    value = value.lstrip("+")
    if not re.fullmatch(r"\d{4}", value):
        raise ValueError(f"bad compact time {value!r}")
    return _clock(int(value[:2]), int(value[2:]))


# ------------------------------------------------------------------------------
# OpenStreetMap: "Mo-Fr 08:00-17:00; Sa 09:00-13:00; Su off", "24/7"
# ------------------------------------------------------------------------------
def _expand_osm_days(days_spec: Optional[str]) -> List[Day]:
    if not days_spec:
        return list(DAY_ORDER)
    days = []
    for part in days_spec.split(","):
        part = part.strip().lower()
        if "-" in part:
            start, end = (p.strip() for p in part.split("-", 1))
            i, j = DAY_ORDER.index(OSM_DAYS[start]), DAY_ORDER.index(OSM_DAYS[end])
            span = range(i, j + 1) if i <= j else list(range(i, 7)) + list(range(0, j + 1))
            days.extend(DAY_ORDER[k] for k in span)
        else:
            days.append(OSM_DAYS[part])
    return days


def _parse_osm_rule(rule: str, schedule: Dict[Day, List[OperatingHours]]) -> None:
    match = _OSM_RULE.match(rule)
    if not match:
        raise ValueError(f"unrecognised rule {rule!r}")
    days = _expand_osm_days(match.group("days"))
    times = match.group("times").strip().lower()

    if times in ("off", "closed"):
        for day in days:
            schedule[day] = []
        return

    entries = []
    for span in times.split(","):
        m = _OSM_SPAN.match(span.strip())
        if not m:
            raise ValueError(f"unrecognised time span {span!r}")
        open_time = _clock(int(m.group(1)), int(m.group(2)))
        close_time = _clock(int(m.group(3)), int(m.group(4)))
        entries.append((open_time, close_time))

    for day in days:
        # a later rule for the same day replaces the earlier one
        schedule[day] = []
        for open_time, close_time in entries:
            if open_time == "00:00" and close_time in ("24:00", "23:59"):
                schedule[day].append(_all_day(day))
            else:
                schedule[day].append(OperatingHours(day=day, open=open_time, close=close_time))


def parse_osm_opening_hours(value: Optional[str]) -> List[OperatingHours]:
    if not value or not value.strip():
        return []
    value = value.strip()
    if value == "24/7":
        return [_all_day(day) for day in DAY_ORDER]

    schedule: Dict[Day, List[OperatingHours]] = {}
    try:
        for rule in value.split(";"):
            rule = rule.strip()
            if rule:
                _parse_osm_rule(rule, schedule)
    except (KeyError, ValueError) as e:
        logger.debug("unparseable opening_hours %r: %s", value, e)
        return []
    return _sorted([h for entries in schedule.values() for h in entries])


# ------------------------------------------------------------------------------
# Foursquare: [{"day": 1, "open": "0800", "close": "1700"}], day 1 == Monday
# ------------------------------------------------------------------------------
def parse_foursquare_hours(hours: Optional[Dict[str, Any]]) -> List[OperatingHours]:
    if not hours or not hours.get("regular"):
        return []
    result = []
    try:
        for period in hours["regular"]:
            day = Day.from_weekday(int(period["day"]) - 1)
            open_time = _compact(str(period["open"]))
            close_time = _compact(str(period["close"]))
            all_day = open_time == "00:00" and close_time in ("23:59", "24:00", "00:00")
            if all_day:
                result.append(_all_day(day))
            else:
                result.append(OperatingHours(day=day, open=open_time, close=close_time))
    except (KeyError, TypeError, ValueError) as e:
        logger.debug("unparseable Foursquare hours %r: %s", hours, e)
        return []
    return _sorted(result)


# ------------------------------------------------------------------------------
# Google Places: periods with day 0 == Sunday; no close means open 24 hours
# ------------------------------------------------------------------------------
def parse_google_opening_hours(opening_hours: Optional[Dict[str, Any]]) -> List[OperatingHours]:
    if not opening_hours or not opening_hours.get("periods"):
        return []
    result = []
    try:
        for period in opening_hours["periods"]:
            open_part = period["open"]
            # Google's day 0 is Sunday; Day.from_weekday counts from Monday
            day = Day.from_weekday(int(open_part["day"]) - 1)
            close_part = period.get("close")
            if not close_part:
                if len(opening_hours["periods"]) == 1:
                    # a single open-ended period means always open
                    return [_all_day(d) for d in DAY_ORDER]
                result.append(_all_day(day))
                continue
            result.append(OperatingHours(
                day=day,
                open=_compact(str(open_part["time"])),
                close=_compact(str(close_part["time"])),
            ))
    except (KeyError, TypeError, ValueError) as e:
        logger.debug("unparseable Google opening_hours %r: %s", opening_hours, e)
        return []
    return _sorted(result)
