# ============================================================
# timeutils.py - Fonctions de temps (sans état)
# ------------------------------------------------------------
#  - chevauchement d'intervalles semi-ouverts [start, end)
#  - durée en minutes
#  - semaines (dimanche → samedi) pour le calendrier
#  - grille de créneaux au quart d'heure
#  - normalisation des fuseaux (stockage en UTC naïf)
# ============================================================
import math
from datetime import date, datetime, time, timedelta, timezone
from typing import List, Tuple

from roomcredits.booking.config import LOCAL_TZ


# Deux intervalles [start, end) qui se touchent ne se chevauchent pas
def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    return a_start < b_end and b_start < a_end


# Arrondi à la minute la plus proche ; <= 0 si end <= start
def duration_minutes(start: datetime, end: datetime) -> int:
    return math.floor((end - start).total_seconds() / 60 + 0.5)


def add_minutes(dt: datetime, minutes: int) -> datetime:
    return dt + timedelta(minutes=minutes)


def _as_date(d) -> date:
    return d.date() if isinstance(d, datetime) else d


# ------------------------------------------------------------
# Semaines : la semaine commence le dimanche
# ------------------------------------------------------------
def week_start(d) -> date:
    d = _as_date(d)
    # weekday() : lundi=0 ... dimanche=6
    return d - timedelta(days=(d.weekday() + 1) % 7)


def week_days(d) -> List[date]:
    first = week_start(d)
    return [first + timedelta(days=i) for i in range(7)]


def week_window(d) -> Tuple[datetime, datetime]:
    first = datetime.combine(week_start(d), time.min)
    return first, first + timedelta(days=7)


def next_week(d):
    return d + timedelta(weeks=1)


def previous_week(d):
    return d - timedelta(weeks=1)


def format_week_range(d) -> str:
    first = week_start(d)
    last = first + timedelta(days=6)
    return f"{first:%b} {first.day} - {last:%b} {last.day}, {last.year}"


# ------------------------------------------------------------
# Créneaux du calendrier
# ------------------------------------------------------------
def generate_time_slots(start_hour: int = 8, end_hour: int = 20, step: int = 15) -> List[Tuple[int, int]]:
    slots = []
    for hour in range(start_hour, end_hour + 1):
        for minute in range(0, 60, step):
            if hour == end_hour and minute > 0:
                continue
            slots.append((hour, minute))
    return slots


def snap_to_quarter(dt: datetime) -> datetime:
    snapped = dt.replace(minute=0, second=0, microsecond=0)
    return snapped + timedelta(minutes=round(dt.minute / 15) * 15)


# ------------------------------------------------------------
# Fuseaux horaires
# ------------------------------------------------------------
# Si pas de tz, on suppose la timezone locale, puis on stocke en UTC naïf
def to_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=LOCAL_TZ)
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


# Un datetime stocké (UTC naïf) converti pour l'affichage local
def to_local(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(LOCAL_TZ)


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)
