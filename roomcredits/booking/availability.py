# ============================================================
# availability.py - Disponibilité des salles
# ------------------------------------------------------------
# Répond à deux questions à partir des réservations actives :
#   - une salle est-elle libre sur [start, end) ?
#   - toutes les salles d'une catégorie sont-elles prises ?
# Le calendrier interroge des centaines de créneaux (15 min sur
# une semaine) : BookingIndex range les réservations par salle
# et cherche par bisection plutôt que de tout reparcourir.
# Le même chevauchement (timeutils.overlaps) sert au ledger.
# ============================================================
from bisect import bisect_right
from collections import defaultdict
from datetime import date, datetime, time, timedelta
from typing import Callable, Dict, Iterable, List, Optional

from roomcredits.booking.models import ACTIVE, Booking, Room
from roomcredits.booking.timeutils import generate_time_slots, overlaps, week_days


def room_available(room_id: int, start: datetime, end: datetime, active_bookings: Iterable[Booking]) -> bool:
    for b in active_bookings:
        if b.room_id == room_id and b.status == ACTIVE and overlaps(start, end, b.start_time, b.end_time):
            return False
    return True


# category=None : toutes les salles, quelle que soit la catégorie.
# Aucune salle candidate → pas "complet".
def category_fully_booked(
    category: Optional[str],
    start: datetime,
    end: datetime,
    rooms: Iterable[Room],
    active_bookings: Iterable[Booking],
) -> bool:
    candidates = [r for r in rooms if category is None or r.category == category]
    if not candidates:
        return False
    bookings = list(active_bookings)
    return all(not room_available(r.id, start, end, bookings) for r in candidates)


class BookingIndex:
    """Active bookings grouped by room, sorted by start time.

    Active bookings of one room never overlap, so their end times are
    sorted as well and the only candidates for a conflict with
    ``[start, end)`` are the neighbours of the insertion point.
    """

    def __init__(self, active_bookings: Iterable[Booking]):
        by_room: Dict[int, List[Booking]] = defaultdict(list)
        for b in active_bookings:
            if b.status == ACTIVE:
                by_room[b.room_id].append(b)
        self._starts: Dict[int, List[datetime]] = {}
        self._ends: Dict[int, List[datetime]] = {}
        for room_id, rows in by_room.items():
            rows.sort(key=lambda b: b.start_time)
            self._starts[room_id] = [b.start_time for b in rows]
            self._ends[room_id] = [b.end_time for b in rows]

    def is_free(self, room_id: int, start: datetime, end: datetime) -> bool:
        starts = self._starts.get(room_id)
        if not starts:
            return True
        ends = self._ends[room_id]
        # première réservation qui finit après start
        i = bisect_right(ends, start)
        return i == len(ends) or not overlaps(start, end, starts[i], ends[i])

    def free_rooms(self, rooms: Iterable[Room], start: datetime, end: datetime) -> List[int]:
        return [r.id for r in rooms if self.is_free(r.id, start, end)]


# ------------------------------------------------------------
# Grille de créneaux pour un jour / une semaine
# ------------------------------------------------------------
# Chaque créneau : {start, end, free_rooms, fully_booked}.
# Les créneaux sont exprimés dans le repère du jour demandé ;
# to_store convertit un créneau dans le repère des réservations
# (ex. heure locale → UTC naïf).
# ------------------------------------------------------------
def slot_grid(
    rooms: Iterable[Room],
    active_bookings: Iterable[Booking],
    day: date,
    category: Optional[str] = None,
    slot_minutes: int = 15,
    start_hour: int = 8,
    end_hour: int = 20,
    index: Optional[BookingIndex] = None,
    to_store: Optional[Callable[[datetime], datetime]] = None,
) -> List[dict]:
    candidates = [r for r in rooms if category is None or r.category == category]
    index = index or BookingIndex(active_bookings)
    midnight = datetime.combine(day, time.min)
    grid = []
    # le dernier repère (end_hour:00) ferme la journée, ce n'est pas un créneau
    for hour, minute in generate_time_slots(start_hour, end_hour, slot_minutes)[:-1]:
        slot_start = midnight + timedelta(hours=hour, minutes=minute)
        slot_end = slot_start + timedelta(minutes=slot_minutes)
        if to_store:
            free = index.free_rooms(candidates, to_store(slot_start), to_store(slot_end))
        else:
            free = index.free_rooms(candidates, slot_start, slot_end)
        grid.append({
            "start": slot_start,
            "end": slot_end,
            "free_rooms": free,
            "fully_booked": bool(candidates) and not free,
        })
    return grid


def week_grid(
    rooms: Iterable[Room],
    active_bookings: Iterable[Booking],
    any_day: date,
    category: Optional[str] = None,
    slot_minutes: int = 15,
    start_hour: int = 8,
    end_hour: int = 20,
    to_store: Optional[Callable[[datetime], datetime]] = None,
) -> Dict[date, List[dict]]:
    rooms = list(rooms)
    index = BookingIndex(active_bookings)
    return {
        day: slot_grid(rooms, (), day, category, slot_minutes, start_hour, end_hour, index=index, to_store=to_store)
        for day in week_days(any_day)
    }
