# ============================================================
# ledger.py - Cœur transactionnel des réservations
# ------------------------------------------------------------
# Trois opérations, chacune en une seule transaction :
#   - create_booking : chevauchement, coût, débit, journal
#   - cancel_booking : active → cancelled, remboursement, journal
#   - reset_all_credits : remise du solde hebdomadaire, journal
#
# Concurrence : pour une même salle, le contrôle de chevauchement
# et l'insertion sont sérialisés par un verrou par salle (dans le
# processus) et un SELECT ... FOR UPDATE sur la ligne de la salle
# (entre processus, PostgreSQL). Les autres salles avancent en
# parallèle. Les soldes ne bougent que par des UPDATE gardés.
# ============================================================
import threading
from datetime import datetime
from typing import Dict, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session

from roomcredits.booking.availability import category_fully_booked
from roomcredits.booking.credits import RATE_PER_BLOCK, WEEKLY_ALLOTMENT, credit_cost, has_sufficient_credits
from roomcredits.booking.errors import (
    AlreadyCancelled,
    AlreadyCompleted,
    BookingError,
    InsufficientCredits,
    InvalidInput,
    InvalidInterval,
    MissingFields,
    NotFound,
    RoomConflict,
    StoreFailure,
)
from roomcredits.booking.models import ACTIVE, CANCELLED, COMPLETED, ROOM_OVERLAP_CONSTRAINT, Booking
from roomcredits.booking.repository import (
    BookingRepository,
    CreditTransactionRepository,
    RoomRepository,
    UserRepository,
)
from roomcredits.booking.timeutils import duration_minutes, to_utc, utcnow

RESET_REASON = "weekly reset"
REFUND_REASON = "Refund for cancelled booking"

_room_locks: Dict[int, threading.Lock] = {}
_room_locks_guard = threading.Lock()


def room_lock(room_id: int) -> threading.Lock:
    with _room_locks_guard:
        lock = _room_locks.get(room_id)
        if lock is None:
            lock = _room_locks[room_id] = threading.Lock()
        return lock


# "completed" est dérivé : active + end_time passé
def effective_status(b: Booking, now: Optional[datetime] = None) -> str:
    now = now or utcnow()
    if b.status == ACTIVE and b.end_time < now:
        return COMPLETED
    return b.status


# ------------------------------------------------------------
# create_booking
# ------------------------------------------------------------
# - Champs requis, puis start < end (dates normalisées en UTC)
# - Salle et utilisateur doivent exister
# - Coût selon la catégorie, solde suffisant
# - Aucune réservation active qui chevauche sur la salle
# - Insertion + débit + journal, puis commit
# ------------------------------------------------------------
def create_booking(s: Session, room_id: int, user_id: int, start: datetime, end: datetime) -> Booking:
    if room_id is None or user_id is None or start is None or end is None:
        raise MissingFields("Missing required fields")
    start, end = to_utc(start), to_utc(end)
    if start >= end:
        raise InvalidInterval("start must be before end")

    # un verrou n'est créé que pour une salle existante
    try:
        exists = RoomRepository(s).get(room_id) is not None
    except SQLAlchemyError as e:
        s.rollback()
        raise StoreFailure("Failed to create booking") from e
    if not exists:
        s.rollback()
        raise NotFound("Room not found")

    with room_lock(room_id):
        try:
            return _create_locked(s, room_id, user_id, start, end)
        except BookingError:
            s.rollback()
            raise
        except IntegrityError as e:
            s.rollback()
            # course perdue contre la contrainte d'exclusion
            if ROOM_OVERLAP_CONSTRAINT in str(e.orig):
                raise RoomConflict("Room is already booked for this time slot") from e
            raise StoreFailure("Failed to create booking") from e
        except SQLAlchemyError as e:
            s.rollback()
            raise StoreFailure("Failed to create booking") from e


def _create_locked(s: Session, room_id: int, user_id: int, start: datetime, end: datetime) -> Booking:
    rooms = RoomRepository(s)
    bookings = BookingRepository(s)

    room = rooms.get(room_id, for_update=True)
    if not room:
        raise NotFound("Room not found")
    user = UserRepository(s).get(user_id)
    if not user:
        raise NotFound("User not found")
    if room.category not in RATE_PER_BLOCK:
        raise InvalidInput(f"unknown room category {room.category!r}")

    cost = credit_cost(room.category, duration_minutes(start, end))
    if not has_sufficient_credits(user.current_credits, cost):
        raise InsufficientCredits("Insufficient credits")

    if bookings.overlapping(room_id, start, end):
        siblings = rooms.list(room.category)
        active = bookings.active_in_window(start, end, [r.id for r in siblings])
        if category_fully_booked(room.category, start, end, siblings, active):
            raise RoomConflict(f"All {room.category} rooms are fully booked for this time slot")
        raise RoomConflict("Room is already booked for this time slot")

    booking = bookings.add(Booking(
        room_id=room_id,
        user_id=user_id,
        start_time=start,
        end_time=end,
        credits_spent=cost,
        status=ACTIVE,
    ))
    # le solde a pu baisser depuis la lecture (autre salle, même utilisateur)
    if not UserRepository(s).debit(user_id, cost):
        raise InsufficientCredits("Insufficient credits")
    CreditTransactionRepository(s).append(
        user_id,
        -cost,
        f"Booking {room.name} from {start.isoformat()} to {end.isoformat()}",
        booking.id,
    )
    s.commit()
    s.refresh(booking)
    print(f"[ledger] booking {booking.id} room={room_id} user={user_id} cost={cost}", flush=True)
    return booking


# ------------------------------------------------------------
# cancel_booking
# ------------------------------------------------------------
# Transition gardée active → cancelled : une seconde annulation
# échoue (AlreadyCancelled) et ne rembourse jamais deux fois.
# Une réservation terminée ne s'annule plus.
# ------------------------------------------------------------
def cancel_booking(s: Session, booking_id: int, now: Optional[datetime] = None) -> Booking:
    bookings = BookingRepository(s)
    try:
        booking = bookings.get(booking_id)
        if not booking:
            raise NotFound("Booking not found")
        if booking.status == CANCELLED:
            raise AlreadyCancelled("Booking is already cancelled")
        if effective_status(booking, now) == COMPLETED:
            raise AlreadyCompleted("Booking is already completed")

        if not bookings.mark_cancelled(booking.id):
            raise AlreadyCancelled("Booking is already cancelled")
        UserRepository(s).credit(booking.user_id, booking.credits_spent)
        CreditTransactionRepository(s).append(
            booking.user_id, booking.credits_spent, REFUND_REASON, booking.id
        )
        s.commit()
    except BookingError:
        s.rollback()
        raise
    except SQLAlchemyError as e:
        s.rollback()
        raise StoreFailure("Failed to cancel booking") from e

    s.refresh(booking)
    print(f"[ledger] booking {booking.id} cancelled, refunded {booking.credits_spent}", flush=True)
    return booking


# ------------------------------------------------------------
# reset_all_credits
# ------------------------------------------------------------
# Remet chaque solde à l'allocation hebdomadaire, sans condition.
# Une ligne de journal par utilisateur dont le solde change ;
# relancer le reset ne change rien et n'écrit rien.
# ------------------------------------------------------------
def reset_all_credits(s: Session, allotment: int = WEEKLY_ALLOTMENT) -> int:
    users = UserRepository(s)
    journal = CreditTransactionRepository(s)
    changed = 0
    try:
        for user in users.list_for_update():
            delta = allotment - user.current_credits
            if delta == 0:
                continue
            user.current_credits = allotment
            s.add(user)
            journal.append(user.id, delta, RESET_REASON)
            changed += 1
        s.commit()
    except SQLAlchemyError as e:
        s.rollback()
        raise StoreFailure("Failed to reset credits") from e

    print(f"[ledger] credits reset to {allotment} ({changed} users changed)", flush=True)
    return changed
