# ============================================================
# Booking API Router
# ------------------------------------------------------------
# Expose les endpoints REST : salles, disponibilités, réservations
# (création / annulation), utilisateurs, journal de crédits et
# reset hebdomadaire. La logique est dans ledger.py ; ici on
# convertit les dates, on joint salle + utilisateur et on publie
# les événements après succès.
# ============================================================
from datetime import date, datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from roomcredits.booking import ledger
from roomcredits.booking.availability import week_grid
from roomcredits.booking.config import DAY_END_HOUR, DAY_START_HOUR, SLOT_MINUTES
from roomcredits.booking.credits import RATE_PER_BLOCK
from roomcredits.booking.db import get_session
from roomcredits.booking.errors import InvalidInput, NotFound
from roomcredits.booking.models import (
    ACTIVE,
    BOOKING_STATUSES,
    Booking,
    BookingCreate,
    BookingRead,
    CreditTransaction,
    Room,
    User,
)
from roomcredits.booking.publisher import notify
from roomcredits.booking.repository import (
    BookingRepository,
    CreditTransactionRepository,
    RoomRepository,
    UserRepository,
)
from roomcredits.booking.timeutils import format_week_range, to_local, to_utc, utcnow, week_window

router = APIRouter()


# Réservation jointe avec sa salle et son utilisateur, dates en local.
# rooms / users : caches optionnels pour les listes.
def booking_read(s: Session, b: Booking, now: datetime = None, rooms: dict = None, users: dict = None) -> BookingRead:
    room = rooms[b.room_id] if rooms and b.room_id in rooms else RoomRepository(s).get(b.room_id)
    user = users[b.user_id] if users and b.user_id in users else UserRepository(s).get(b.user_id)
    return BookingRead(
        id=b.id,
        room_id=b.room_id,
        user_id=b.user_id,
        start_time=to_local(b.start_time),
        end_time=to_local(b.end_time),
        credits_spent=b.credits_spent,
        status=ledger.effective_status(b, now),
        created_at=to_local(b.created_at),
        room=room,
        user=user,
    )


# ------------------------------------------------------------
# GET /v1/rooms - Lister les salles (triées par nom)
# ------------------------------------------------------------
# Une catégorie inconnue est ignorée (toutes les salles).
# ------------------------------------------------------------
@router.get("/v1/rooms", response_model=List[Room])
def list_rooms(category: Optional[str] = None, s: Session = Depends(get_session)):
    if category not in RATE_PER_BLOCK:
        category = None
    return RoomRepository(s).list(category)


# ------------------------------------------------------------
# GET /v1/rooms/availability - Grille de la semaine
# ------------------------------------------------------------
# - date : n'importe quel jour de la semaine voulue (défaut : aujourd'hui)
# - category : focus | conference, sinon toutes les salles
# Les créneaux sont en heure locale.
# ------------------------------------------------------------
@router.get("/v1/rooms/availability")
def availability(
    day: Optional[date] = Query(default=None, alias="date"),
    category: Optional[str] = None,
    s: Session = Depends(get_session),
):
    day = day or to_local(utcnow()).date()
    if category not in RATE_PER_BLOCK:
        category = None
    rooms = RoomRepository(s).list(category)
    first, last = week_window(day)
    active = BookingRepository(s).active_in_window(to_utc(first), to_utc(last), [r.id for r in rooms])
    grid = week_grid(
        rooms, active, day, category,
        slot_minutes=SLOT_MINUTES, start_hour=DAY_START_HOUR, end_hour=DAY_END_HOUR,
        to_store=to_utc,
    )
    return {
        "week": format_week_range(day),
        "category": category,
        "rooms": [r.id for r in rooms],
        "days": {
            d.isoformat(): [
                {
                    "start": slot["start"].isoformat(),
                    "end": slot["end"].isoformat(),
                    "free_rooms": slot["free_rooms"],
                    "fully_booked": slot["fully_booked"],
                }
                for slot in slots
            ]
            for d, slots in grid.items()
        },
    }


# ------------------------------------------------------------
# GET /v1/bookings - Lister les réservations
# ------------------------------------------------------------
# - userId : filtre optionnel
# - status : active (défaut) | cancelled | completed
# - startDate / endDate : réservations comprises dans la fenêtre
# ------------------------------------------------------------
@router.get("/v1/bookings", response_model=List[BookingRead])
def list_bookings(
    userId: Optional[int] = None,
    status: str = ACTIVE,
    startDate: Optional[datetime] = None,
    endDate: Optional[datetime] = None,
    s: Session = Depends(get_session),
):
    if status not in BOOKING_STATUSES:
        raise InvalidInput(f"unknown status {status!r}")
    start = to_utc(startDate) if startDate and endDate else None
    end = to_utc(endDate) if startDate and endDate else None
    now = utcnow()
    rows = BookingRepository(s).list(now, user_id=userId, status=status, start=start, end=end)
    rooms = {r.id: r for r in RoomRepository(s).list()}
    users = {u.id: u for u in UserRepository(s).list()}
    return [booking_read(s, b, now, rooms, users) for b in rows]


@router.get("/v1/bookings/{booking_id}", response_model=BookingRead)
def get_booking(booking_id: int, s: Session = Depends(get_session)):
    b = BookingRepository(s).get(booking_id)
    if not b:
        raise NotFound("Booking not found")
    return booking_read(s, b)


# ------------------------------------------------------------
# POST /v1/bookings - Créer une réservation
# ------------------------------------------------------------
# Le ledger valide, calcule le coût, débite et journalise en une
# transaction ; on publie BookingCreated ensuite.
# ------------------------------------------------------------
@router.post("/v1/bookings", response_model=BookingRead, status_code=201)
def create_booking(body: BookingCreate, s: Session = Depends(get_session)):
    created = ledger.create_booking(s, body.room_id, body.user_id, body.start_time, body.end_time)
    notify("BookingCreated", {
        "bookingId": created.id,
        "roomId": created.room_id,
        "userId": created.user_id,
        "start": to_local(created.start_time).isoformat(),
        "end": to_local(created.end_time).isoformat(),
        "creditsSpent": created.credits_spent,
    })
    return booking_read(s, created)


# ------------------------------------------------------------
# DELETE /v1/bookings/{id} - Annuler une réservation
# ------------------------------------------------------------
@router.delete("/v1/bookings/{booking_id}")
def cancel_booking(booking_id: int, s: Session = Depends(get_session)):
    b = ledger.cancel_booking(s, booking_id)
    notify("BookingCancelled", {
        "bookingId": b.id,
        "roomId": b.room_id,
        "userId": b.user_id,
        "refunded": b.credits_spent,
    })
    return {"success": True}


# ------------------------------------------------------------
# POST /v1/credits/reset - Reset hebdomadaire (admin)
# ------------------------------------------------------------
@router.post("/v1/credits/reset")
def reset_credits(s: Session = Depends(get_session)):
    changed = ledger.reset_all_credits(s)
    notify("CreditsReset", {"updated": changed})
    return {
        "success": True,
        "message": "Credits reset successfully for all users",
        "updated": changed,
    }


@router.get("/v1/users", response_model=List[User])
def list_users(s: Session = Depends(get_session)):
    return UserRepository(s).list()


@router.get("/v1/users/{user_id}", response_model=User)
def get_user(user_id: int, s: Session = Depends(get_session)):
    u = UserRepository(s).get(user_id)
    if not u:
        raise NotFound("User not found")
    return u


# Journal des crédits d'un utilisateur, le plus récent d'abord
@router.get("/v1/users/{user_id}/transactions", response_model=List[CreditTransaction])
def list_transactions(user_id: int, s: Session = Depends(get_session)):
    if not UserRepository(s).get(user_id):
        raise NotFound("User not found")
    return CreditTransactionRepository(s).for_user(user_id)
