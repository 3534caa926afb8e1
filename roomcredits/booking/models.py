# ============================================================
# models.py - Modèles de données SQLModel (Booking Service)
# ------------------------------------------------------------
# Définit les tables de la base PostgreSQL :
#   1. User : utilisateur et son solde de crédits
#   2. Room : salle réservable (focus | conference)
#   3. Booking : réservation d'une salle sur [start_time, end_time)
#   4. CreditTransaction : journal des débits / crédits (append-only)
#   5. ProcessedMessage : trace les messages du broker déjà traités
# Et les modèles d'entrée / sortie de l'API.
# ============================================================
from datetime import datetime
from typing import Optional

from sqlalchemy import DDL, CheckConstraint, DateTime, Index, event
from sqlmodel import Field, SQLModel

from roomcredits.booking.credits import WEEKLY_ALLOTMENT
from roomcredits.booking.timeutils import utcnow

ACTIVE = "active"
CANCELLED = "cancelled"
COMPLETED = "completed"
BOOKING_STATUSES = (ACTIVE, CANCELLED, COMPLETED)

ROOM_OVERLAP_CONSTRAINT = "ex_bookings_room_overlap"

# Toutes les dates sont stockées en UTC naïf (voir timeutils.to_utc) :
# colonnes DateTime sans fuseau, déclarées explicitement avec sa_type.


class User(SQLModel, table=True):
    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("current_credits >= 0", name="ck_users_credits_non_negative"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    email: str
    # pas de plafond ici : seul le reset hebdo remet à WEEKLY_ALLOTMENT
    current_credits: int = WEEKLY_ALLOTMENT
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)


class Room(SQLModel, table=True):
    __tablename__ = "rooms"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    capacity: int
    category: str  # focus | conference
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)


# ------------------------------------------------------------
# Booking
# ------------------------------------------------------------
# Cycle de vie : active → cancelled (via annulation uniquement).
# "completed" n'est jamais stocké : c'est une réservation active
# dont end_time est passé (voir ledger.effective_status).
# credits_spent est figé à la création.
# ------------------------------------------------------------
class Booking(SQLModel, table=True):
    __tablename__ = "bookings"
    __table_args__ = (
        CheckConstraint("end_time > start_time", name="ck_bookings_interval"),
        CheckConstraint("credits_spent >= 0", name="ck_bookings_credits_spent"),
        Index("ix_bookings_room_window", "room_id", "start_time", "end_time"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    room_id: int = Field(foreign_key="rooms.id")
    user_id: int = Field(foreign_key="users.id", index=True)
    start_time: datetime = Field(sa_type=DateTime)
    end_time: datetime = Field(sa_type=DateTime)
    credits_spent: int = 0
    status: str = Field(default=ACTIVE, index=True)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)


class CreditTransaction(SQLModel, table=True):
    __tablename__ = "credit_transactions"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", index=True)
    amount: int  # négatif = débit, positif = crédit
    reason: str
    booking_id: Optional[int] = Field(default=None, foreign_key="bookings.id")
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)


class ProcessedMessage(SQLModel, table=True):
    __tablename__ = "processed_messages"

    id: Optional[int] = Field(default=None, primary_key=True)
    message_id: str = Field(index=True, unique=True)
    processed_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)


# Sur PostgreSQL, la base refuse elle-même deux réservations actives
# qui se chevauchent sur la même salle (contrainte d'exclusion).
event.listen(
    Booking.__table__,
    "after_create",
    DDL("CREATE EXTENSION IF NOT EXISTS btree_gist").execute_if(dialect="postgresql"),
)
event.listen(
    Booking.__table__,
    "after_create",
    DDL(
        f"ALTER TABLE bookings ADD CONSTRAINT {ROOM_OVERLAP_CONSTRAINT} "
        "EXCLUDE USING gist (room_id WITH =, tsrange(start_time, end_time, '[)') WITH &&) "
        "WHERE (status = 'active')"
    ).execute_if(dialect="postgresql"),
)


# ------------------------------------------------------------
# Modèles de l'API (pas des tables)
# ------------------------------------------------------------
# Tous les champs sont optionnels pour renvoyer un 400 "Missing
# required fields" plutôt qu'un 422 de validation.
class BookingCreate(SQLModel):
    room_id: Optional[int] = None
    user_id: Optional[int] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None


# Réservation jointe avec sa salle et son utilisateur,
# dates en timezone locale et statut effectif
class BookingRead(SQLModel):
    id: int
    room_id: int
    user_id: int
    start_time: datetime
    end_time: datetime
    credits_spent: int
    status: str
    created_at: datetime
    room: Optional[Room] = None
    user: Optional[User] = None
