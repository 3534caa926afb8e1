# ============================================================
# repository.py - Accès aux données
# ------------------------------------------------------------
# Ce module implémente le design pattern "Repository" pour les
# tables du service. Il isole l'accès aux données du ledger et
# de l'API. Les repositories ne font jamais de commit : c'est
# l'opération du ledger qui décide de la transaction.
# ============================================================
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import update
from sqlmodel import Session, select

from roomcredits.booking.models import (
    ACTIVE,
    CANCELLED,
    COMPLETED,
    Booking,
    CreditTransaction,
    Room,
    User,
)


class RoomRepository:
    def __init__(self, session: Session):
        self.session = session

    # for_update : verrou de ligne (SELECT ... FOR UPDATE) jusqu'au commit
    def get(self, room_id: int, for_update: bool = False) -> Optional[Room]:
        q = select(Room).where(Room.id == room_id)
        if for_update:
            q = q.with_for_update()
        return self.session.exec(q).first()

    def list(self, category: Optional[str] = None) -> List[Room]:
        q = select(Room)
        if category:
            q = q.where(Room.category == category)
        return list(self.session.exec(q.order_by(Room.name)).all())


class UserRepository:
    def __init__(self, session: Session):
        self.session = session

    def get(self, user_id: int) -> Optional[User]:
        return self.session.exec(select(User).where(User.id == user_id)).first()

    def list(self) -> List[User]:
        return list(self.session.exec(select(User).order_by(User.name)).all())

    def list_for_update(self) -> List[User]:
        q = select(User).order_by(User.id).with_for_update().execution_options(populate_existing=True)
        return list(self.session.exec(q).all())

    # Débit gardé en une seule requête : jamais de solde négatif,
    # même si deux réservations du même utilisateur arrivent en même temps.
    def debit(self, user_id: int, amount: int) -> bool:
        result = self.session.exec(
            update(User)
            .where(User.id == user_id, User.current_credits >= amount)
            .values(current_credits=User.current_credits - amount),
            execution_options={"synchronize_session": False},
        )
        return result.rowcount == 1

    def credit(self, user_id: int, amount: int) -> None:
        self.session.exec(
            update(User)
            .where(User.id == user_id)
            .values(current_credits=User.current_credits + amount),
            execution_options={"synchronize_session": False},
        )


# BookingRepository
# Requêtes de chevauchement et de listing sur la table Booking.
class BookingRepository:
    def __init__(self, session: Session):
        self.session = session

    def add(self, b: Booking) -> Booking:
        self.session.add(b)
        self.session.flush()
        return b

    def get(self, booking_id: int) -> Optional[Booking]:
        return self.session.exec(select(Booking).where(Booking.id == booking_id)).first()

    # Réservations actives de la salle qui chevauchent [start, end)
    def overlapping(self, room_id: int, start: datetime, end: datetime) -> List[Booking]:
        q = select(Booking).where(
            Booking.room_id == room_id,
            Booking.status == ACTIVE,
            Booking.start_time < end,
            Booking.end_time > start,
        )
        return list(self.session.exec(q).all())

    # Réservations actives qui touchent la fenêtre (pour la grille de disponibilité)
    def active_in_window(
        self, start: datetime, end: datetime, room_ids: Optional[Iterable[int]] = None
    ) -> List[Booking]:
        q = select(Booking).where(
            Booking.status == ACTIVE,
            Booking.start_time < end,
            Booking.end_time > start,
        )
        if room_ids is not None:
            q = q.where(Booking.room_id.in_(list(room_ids)))
        return list(self.session.exec(q.order_by(Booking.room_id, Booking.start_time)).all())

    def list(
        self,
        now: datetime,
        user_id: Optional[int] = None,
        status: str = ACTIVE,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[Booking]:
        # active / completed / cancelled partitionnent les réservations :
        # une réservation active dont la fin est passée est "completed"
        q = select(Booking)
        if status == COMPLETED:
            q = q.where(Booking.status == ACTIVE, Booking.end_time < now)
        elif status == ACTIVE:
            q = q.where(Booking.status == ACTIVE, Booking.end_time >= now)
        else:
            q = q.where(Booking.status == status)
        if user_id is not None:
            q = q.where(Booking.user_id == user_id)
        if start is not None and end is not None:
            q = q.where(Booking.start_time >= start, Booking.end_time <= end)
        return list(self.session.exec(q.order_by(Booking.start_time)).all())

    # Transition gardée active → cancelled : 0 ligne si déjà annulée
    def mark_cancelled(self, booking_id: int) -> bool:
        result = self.session.exec(
            update(Booking)
            .where(Booking.id == booking_id, Booking.status == ACTIVE)
            .values(status=CANCELLED),
            execution_options={"synchronize_session": False},
        )
        return result.rowcount == 1


class CreditTransactionRepository:
    def __init__(self, session: Session):
        self.session = session

    def append(self, user_id: int, amount: int, reason: str, booking_id: Optional[int] = None):
        tx = CreditTransaction(user_id=user_id, amount=amount, reason=reason, booking_id=booking_id)
        self.session.add(tx)
        return tx

    def for_user(self, user_id: int) -> List[CreditTransaction]:
        q = (
            select(CreditTransaction)
            .where(CreditTransaction.user_id == user_id)
            .order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc())
        )
        return list(self.session.exec(q).all())
