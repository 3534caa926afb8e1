# ============================================================
# errors.py - Erreurs métier du service Booking
# ------------------------------------------------------------
# Chaque erreur porte le code HTTP sous lequel l'API la renvoie.
# Le ledger les lève, l'API les convertit en {"error": "..."}.
# ============================================================


class BookingError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidInput(BookingError):
    status_code = 400


class MissingFields(InvalidInput):
    pass


class InvalidInterval(InvalidInput):
    pass


class NotFound(BookingError):
    status_code = 404


class InsufficientCredits(BookingError):
    status_code = 400


class RoomConflict(BookingError):
    status_code = 409


class AlreadyCancelled(BookingError):
    status_code = 409


class AlreadyCompleted(BookingError):
    status_code = 409


# Échec du store (commit, contrainte, connexion)
class StoreFailure(BookingError):
    status_code = 500
