# ============================================================
# credits.py - Politique de crédits
# ------------------------------------------------------------
# Coût d'une réservation selon la catégorie de salle :
#   - focus      : 1 crédit par tranche de 30 min
#   - conference : 2 crédits par tranche de 30 min
# Toute tranche entamée est due.
# ============================================================
import math

from roomcredits.booking.config import WEEKLY_CREDIT_ALLOTMENT

FOCUS = "focus"
CONFERENCE = "conference"

RATE_PER_BLOCK = {FOCUS: 1, CONFERENCE: 2}
BLOCK_MINUTES = 30

WEEKLY_ALLOTMENT = WEEKLY_CREDIT_ALLOTMENT


def credit_cost(category: str, duration_minutes: int) -> int:
    return math.ceil(duration_minutes / BLOCK_MINUTES) * RATE_PER_BLOCK[category]


# Égalité = suffisant
def has_sufficient_credits(balance: int, cost: int) -> bool:
    return balance >= cost


def format_credits(credits) -> str:
    if credits % 1 == 0:
        return str(int(credits))
    return f"{credits:.1f}"
