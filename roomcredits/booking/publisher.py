# ============================================================
# publisher.py - Émission d'événements (kombu / RabbitMQ)
# ------------------------------------------------------------
# Ce module publie les changements de la table des réservations
# sur l'échange fanout "events" :
#   BookingCreated, BookingCancelled, CreditsReset
# et la demande de reset hebdomadaire (WeeklyResetRequested).
# Les abonnés (UI, notification) s'en servent pour se rafraîchir ;
# la justesse des réservations n'en dépend pas.
# ============================================================
import uuid

from kombu import Connection, Exchange
from kombu.exceptions import KombuError

from roomcredits.booking.config import BROKER_URL, EVENTS_ENABLED

EVENTS = Exchange("events", type="fanout", durable=True)


# Cette méthode publie un message sur l'échange "events" en mode fanout :
#
#   - event_type : nom de l'événement
#   - payload    : contenu du message
#
# Tous les consommateurs liés à l'échange reçoivent le message.
def publish_event(event_type: str, payload: dict, broker_url: str = None) -> dict:
    message = {"type": event_type, "messageId": str(uuid.uuid4()), "payload": payload}
    with Connection(broker_url or BROKER_URL, connect_timeout=5) as conn:
        producer = conn.Producer(serializer="json")
        # declare : crée l'échange s'il n'existe pas déjà
        producer.publish(message, exchange=EVENTS, routing_key="", declare=[EVENTS], retry=True,
                         retry_policy={"max_retries": 2})
    print(f"[event] {event_type} {payload}", flush=True)
    return message


# Variante utilisée par l'API : une panne du broker ne fait jamais
# échouer une réservation déjà validée en base.
def notify(event_type: str, payload: dict) -> None:
    if not EVENTS_ENABLED:
        return
    try:
        publish_event(event_type, payload)
    except (KombuError, OSError) as e:
        print(f"[event] could not publish {event_type}: {e}", flush=True)


# Demande de reset pour la semaine qui commence le dimanche week_start.
# Le messageId est stable : le consumer ignore une seconde demande
# pour la même semaine.
def publish_reset_request(week_start, broker_url: str = None) -> dict:
    message = {
        "type": "WeeklyResetRequested",
        "messageId": f"WeeklyResetRequested:{week_start.isoformat()}",
        "payload": {"weekStart": week_start.isoformat()},
    }
    with Connection(broker_url or BROKER_URL, connect_timeout=5) as conn:
        conn.Producer(serializer="json").publish(
            message, exchange=EVENTS, routing_key="", declare=[EVENTS]
        )
    print(f"[event] WeeklyResetRequested {message['payload']}", flush=True)
    return message
