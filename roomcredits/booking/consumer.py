# ============================================================
# Booking Service - Consumer kombu
# ------------------------------------------------------------
# Écoute l'échange "events" sur la file "booking.reset-requests".
# Un job externe (cron, beat) y publie WeeklyResetRequested ;
# le consumer remet alors tous les soldes à l'allocation
# hebdomadaire puis publie CreditsReset.
# ============================================================
import socket
import time

from kombu import Connection, Queue
from sqlmodel import Session, select

from roomcredits.booking.config import BROKER_URL
from roomcredits.booking.db import engine
from roomcredits.booking.errors import StoreFailure
from roomcredits.booking.ledger import reset_all_credits
from roomcredits.booking.models import ProcessedMessage
from roomcredits.booking.publisher import EVENTS, notify

RESET_QUEUE = Queue("booking.reset-requests", exchange=EVENTS, routing_key="", durable=True)


# ------------------------------------------------------------
# Ici on évite de traiter deux fois le même message
# ------------------------------------------------------------
# On garde en base (table ProcessedMessage) l'ID des messages
# déjà traités, dans le cas où le broker redélivre un message ou si
# plusieurs consommateurs existent.
# ------------------------------------------------------------
def already_processed(s: Session, mid: str) -> bool:
    return s.exec(select(ProcessedMessage).where(ProcessedMessage.message_id == mid)).first() is not None


# Traite un message décodé ; renvoie True si un reset a été appliqué
def handle_event(msg: dict, bind=None) -> bool:
    etype = msg.get("type")
    if etype != "WeeklyResetRequested":
        return False
    payload = msg.get("payload") or {}
    if not isinstance(payload, dict):
        print(f"[consumer] bad payload for {etype}: {payload!r}", flush=True)
        return False
    message_id = msg.get("messageId") or f"{etype}:{payload.get('weekStart', '?')}"
    print(f"[consumer] received {etype} mid={message_id} payload={payload}", flush=True)

    with Session(bind or engine) as s:
        if already_processed(s, message_id):
            print("[consumer] already processed, skipping", flush=True)
            return False
        # marqué dans la même transaction que le reset
        s.add(ProcessedMessage(message_id=message_id))
        changed = reset_all_credits(s)

    notify("CreditsReset", {"updated": changed, "weekStart": payload.get("weekStart")})
    return True


# Callback exécuté à chaque message reçu
def on_message(body, message):
    if not isinstance(body, dict):
        print(f"[consumer] bad payload: {body!r}", flush=True)
        message.ack()
        return
    try:
        handle_event(body)
    except StoreFailure as e:
        # la base est indisponible : on rend le message au broker
        print(f"[consumer] store failure: {e}, requeueing", flush=True)
        message.requeue()
        return
    except Exception as e:
        # message inexploitable : rejeté sans remise en file, le consumer continue
        print(f"[consumer] failed to handle {body.get('type')}: {e!r}, rejecting", flush=True)
        message.reject()
        return
    message.ack()


#  Boucle de connexion + consommation
def start_consumer():
    # petit retry loop pour attendre le broker
    attempt = 0
    while True:
        try:
            print(f"[consumer] connecting to broker at {BROKER_URL}...", flush=True)
            with Connection(BROKER_URL, heartbeat=60) as conn:
                with conn.Consumer(RESET_QUEUE, callbacks=[on_message], accept=["json"]):
                    print(f"[consumer] bound to exchange 'events' queue='{RESET_QUEUE.name}'. waiting for messages...", flush=True)
                    attempt = 0
                    while True:
                        try:
                            conn.drain_events(timeout=10)
                        except socket.timeout:
                            conn.heartbeat_check()
        except Exception as e:
            attempt += 1
            wait = min(5 * attempt, 30)
            print(f"[consumer] connection error: {e}, retrying in {wait}s", flush=True)
            time.sleep(wait)
