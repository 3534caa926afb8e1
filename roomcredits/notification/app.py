# ============================================================
# app.py - Point d'entrée du service Notification
# ------------------------------------------------------------
# Lance le consumer kombu dans un thread au démarrage : chaque
# réservation créée ou annulée et chaque reset hebdomadaire des
# crédits produit un mail simulé. Les derniers sont visibles
# sur GET /v1/notifications.
# ============================================================
import threading

from fastapi import FastAPI

from roomcredits.notification.consumer import RECENT, start_consumer

app = FastAPI(title="Notification Service")


@app.on_event("startup")
def startup():
    threading.Thread(target=start_consumer, daemon=True).start()


# Derniers mails simulés, le plus récent d'abord
@app.get("/v1/notifications")
def recent_notifications(limit: int = 20):
    return list(reversed(RECENT))[:max(limit, 0)]


@app.get("/health")
def health():
    return {"ok": True}
