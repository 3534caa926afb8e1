# ============================================================
# app.py - Point d'entrée du service Booking
# ------------------------------------------------------------
# Ce module initialise l'application FastAPI du service Booking :
#   - Crée les tables dans la base de données PostgreSQL
#   - Démarre un thread consommateur (reset hebdomadaire)
#   - Monte les routes API et le rendu des erreurs métier
# ============================================================
import threading

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from roomcredits.booking.api import router
from roomcredits.booking.config import EVENTS_ENABLED
from roomcredits.booking.consumer import start_consumer
from roomcredits.booking.db import init_db
from roomcredits.booking.errors import BookingError

app = FastAPI(title="Booking Service")


# Exécuté automatiquement par FastAPI au lancement du conteneur.
# 1. Crée les tables SQL.
# 2. Lance un thread secondaire pour écouter le broker sans bloquer l'API.
@app.on_event("startup")
def start():
    init_db()
    if EVENTS_ENABLED:
        threading.Thread(target=start_consumer, daemon=True).start()


# Toute erreur métier devient {"error": "..."} avec son code HTTP
@app.exception_handler(BookingError)
async def booking_error(request: Request, exc: BookingError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


# Corps ou paramètres illisibles (date invalide, type faux) :
# même contrat que InvalidInput, 400 {"error": "..."}
@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError):
    fields = sorted({str(err["loc"][-1]) for err in exc.errors() if err.get("loc")})
    message = "Invalid input" + (f": {', '.join(fields)}" if fields else "")
    return JSONResponse(status_code=400, content={"error": message})


@app.get("/health")
def health():
    return {"ok": True}


# Inclusion des routes principales REST (API Booking)
app.include_router(router)
