from fastapi import FastAPI

from braincoach.api.auth import router as auth_router
from braincoach.api.chat import router as chat_router
from braincoach.api.checkin import router as checkin_router
from braincoach.api.profile import router as profile_router
from braincoach.api.support import router as support_router
from braincoach.db.session import create_tables

app = FastAPI(title="Brain Coach API")


@app.on_event("startup")
def on_startup() -> None:
    create_tables()


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/api")
def api_root() -> dict[str, str]:
    return {"service": "Brain Coach API", "status": "ok"}


app.include_router(auth_router)
app.include_router(checkin_router)
app.include_router(chat_router)
app.include_router(profile_router)
app.include_router(support_router)
