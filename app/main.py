import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from app.db import engine, Base, SessionLocal
from app.config import WalletSettings
from app.services.wallet_core import build_wallet_core

from app.models.customer import Customer
from app.models.loyalty_card import LoyaltyCard
from app.models.customer_loyalty_card import CustomerLoyaltyCard
from app.models.stamp_transaction import StampTransaction
from app.models.privacy_audit_log import PrivacyAuditLog

from app.routes.enroll import router as enroll_router
from app.routes.stamps import router as stamps_router
from app.routes.wallet import router as wallet_router
from app.routes.lgpd import router as lgpd_router

logging.basicConfig(
    level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Wallet Sync")

# ─── CORS ─────────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "https://localhost:3000",
        "http://127.0.0.1:3000",
        "https://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def startup():
    Base.metadata.create_all(bind=engine)
    if getattr(app.state, "wallet_core", None) is None:
        app.state.wallet_core = build_wallet_core(WalletSettings.from_env(), SessionLocal)
    logger.info("wallet core ready", extra={"provider": app.state.wallet_core.settings.provider})


@app.on_event("shutdown")
def shutdown():
    core = getattr(app.state, "wallet_core", None)
    if core is not None:
        core.shutdown()


app.include_router(enroll_router)
app.include_router(stamps_router)
app.include_router(wallet_router)
app.include_router(lgpd_router)


@app.get("/")
def read_root():
    return {"message": "Wallet Sync is running"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="127.0.0.1", port=8001, reload=True)
