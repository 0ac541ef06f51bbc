import os
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from dotenv import load_dotenv
import urllib.parse

# Load .env file with explicit UTF-8 encoding
load_dotenv(encoding='utf-8')

DEFAULT_DATABASE_URL = "sqlite:///./wallet_sync.db"

DATABASE_URL = os.getenv("DATABASE_URL")
# Ensure proper encoding by parsing and reconstructing the URL.
# sqlite:/// urls do not survive the round-trip, so only server urls go through it.
if DATABASE_URL and not DATABASE_URL.startswith("sqlite"):
    try:
        parsed = urllib.parse.urlparse(DATABASE_URL)
        DATABASE_URL = urllib.parse.urlunparse(parsed)
    except ValueError:
        DATABASE_URL = DATABASE_URL.encode('utf-8', errors='replace').decode('utf-8')
DATABASE_URL = DATABASE_URL or DEFAULT_DATABASE_URL

connect_args = {}
if DATABASE_URL.startswith("postgres"):
    connect_args = {"options": "-c timezone=utc"}
elif DATABASE_URL.startswith("sqlite"):
    # The retry sweep reads the ledger from its own thread.
    connect_args = {"check_same_thread": False}

engine = create_engine(DATABASE_URL, connect_args=connect_args)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
