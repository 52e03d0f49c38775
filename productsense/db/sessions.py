import logging
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from productsense.core.config import settings

logger = logging.getLogger(__name__)
if not logging.getLogger().handlers:
    logging.basicConfig(level=settings.LOG_LEVEL)

DATABASE_URL = settings.DATABASE_URL
logger.info("Initializing DB session (checking configuration)")
logger.info("DATABASE_URL configured: %s", bool(DATABASE_URL))

if not DATABASE_URL:
    logger.error("DATABASE_URL is not configured. Set the DATABASE_URL env var.")
    raise RuntimeError("DATABASE_URL is not configured. Set the DATABASE_URL env var.")

# SQLite connections are shared between the threadpool and the event loop
connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, pool_pre_ping=True, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
