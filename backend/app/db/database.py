from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, declarative_base
import logging, os

DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///./emails.db')
engine = create_engine(DATABASE_URL, connect_args={"check_same_thread": False} if DATABASE_URL.startswith('sqlite') else {})
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

if DATABASE_URL.startswith('sqlite'):
    @event.listens_for(engine, "connect")
    def _sqlite_foreign_keys(dbapi_conn, _record):  # cascades are off by default in sqlite
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

def ensure_schema():  # simple additive migrations for sqlite
    from ..models import user_model, category_model, email_model  # noqa: F401
    Base.metadata.create_all(bind=engine)
    if not DATABASE_URL.startswith('sqlite'):
        return
    with engine.connect() as conn:
        cols = {row[1] for row in conn.exec_driver_sql("PRAGMA table_info('emails')").fetchall()}
        alter_needed = []
        if 'clean_text' not in cols:
            alter_needed.append("ALTER TABLE emails ADD COLUMN clean_text TEXT")
        if 'category_confidence' not in cols:
            alter_needed.append("ALTER TABLE emails ADD COLUMN category_confidence FLOAT DEFAULT 0")
        for stmt in alter_needed:
            try:
                conn.exec_driver_sql(stmt)
            except Exception as e:
                logging.getLogger(__name__).warning("schema_migration_failed", exc_info=e, extra={"step": stmt})
        conn.commit()

ensure_schema()

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
