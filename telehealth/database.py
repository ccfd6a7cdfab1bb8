from threading import Lock
from uuid import uuid4

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from telehealth.core import config


def _build_engine(database_url: str) -> Engine:
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            echo=config.DATABASE_ECHO,
            connect_args={"check_same_thread": False},
        )

    return create_engine(
        database_url,
        echo=config.DATABASE_ECHO,
        pool_pre_ping=True,
        pool_timeout=config.DB_POOL_TIMEOUT_SECONDS,
    )


engine = _build_engine(config.DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_scheduling_schema_checked = False

ACTIVE_SLOT_INDEX_STATEMENT = (
    'CREATE UNIQUE INDEX IF NOT EXISTS uq_appointments_active_slot '
    'ON appointments(therapist_id, scheduled_at) '
    "WHERE status IN ('PENDING', 'CONFIRMED')"
)


APPOINTMENT_MIGRATION_STEPS = [
    ('session_notes', 'ALTER TABLE appointments ADD COLUMN session_notes VARCHAR'),
    ('cancellation_reason', 'ALTER TABLE appointments ADD COLUMN cancellation_reason VARCHAR'),
    ('confirmed_at', 'ALTER TABLE appointments ADD COLUMN confirmed_at TIMESTAMP'),
    ('completed_at', 'ALTER TABLE appointments ADD COLUMN completed_at TIMESTAMP'),
    ('cancelled_at', 'ALTER TABLE appointments ADD COLUMN cancelled_at TIMESTAMP'),
]

THERAPIST_MIGRATION_STEPS = [
    ('is_online', 'ALTER TABLE therapists ADD COLUMN is_online BOOLEAN NOT NULL DEFAULT FALSE'),
]


def ensure_scheduling_schema(bind: Engine | None = None) -> None:
    """Bring existing ``appointments`` and ``therapists`` tables up to the current column set.

    Tables created by ``create_all`` already match the models; this covers
    databases created before the lifecycle timestamps, the online flag and
    the active-slot index existed. Missing tables are left alone.
    """
    global _scheduling_schema_checked

    target = bind or engine
    use_flag = bind is None

    if use_flag and _scheduling_schema_checked:
        return

    with _schema_lock:
        if use_flag and _scheduling_schema_checked:
            return

        inspector = inspect(target)
        table_names = set(inspector.get_table_names())

        with target.begin() as connection:
            if 'therapists' in table_names:
                therapist_columns = {column['name'] for column in inspector.get_columns('therapists')}
                for column_name, statement in THERAPIST_MIGRATION_STEPS:
                    if column_name not in therapist_columns:
                        connection.execute(text(statement))

            if 'appointments' in table_names:
                appointment_columns = {column['name'] for column in inspector.get_columns('appointments')}
                for column_name, statement in APPOINTMENT_MIGRATION_STEPS:
                    if column_name not in appointment_columns:
                        connection.execute(text(statement))
                connection.execute(text(ACTIVE_SLOT_INDEX_STATEMENT))
                connection.execute(
                    text('CREATE INDEX IF NOT EXISTS idx_appointments_patient_start ON appointments(patient_id, scheduled_at)')
                )
                connection.execute(
                    text('CREATE INDEX IF NOT EXISTS idx_appointments_therapist_start ON appointments(therapist_id, scheduled_at)')
                )

        if use_flag:
            _scheduling_schema_checked = True


def generate_uuid() -> str:
    return str(uuid4())
