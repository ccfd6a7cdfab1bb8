import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from telehealth.core import config
from telehealth.database import Base, engine, ensure_scheduling_schema
from telehealth.models import appointment, availability, review, therapist, user  # noqa: F401
from telehealth.routes import appointment_routes, therapist_routes

logging.basicConfig(level=config.LOG_LEVEL)

app = FastAPI(title='Telehealth Scheduling API')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)


@app.on_event('startup')
def initialize_database() -> None:
    config.validate_runtime_config()
    try:
        Base.metadata.create_all(bind=engine)
        ensure_scheduling_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@app.get('/')
def root():
    return {'status': 'Telehealth Scheduling API Running'}


app.include_router(appointment_routes.router, prefix='/appointments')
app.include_router(therapist_routes.router, prefix='/therapists')
