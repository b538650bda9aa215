import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from college_katta import database
from college_katta.chat import socket_routes
from college_katta.core import config
from college_katta.database import Base, engine, ensure_chat_schema, ensure_submission_schema
from college_katta.models import chat_message, personal_file, submission, user  # noqa: F401
from college_katta.routes import auth_routes, chat_routes, personal_file_routes, user_routes
from college_katta.routes.submission_routes import build_submission_router
from college_katta.services.admin_seeder import seed_admin_user
from college_katta.services.capabilities import KIND_FILE, KIND_STUDY_MATERIAL

logger = logging.getLogger(__name__)

app = FastAPI(title='College Katta API')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)


@app.on_event('startup')
def initialize_database() -> None:
    config.validate_runtime_config()
    try:
        Base.metadata.create_all(bind=engine)
        ensure_submission_schema()
        ensure_chat_schema()
        with database.SessionLocal() as db:
            seed_admin_user(db)
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = errors[0].get('msg', 'Invalid request') if errors else 'Invalid request'
    # pydantic prefixes messages raised from validators.
    message = message.removeprefix('Value error, ')
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={'detail': message})


@app.get('/')
def root():
    return {'status': 'College Katta API Running'}


@app.get('/api')
def api_root():
    return {'status': 'ok', 'message': 'College Katta API is working'}


app.include_router(auth_routes.router, prefix='/api/auth')
app.include_router(user_routes.router, prefix='/api/users')
app.include_router(build_submission_router(KIND_FILE), prefix='/api/files')
app.include_router(build_submission_router(KIND_STUDY_MATERIAL), prefix='/api/study-materials')
app.include_router(personal_file_routes.router, prefix='/api/personal-files')
app.include_router(chat_routes.router, prefix='/api/chat')
app.include_router(chat_routes.messages_router, prefix='/api/messages')
app.include_router(socket_routes.router)
