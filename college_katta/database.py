from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from college_katta.core import config


connect_args = {"check_same_thread": False} if config.DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(config.DATABASE_URL, connect_args=connect_args)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_submission_schema_checked = False
_chat_schema_checked = False


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def ensure_submission_schema() -> None:
    global _submission_schema_checked

    if _submission_schema_checked:
        return

    with _schema_lock:
        if _submission_schema_checked:
            return

        inspector = inspect(engine)

        if 'submissions' not in inspector.get_table_names():
            _submission_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('submissions')}
        migration_steps = [
            ('owner_hidden', 'ALTER TABLE submissions ADD COLUMN owner_hidden BOOLEAN NOT NULL DEFAULT FALSE'),
            ('view_count', 'ALTER TABLE submissions ADD COLUMN view_count INTEGER NOT NULL DEFAULT 0'),
            ('reviewed_at', 'ALTER TABLE submissions ADD COLUMN reviewed_at TIMESTAMP'),
            ('tags', 'ALTER TABLE submissions ADD COLUMN tags JSON'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_submissions_kind_status_created ON submissions(kind, status, created_at)')
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_submissions_owner_created ON submissions(owner_id, created_at)')
            )

        _submission_schema_checked = True


def ensure_chat_schema() -> None:
    global _chat_schema_checked

    if _chat_schema_checked:
        return

    with _schema_lock:
        if _chat_schema_checked:
            return

        inspector = inspect(engine)

        if 'chat_messages' not in inspector.get_table_names():
            _chat_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('chat_messages')}
        migration_steps = [
            ('attachment_name', 'ALTER TABLE chat_messages ADD COLUMN attachment_name VARCHAR'),
            ('attachment_type', 'ALTER TABLE chat_messages ADD COLUMN attachment_type VARCHAR'),
            ('attachment_content', 'ALTER TABLE chat_messages ADD COLUMN attachment_content TEXT'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_chat_messages_topic_created ON chat_messages(topic, created_at)')
            )

        _chat_schema_checked = True
