import base64
import os

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite://')

from college_katta import database  # noqa: E402
from college_katta.auth import passwords  # noqa: E402
from college_katta.core import config  # noqa: E402
from college_katta.database import Base  # noqa: E402
from college_katta.models import Submission, User  # noqa: E402
from college_katta.models.user import ROLE_ADMIN, ROLE_USER, STATUS_ACTIVE  # noqa: E402

PDF_BYTES = b'%PDF-1.4 sample document body'


def encode(data: bytes) -> str:
    return base64.b64encode(data).decode('ascii')


@pytest.fixture
def session_factory(monkeypatch: pytest.MonkeyPatch):
    # One shared connection so worker threads see the same in-memory database.
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    monkeypatch.setattr(database, 'SessionLocal', testing_session_local)
    try:
        yield testing_session_local
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def upload_root(tmp_path, monkeypatch: pytest.MonkeyPatch):
    root = tmp_path / 'uploads'
    monkeypatch.setattr(config, 'UPLOAD_ROOT', str(root))
    return root


@pytest.fixture
def make_user(db):
    def _make_user(username: str, role: str = ROLE_USER, status: str = STATUS_ACTIVE, password: str = 'secret123') -> User:
        user = User(
            username=username,
            email=f'{username}@example.edu',
            hashed_password=passwords.hash_password(password),
            full_name=username.title(),
            branch='Computer Science',
            year='Second Year',
            role=role,
            status=status,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def student(make_user) -> User:
    return make_user('student')


@pytest.fixture
def classmate(make_user) -> User:
    return make_user('classmate')


@pytest.fixture
def admin(make_user) -> User:
    return make_user('admin', role=ROLE_ADMIN)


@pytest.fixture
def make_submission(db):
    def _make_submission(owner: User, kind: str = 'file', status: str = 'approved', title: str = 'Data Structures Notes') -> Submission:
        submission = Submission(
            kind=kind,
            title=title,
            description='',
            branch='Computer Science',
            year='Second Year',
            semester='3',
            subject='DSA',
            course_code='CS201',
            tags=[],
            material_type='Notes',
            file_name='notes.pdf',
            file_type='pdf',
            file_size=len(PDF_BYTES),
            file_path='/uploads/files/notes.pdf',
            file_content=encode(PDF_BYTES),
            owner_id=owner.id,
            status=status,
        )
        db.add(submission)
        db.commit()
        db.refresh(submission)
        return submission

    return _make_submission
