import logging
from datetime import datetime

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from pydantic import BaseModel, field_validator
from pydantic.alias_generators import to_camel
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query as OrmQuery, Session

from college_katta.auth.dependencies import get_current_user, get_optional_user, require_admin
from college_katta.database import get_db
from college_katta.models.submission import (
    STATUS_APPROVED,
    STATUS_PENDING,
    SUBMISSION_STATUSES,
    Submission,
    submission_bookmarks,
)
from college_katta.models.user import User
from college_katta.routes.common import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    MessageResponse,
    UserSummary,
    database_unavailable,
    normalize_page,
    total_pages,
)
from college_katta.services import bookmarks, moderation, uploads
from college_katta.services.capabilities import SCOPE_PUBLIC, get_capabilities

logger = logging.getLogger(__name__)

SORTABLE_COLUMNS = {
    'created_at': Submission.created_at,
    'title': Submission.title,
    'download_count': Submission.download_count,
    'view_count': Submission.view_count,
}


class CreateSubmissionRequest(BaseModel):
    title: str
    description: str = ''
    branch: str
    year: str
    semester: str = ''
    subject: str
    course_code: str = ''
    tags: list[str] = []
    material_type: str | None = None
    type: str | None = None
    file_content: str
    file_name: str | None = None
    file_type: str | None = None
    file_size: int | float | str | None = None
    file_size_bytes: int | None = None

    @field_validator('title', 'branch', 'year', 'subject')
    @classmethod
    def validate_required_text(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Missing required fields')
        return normalized

    @field_validator('description', 'semester', 'course_code')
    @classmethod
    def strip_optional_text(cls, value: str) -> str:
        return value.strip()

    @field_validator('tags')
    @classmethod
    def normalize_tags(cls, value: list[str]) -> list[str]:
        return [tag.strip() for tag in value if tag and tag.strip()]


class SubmissionResponse(BaseModel):
    id: int
    kind: str
    title: str
    description: str
    branch: str
    year: str
    semester: str
    subject: str
    course_code: str
    tags: list[str]
    material_type: str
    file_name: str
    file_type: str
    file_size: int
    file_path: str
    status: str
    owner: UserSummary
    reviewed_by_id: int | None = None
    reviewed_at: datetime | None = None
    download_count: int
    view_count: int
    is_bookmarked: bool = False
    created_at: datetime
    updated_at: datetime


class SubmissionListResponse(BaseModel):
    count: int
    total: int
    total_pages: int
    current_page: int
    items: list[SubmissionResponse]


class UpdateStatusRequest(BaseModel):
    status: str

    @field_validator('status')
    @classmethod
    def normalize_status(cls, value: str) -> str:
        return value.strip().lower()


class BookmarkResponse(BaseModel):
    success: bool = True
    is_bookmarked: bool
    message: str


class DownloadResponse(BaseModel):
    success: bool = True
    message: str
    download_url: str
    file_content: str
    file_type: str
    file_name: str
    file: SubmissionResponse

    class Config:
        alias_generator = to_camel
        populate_by_name = True


def to_submission_response(submission: Submission, viewer: User | None = None) -> SubmissionResponse:
    return SubmissionResponse(
        id=submission.id,
        kind=submission.kind,
        title=submission.title,
        description=submission.description or '',
        branch=submission.branch,
        year=submission.year,
        semester=submission.semester or '',
        subject=submission.subject,
        course_code=submission.course_code or '',
        tags=list(submission.tags or []),
        material_type=submission.material_type,
        file_name=submission.file_name,
        file_type=submission.file_type,
        file_size=submission.file_size or 0,
        file_path=submission.file_path,
        status=submission.status,
        owner=UserSummary.model_validate(submission.owner),
        reviewed_by_id=submission.reviewed_by_id,
        reviewed_at=submission.reviewed_at,
        download_count=submission.download_count or 0,
        view_count=submission.view_count or 0,
        is_bookmarked=viewer is not None and bookmarks.is_bookmarked(submission, viewer),
        created_at=submission.created_at,
        updated_at=submission.updated_at,
    )


def build_page(
    query: OrmQuery,
    page: int,
    limit: int,
    viewer: User | None,
    order_by=None,
) -> SubmissionListResponse:
    page, limit, offset = normalize_page(page, limit)
    total = query.count()
    ordering = order_by if order_by is not None else (Submission.created_at.desc(), Submission.id.desc())
    items = query.order_by(*ordering).offset(offset).limit(limit).all()
    return SubmissionListResponse(
        count=len(items),
        total=total,
        total_pages=total_pages(total, limit),
        current_page=page,
        items=[to_submission_response(item, viewer) for item in items],
    )


def resolve_ordering(sort_by: str, sort_order: str) -> tuple:
    column = SORTABLE_COLUMNS.get(sort_by, Submission.created_at)
    if sort_order == 'asc':
        return column.asc(), Submission.id.asc()
    return column.desc(), Submission.id.desc()


def get_submission_or_404(kind: str, submission_id: int, db: Session) -> Submission:
    submission = db.query(Submission).filter(
        Submission.id == submission_id,
        Submission.kind == kind,
    ).first()
    if submission is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f'{get_capabilities(kind).label} not found',
        )
    return submission


def can_view(submission: Submission, viewer: User | None) -> bool:
    if moderation.is_publicly_visible(submission):
        return True
    return viewer is not None and (viewer.is_admin or submission.owner_id == viewer.id)


def get_visible_submission(kind: str, submission_id: int, viewer: User | None, db: Session) -> Submission:
    submission = get_submission_or_404(kind, submission_id, db)
    if not can_view(submission, viewer):
        # Unapproved items are indistinguishable from missing ones to outsiders.
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f'{get_capabilities(kind).label} not found',
        )
    return submission


def resolve_file_name(data: CreateSubmissionRequest) -> tuple[str, str | None]:
    """Return ``(file_name, mime_type)`` from the declared name and type."""
    declared_type = (data.file_type or '').strip()
    mime_type = declared_type if '/' in declared_type else None
    if data.file_name and data.file_name.strip():
        return uploads.safe_file_name(data.file_name), mime_type

    extension = declared_type.lstrip('.').lower() if declared_type and not mime_type else 'pdf'
    return f"{'_'.join(data.title.split())}.{extension or 'pdf'}", mime_type


def persist_submission(
    kind: str,
    data: CreateSubmissionRequest,
    payload: bytes,
    file_name: str,
    extension: str,
    current_user: User,
    db: Session,
) -> Submission:
    capabilities = get_capabilities(kind)
    declared_size = uploads.parse_declared_size(data.file_size_bytes) or uploads.parse_declared_size(data.file_size)
    if declared_size is not None and declared_size != len(payload):
        logger.info('Declared size %s differs from decoded size %s for %s', declared_size, len(payload), file_name)

    submission = Submission(
        kind=kind,
        title=data.title,
        description=data.description,
        branch=data.branch,
        year=uploads.format_year(data.year),
        semester=data.semester,
        subject=data.subject,
        course_code=data.course_code,
        tags=data.tags,
        material_type=uploads.normalize_material_type(data.material_type or data.type),
        file_name=file_name,
        file_type=extension,
        file_size=len(payload),
        file_path=f'/uploads/{capabilities.storage_folder}/{uploads.make_storage_name(file_name)}',
        file_content=uploads.encode_base64_payload(payload),
        owner_id=current_user.id,
        status=moderation.initial_status(capabilities.needs_approval),
    )
    db.add(submission)
    db.commit()
    db.refresh(submission)
    logger.info('%s %s uploaded by user %s (%s bytes)', capabilities.label, submission.id, current_user.id, len(payload))
    return submission


def create_submission(kind: str, data: CreateSubmissionRequest, current_user: User, db: Session) -> SubmissionResponse:
    capabilities = get_capabilities(kind)
    file_name, mime_type = resolve_file_name(data)

    try:
        extension = uploads.validate_file_type(file_name, mime_type)
        payload = uploads.decode_base64_payload(data.file_content)
        uploads.validate_file_size(len(payload), capabilities.max_bytes)
    except uploads.UploadValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    try:
        submission = persist_submission(kind, data, payload, file_name, extension, current_user, db)
        return to_submission_response(submission, current_user)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


def create_submission_from_upload(
    kind: str,
    data: CreateSubmissionRequest,
    upload: UploadFile,
    current_user: User,
    db: Session,
) -> SubmissionResponse:
    capabilities = get_capabilities(kind)
    file_name = uploads.safe_file_name(upload.filename or '')

    try:
        extension = uploads.validate_file_type(file_name, upload.content_type)
        payload = upload.file.read(capabilities.max_bytes + 1)
        uploads.validate_file_size(len(payload), capabilities.max_bytes)
    except uploads.UploadValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    try:
        submission = persist_submission(kind, data, payload, file_name, extension, current_user, db)
        return to_submission_response(submission, current_user)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


def list_submissions(
    kind: str,
    db: Session,
    viewer: User | None = None,
    status_filter: str = STATUS_APPROVED,
    branch: str | None = None,
    year: str | None = None,
    subject: str | None = None,
    material_type: str | None = None,
    search: str | None = None,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    sort_by: str = 'created_at',
    sort_order: str = 'desc',
) -> SubmissionListResponse:
    # Only admins may look past the approved listing.
    effective_status = STATUS_APPROVED
    if viewer is not None and viewer.is_admin and status_filter in SUBMISSION_STATUSES:
        effective_status = status_filter

    try:
        query = db.query(Submission).filter(Submission.kind == kind, Submission.status == effective_status)
        if branch:
            query = query.filter(Submission.branch == branch)
        if year:
            query = query.filter(Submission.year == uploads.format_year(year))
        if subject:
            query = query.filter(Submission.subject == subject)
        if material_type:
            query = query.filter(Submission.material_type == material_type)
        if search and search.strip():
            pattern = f'%{search.strip()}%'
            query = query.filter(
                or_(
                    Submission.title.ilike(pattern),
                    Submission.description.ilike(pattern),
                    Submission.subject.ilike(pattern),
                )
            )

        return build_page(query, page, limit, viewer, resolve_ordering(sort_by, sort_order))
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


def list_pending_submissions(kind: str, admin: User, db: Session, page: int = 1, limit: int = DEFAULT_PAGE_SIZE):
    try:
        query = db.query(Submission).filter(Submission.kind == kind, Submission.status == STATUS_PENDING)
        return build_page(query, page, limit, admin, (Submission.created_at.asc(), Submission.id.asc()))
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


def list_my_uploads(
    kind: str,
    current_user: User,
    db: Session,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    sort_order: str = 'desc',
) -> SubmissionListResponse:
    try:
        query = db.query(Submission).filter(
            Submission.kind == kind,
            Submission.owner_id == current_user.id,
            Submission.owner_hidden.is_(False),
        )
        return build_page(query, page, limit, current_user, resolve_ordering('created_at', sort_order))
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


def list_bookmarked(
    kind: str,
    current_user: User,
    db: Session,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    sort_order: str = 'desc',
) -> SubmissionListResponse:
    try:
        query = db.query(Submission).join(
            submission_bookmarks,
            submission_bookmarks.c.submission_id == Submission.id,
        ).filter(
            Submission.kind == kind,
            Submission.status == STATUS_APPROVED,
            submission_bookmarks.c.user_id == current_user.id,
        )
        return build_page(query, page, limit, current_user, resolve_ordering('created_at', sort_order))
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


def get_submission_detail(kind: str, submission_id: int, viewer: User | None, db: Session) -> SubmissionResponse:
    try:
        submission = get_visible_submission(kind, submission_id, viewer, db)
        submission.view_count = (submission.view_count or 0) + 1
        db.commit()
        db.refresh(submission)
        return to_submission_response(submission, viewer)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


def download_submission(kind: str, submission_id: int, current_user: User, db: Session) -> DownloadResponse:
    try:
        submission = get_submission_or_404(kind, submission_id, db)
        if not can_view(submission, current_user):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='This file cannot be downloaded')
        if not submission.file_content:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='File content not found')

        submission.download_count = (submission.download_count or 0) + 1
        db.commit()
        db.refresh(submission)
        logger.info('%s %s downloaded by user %s', submission.kind, submission.id, current_user.id)

        return DownloadResponse(
            message='File download initiated',
            download_url=submission.file_path,
            file_content=submission.file_content,
            file_type=submission.file_type,
            file_name=submission.file_name,
            file=to_submission_response(submission, current_user),
        )
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


def update_submission_status(
    kind: str,
    submission_id: int,
    data: UpdateStatusRequest,
    admin: User,
    db: Session,
) -> SubmissionResponse:
    try:
        submission = get_submission_or_404(kind, submission_id, db)
        try:
            moderation.apply_decision(db, submission, data.status, admin)
        except moderation.InvalidStatusError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
        except moderation.ModerationPermissionError as exc:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
        except moderation.TransitionNotAllowedError as exc:
            db.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc

        db.commit()
        db.refresh(submission)
        logger.info('%s %s marked %s by admin %s', submission.kind, submission.id, submission.status, admin.id)
        return to_submission_response(submission, admin)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


def change_bookmark(
    kind: str,
    submission_id: int,
    current_user: User,
    db: Session,
    bookmarked: bool | None = None,
) -> BookmarkResponse:
    """Toggle when ``bookmarked`` is None, otherwise set membership to it."""
    try:
        submission = get_visible_submission(kind, submission_id, current_user, db)
        if bookmarked is None:
            is_bookmarked = bookmarks.toggle_bookmark(db, submission, current_user)
        else:
            is_bookmarked = bookmarks.set_bookmark(db, submission, current_user, bookmarked)
        return BookmarkResponse(
            is_bookmarked=is_bookmarked,
            message='Bookmark added' if is_bookmarked else 'Bookmark removed',
        )
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


def delete_submission(kind: str, submission_id: int, current_user: User, db: Session) -> MessageResponse:
    try:
        submission = get_submission_or_404(kind, submission_id, db)
        try:
            outcome = moderation.resolve_deletion(submission, current_user)
        except moderation.ModerationPermissionError as exc:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

        if outcome == moderation.HIDE_FROM_OWNER:
            submission.owner_hidden = True
            db.commit()
            return MessageResponse(message='Removed from your uploads')

        db.delete(submission)
        db.commit()
        logger.info('%s %s deleted by user %s', kind, submission_id, current_user.id)
        return MessageResponse(message=f'{get_capabilities(kind).label} deleted successfully')
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


def build_submission_router(kind: str) -> APIRouter:
    """Create the REST surface for one public collection."""
    capabilities = get_capabilities(kind)
    if capabilities.owner_scope != SCOPE_PUBLIC:
        raise ValueError(f'{capabilities.label} is not a public collection')
    router = APIRouter(tags=[capabilities.kind])

    @router.post('', response_model=SubmissionResponse, status_code=status.HTTP_201_CREATED)
    def upload(
        data: CreateSubmissionRequest,
        current_user: User = Depends(get_current_user),
        db: Session = Depends(get_db),
    ):
        return create_submission(kind, data, current_user, db)

    @router.post('/upload', response_model=SubmissionResponse, status_code=status.HTTP_201_CREATED)
    def upload_multipart(
        file: UploadFile = File(...),
        title: str = Form(...),
        branch: str = Form(...),
        year: str = Form(...),
        subject: str = Form(...),
        description: str = Form(default=''),
        semester: str = Form(default=''),
        course_code: str = Form(default=''),
        material_type: str | None = Form(default=None),
        current_user: User = Depends(get_current_user),
        db: Session = Depends(get_db),
    ):
        try:
            data = CreateSubmissionRequest(
                title=title,
                branch=branch,
                year=year,
                subject=subject,
                description=description,
                semester=semester,
                course_code=course_code,
                material_type=material_type,
                file_content='',
                file_name=file.filename,
                file_type=file.content_type,
            )
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Missing required fields') from exc
        return create_submission_from_upload(kind, data, file, current_user, db)

    @router.get('', response_model=SubmissionListResponse)
    def list_public(
        status_filter: str = Query(default=STATUS_APPROVED, alias='status'),
        branch: str | None = Query(default=None),
        year: str | None = Query(default=None),
        subject: str | None = Query(default=None),
        material_type: str | None = Query(default=None, alias='type'),
        search: str | None = Query(default=None),
        page: int = Query(default=1, ge=1),
        limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
        sort_by: str = Query(default='created_at'),
        sort_order: str = Query(default='desc'),
        viewer: User | None = Depends(get_optional_user),
        db: Session = Depends(get_db),
    ):
        return list_submissions(
            kind,
            db,
            viewer=viewer,
            status_filter=status_filter,
            branch=branch,
            year=year,
            subject=subject,
            material_type=material_type,
            search=search,
            page=page,
            limit=limit,
            sort_by=sort_by,
            sort_order=sort_order,
        )

    @router.get('/pending', response_model=SubmissionListResponse)
    def list_pending(
        page: int = Query(default=1, ge=1),
        limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
        admin: User = Depends(require_admin),
        db: Session = Depends(get_db),
    ):
        return list_pending_submissions(kind, admin, db, page=page, limit=limit)

    @router.get('/my-uploads', response_model=SubmissionListResponse)
    def my_uploads(
        page: int = Query(default=1, ge=1),
        limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
        sort_order: str = Query(default='desc'),
        current_user: User = Depends(get_current_user),
        db: Session = Depends(get_db),
    ):
        return list_my_uploads(kind, current_user, db, page=page, limit=limit, sort_order=sort_order)

    @router.get('/bookmarks', response_model=SubmissionListResponse)
    def my_bookmarks(
        page: int = Query(default=1, ge=1),
        limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
        sort_order: str = Query(default='desc'),
        current_user: User = Depends(get_current_user),
        db: Session = Depends(get_db),
    ):
        return list_bookmarked(kind, current_user, db, page=page, limit=limit, sort_order=sort_order)

    @router.post('/{submission_id}/bookmark', response_model=BookmarkResponse)
    def toggle_bookmark(
        submission_id: int,
        current_user: User = Depends(get_current_user),
        db: Session = Depends(get_db),
    ):
        return change_bookmark(kind, submission_id, current_user, db)

    @router.put('/{submission_id}/bookmark', response_model=BookmarkResponse)
    def add_bookmark(
        submission_id: int,
        current_user: User = Depends(get_current_user),
        db: Session = Depends(get_db),
    ):
        return change_bookmark(kind, submission_id, current_user, db, bookmarked=True)

    @router.delete('/{submission_id}/bookmark', response_model=BookmarkResponse)
    def remove_bookmark(
        submission_id: int,
        current_user: User = Depends(get_current_user),
        db: Session = Depends(get_db),
    ):
        return change_bookmark(kind, submission_id, current_user, db, bookmarked=False)

    @router.get('/{submission_id}/download', response_model=DownloadResponse)
    def download(
        submission_id: int,
        current_user: User = Depends(get_current_user),
        db: Session = Depends(get_db),
    ):
        return download_submission(kind, submission_id, current_user, db)

    @router.patch('/{submission_id}/status', response_model=SubmissionResponse)
    def update_status(
        submission_id: int,
        data: UpdateStatusRequest,
        admin: User = Depends(require_admin),
        db: Session = Depends(get_db),
    ):
        return update_submission_status(kind, submission_id, data, admin, db)

    @router.get('/{submission_id}', response_model=SubmissionResponse)
    def detail(
        submission_id: int,
        viewer: User | None = Depends(get_optional_user),
        db: Session = Depends(get_db),
    ):
        return get_submission_detail(kind, submission_id, viewer, db)

    @router.delete('/{submission_id}', response_model=MessageResponse)
    def delete(
        submission_id: int,
        current_user: User = Depends(get_current_user),
        db: Session = Depends(get_db),
    ):
        return delete_submission(kind, submission_id, current_user, db)

    return router
