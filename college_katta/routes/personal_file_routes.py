import logging
from datetime import datetime

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from college_katta.auth.dependencies import get_current_user
from college_katta.database import get_db
from college_katta.models.user import User
from college_katta.routes.common import MessageResponse, database_unavailable, parse_object_id
from college_katta.services import personal_storage

logger = logging.getLogger(__name__)

router = APIRouter(tags=['personal-files'])


class FolderResponse(BaseModel):
    id: int
    name: str
    parent_id: int | None = None
    created_at: datetime

    class Config:
        from_attributes = True


class PersonalFileResponse(BaseModel):
    id: int
    name: str
    title: str
    subject: str
    description: str
    material_type: str
    file_type: str
    size: int
    downloads: int
    folder_id: int | None = None
    created_at: datetime

    class Config:
        from_attributes = True


class Breadcrumb(BaseModel):
    id: int | str
    name: str


class FolderListingResponse(BaseModel):
    success: bool = True
    current_folder: int | None = None
    breadcrumbs: list[Breadcrumb]
    folders: list[FolderResponse]
    files: list[PersonalFileResponse]


class CreateFolderRequest(BaseModel):
    name: str
    parent_folder: int | str | None = None


class FolderCreatedResponse(BaseModel):
    success: bool = True
    message: str
    folder: FolderResponse


class UploadResultResponse(BaseModel):
    success: bool
    message: str
    files: list[PersonalFileResponse] = []
    errors: list[dict] = []


class DeleteItemsRequest(BaseModel):
    file_ids: list[int] = []
    folder_ids: list[int] = []


class RenameItemRequest(BaseModel):
    name: str
    is_folder: bool = False


class MoveItemsRequest(BaseModel):
    file_ids: list[int] = []
    folder_ids: list[int] = []
    destination_folder_id: int | str | None = None


def storage_http_error(exc: personal_storage.PersonalStorageError) -> HTTPException:
    if isinstance(exc, personal_storage.ItemNotFoundError):
        status_code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, personal_storage.NameConflictError):
        status_code = status.HTTP_409_CONFLICT
    else:
        status_code = status.HTTP_400_BAD_REQUEST
    return HTTPException(status_code=status_code, detail=str(exc))


def list_folder_contents(folder_id: str | None, current_user: User, db: Session) -> FolderListingResponse:
    parsed_id = parse_object_id(folder_id, 'folder')
    try:
        folders, files, breadcrumbs = personal_storage.list_folder(db, current_user.id, parsed_id)
    except personal_storage.PersonalStorageError as exc:
        raise storage_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    return FolderListingResponse(
        current_folder=parsed_id,
        breadcrumbs=[Breadcrumb(**crumb) for crumb in breadcrumbs],
        folders=[FolderResponse.model_validate(folder) for folder in folders],
        files=[PersonalFileResponse.model_validate(item) for item in files],
    )


def upload_to_folder(
    folder_id: str | None,
    files: list[UploadFile],
    metadata: personal_storage.UploadMetadata,
    current_user: User,
    db: Session,
) -> JSONResponse:
    parsed_id = parse_object_id(folder_id, 'folder')
    incoming = [
        personal_storage.IncomingFile(name=item.filename or '', content_type=item.content_type, stream=item.file)
        for item in files
    ]

    try:
        outcome = personal_storage.store_files(db, current_user.id, parsed_id, incoming, metadata)
    except personal_storage.PersonalStorageError as exc:
        raise storage_http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    stored = [PersonalFileResponse.model_validate(item) for item in outcome.stored]
    if not stored:
        status_code = status.HTTP_400_BAD_REQUEST
        body = UploadResultResponse(success=False, message='No files were uploaded', errors=outcome.errors)
    elif outcome.errors:
        status_code = status.HTTP_207_MULTI_STATUS
        body = UploadResultResponse(
            success=True,
            message=f'{len(stored)} of {len(incoming)} files uploaded successfully',
            files=stored,
            errors=outcome.errors,
        )
    else:
        status_code = status.HTTP_201_CREATED
        body = UploadResultResponse(success=True, message=f'{len(stored)} file(s) uploaded successfully', files=stored)

    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


@router.get('/list', response_model=FolderListingResponse)
def list_root(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return list_folder_contents(None, current_user, db)


@router.get('/list/{folder_id}', response_model=FolderListingResponse)
def list_folder(folder_id: str, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return list_folder_contents(folder_id, current_user, db)


@router.post('/folders', response_model=FolderCreatedResponse, status_code=status.HTTP_201_CREATED)
def create_folder(
    data: CreateFolderRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    parent_id = parse_object_id(data.parent_folder, 'folder')
    try:
        folder = personal_storage.create_folder(db, current_user.id, data.name, parent_id)
    except personal_storage.PersonalStorageError as exc:
        raise storage_http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    return FolderCreatedResponse(message='Folder created successfully', folder=FolderResponse.model_validate(folder))


@router.post('/upload', response_model=UploadResultResponse, status_code=status.HTTP_201_CREATED)
def upload_root(
    files: list[UploadFile] = File(...),
    title: str | None = Form(default=None),
    subject: str | None = Form(default=None),
    description: str | None = Form(default=None),
    material_type: str | None = Form(default=None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    metadata = personal_storage.UploadMetadata(title, subject, description, material_type)
    return upload_to_folder(None, files, metadata, current_user, db)


@router.post('/upload/{folder_id}', response_model=UploadResultResponse, status_code=status.HTTP_201_CREATED)
def upload_folder(
    folder_id: str,
    files: list[UploadFile] = File(...),
    title: str | None = Form(default=None),
    subject: str | None = Form(default=None),
    description: str | None = Form(default=None),
    material_type: str | None = Form(default=None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    metadata = personal_storage.UploadMetadata(title, subject, description, material_type)
    return upload_to_folder(folder_id, files, metadata, current_user, db)


@router.get('/download/{file_id}')
def download_file(file_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    try:
        personal_file = personal_storage.open_for_download(db, current_user.id, file_id)
    except personal_storage.PersonalStorageError as exc:
        raise storage_http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    return FileResponse(personal_file.file_path, media_type=personal_file.file_type, filename=personal_file.name)


@router.delete('/delete', response_model=MessageResponse)
def delete_items(
    data: DeleteItemsRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        removed = personal_storage.delete_items(db, current_user.id, data.file_ids, data.folder_ids)
    except personal_storage.PersonalStorageError as exc:
        raise storage_http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    logger.info('User %s deleted %s personal items', current_user.id, removed)
    return MessageResponse(message='Items deleted successfully')


@router.put('/rename/{item_id}', response_model=MessageResponse)
def rename_item(
    item_id: int,
    data: RenameItemRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        personal_storage.rename_item(db, current_user.id, item_id, data.name, data.is_folder)
    except personal_storage.PersonalStorageError as exc:
        raise storage_http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    label = 'Folder' if data.is_folder else 'File'
    return MessageResponse(message=f'{label} renamed successfully')


@router.put('/move', response_model=MessageResponse)
def move_items(
    data: MoveItemsRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    destination_id = parse_object_id(data.destination_folder_id, 'destination folder')
    try:
        personal_storage.move_items(db, current_user.id, data.file_ids, data.folder_ids, destination_id)
    except personal_storage.PersonalStorageError as exc:
        db.rollback()
        raise storage_http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    return MessageResponse(message='Items moved successfully')
