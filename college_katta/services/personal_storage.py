"""Private per-user file tree stored on disk.

Files live under ``<UPLOAD_ROOT>/personal-files/<user_id>/<uuid>-<name>``;
folders exist only in the database. Nothing here is moderated and nothing is
visible to anyone but the owner.
"""
import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from college_katta.core import config
from college_katta.models.personal_file import PERSONAL_MATERIAL_TYPES, PersonalFile, PersonalFolder
from college_katta.services import uploads
from college_katta.services.capabilities import KIND_PERSONAL, get_capabilities

logger = logging.getLogger(__name__)

ROOT_BREADCRUMB = {"id": "root", "name": "My Files"}


class PersonalStorageError(Exception):
    """Base exception for personal file operations."""


class ItemNotFoundError(PersonalStorageError):
    """Raised when a folder or file does not exist for the user."""


class NameConflictError(PersonalStorageError):
    """Raised when an item with the same name already exists in the target folder."""


class InvalidOperationError(PersonalStorageError):
    """Raised for requests that can never succeed, such as moving a folder into itself."""


@dataclass
class IncomingFile:
    name: str
    content_type: str | None
    stream: BinaryIO


@dataclass
class UploadMetadata:
    title: str | None = None
    subject: str | None = None
    description: str | None = None
    material_type: str | None = None


@dataclass
class UploadOutcome:
    stored: list[PersonalFile] = field(default_factory=list)
    errors: list[dict] = field(default_factory=list)


def get_folder(db: Session, user_id: int, folder_id: int | None) -> PersonalFolder | None:
    if folder_id is None:
        return None
    folder = db.query(PersonalFolder).filter(
        PersonalFolder.id == folder_id,
        PersonalFolder.user_id == user_id,
    ).first()
    if folder is None:
        raise ItemNotFoundError("Folder not found")
    return folder


def get_file(db: Session, user_id: int, file_id: int) -> PersonalFile:
    personal_file = db.query(PersonalFile).filter(
        PersonalFile.id == file_id,
        PersonalFile.user_id == user_id,
    ).first()
    if personal_file is None:
        raise ItemNotFoundError("File not found")
    return personal_file


def build_breadcrumbs(db: Session, user_id: int, folder_id: int | None) -> list[dict]:
    breadcrumbs = []
    seen = set()
    current_id = folder_id

    while current_id is not None and current_id not in seen:
        seen.add(current_id)
        folder = db.query(PersonalFolder).filter(
            PersonalFolder.id == current_id,
            PersonalFolder.user_id == user_id,
        ).first()
        if folder is None:
            break
        breadcrumbs.insert(0, {"id": folder.id, "name": folder.name})
        current_id = folder.parent_id

    breadcrumbs.insert(0, dict(ROOT_BREADCRUMB))
    return breadcrumbs


def list_folder(db: Session, user_id: int, folder_id: int | None):
    """Return ``(folders, files, breadcrumbs)`` for one level of the tree."""
    get_folder(db, user_id, folder_id)

    folders = db.query(PersonalFolder).filter(
        PersonalFolder.user_id == user_id,
        PersonalFolder.parent_id.is_(None) if folder_id is None else PersonalFolder.parent_id == folder_id,
    ).order_by(PersonalFolder.name.asc()).all()
    files = db.query(PersonalFile).filter(
        PersonalFile.user_id == user_id,
        PersonalFile.folder_id.is_(None) if folder_id is None else PersonalFile.folder_id == folder_id,
    ).order_by(PersonalFile.name.asc()).all()

    return folders, files, build_breadcrumbs(db, user_id, folder_id)


def _folder_name_taken(db: Session, user_id: int, parent_id: int | None, name: str, exclude_id: int | None = None) -> bool:
    query = db.query(PersonalFolder).filter(
        PersonalFolder.user_id == user_id,
        PersonalFolder.name == name,
        PersonalFolder.parent_id.is_(None) if parent_id is None else PersonalFolder.parent_id == parent_id,
    )
    if exclude_id is not None:
        query = query.filter(PersonalFolder.id != exclude_id)
    return query.first() is not None


def _file_name_taken(db: Session, user_id: int, folder_id: int | None, name: str, exclude_id: int | None = None) -> bool:
    query = db.query(PersonalFile).filter(
        PersonalFile.user_id == user_id,
        PersonalFile.name == name,
        PersonalFile.folder_id.is_(None) if folder_id is None else PersonalFile.folder_id == folder_id,
    )
    if exclude_id is not None:
        query = query.filter(PersonalFile.id != exclude_id)
    return query.first() is not None


def create_folder(db: Session, user_id: int, name: str, parent_id: int | None) -> PersonalFolder:
    name = (name or "").strip()
    if not name:
        raise InvalidOperationError("Folder name is required")

    try:
        get_folder(db, user_id, parent_id)
    except ItemNotFoundError as exc:
        raise ItemNotFoundError("Parent folder not found") from exc

    if _folder_name_taken(db, user_id, parent_id, name):
        raise NameConflictError("A folder with this name already exists in this location")

    folder = PersonalFolder(name=name, user_id=user_id, parent_id=parent_id)
    db.add(folder)
    db.commit()
    db.refresh(folder)
    return folder


def _read_validated(incoming: IncomingFile) -> bytes:
    max_bytes = get_capabilities(KIND_PERSONAL).max_bytes
    uploads.validate_file_type(incoming.name, incoming.content_type)
    data = incoming.stream.read(max_bytes + 1)
    uploads.validate_file_size(len(data), max_bytes)
    return data


def store_files(
    db: Session,
    user_id: int,
    folder_id: int | None,
    incoming_files: list[IncomingFile],
    metadata: UploadMetadata | None = None,
) -> UploadOutcome:
    """Validate and store each file; per-file failures are collected, not raised."""
    metadata = metadata or UploadMetadata()
    try:
        get_folder(db, user_id, folder_id)
    except ItemNotFoundError as exc:
        raise ItemNotFoundError("Parent folder not found") from exc

    if not incoming_files:
        raise InvalidOperationError("No files uploaded")
    if len(incoming_files) > config.PERSONAL_UPLOAD_MAX_FILES:
        raise InvalidOperationError(
            f"Too many files. Maximum is {config.PERSONAL_UPLOAD_MAX_FILES} files per upload."
        )

    material_type = metadata.material_type if metadata.material_type in PERSONAL_MATERIAL_TYPES else "OTHER"
    outcome = UploadOutcome()

    for incoming in incoming_files:
        name = uploads.safe_file_name(incoming.name)
        try:
            data = _read_validated(incoming)
        except uploads.UploadValidationError as exc:
            outcome.errors.append({"file": name, "error": str(exc)})
            continue

        if _file_name_taken(db, user_id, folder_id, name):
            outcome.errors.append({"file": name, "error": "A file with this name already exists in this location"})
            continue

        stored_name = uploads.make_storage_name(name)
        path = uploads.user_upload_dir(user_id) / stored_name
        path.write_bytes(data)

        personal_file = PersonalFile(
            name=name,
            title=(metadata.title or "").strip() or name,
            subject=(metadata.subject or "").strip() or "Personal Study Material",
            description=(metadata.description or "").strip(),
            material_type=material_type,
            file_type=(incoming.content_type or "application/octet-stream").split(";")[0].strip(),
            size=len(data),
            stored_name=stored_name,
            file_path=str(path),
            user_id=user_id,
            folder_id=folder_id,
        )
        db.add(personal_file)
        try:
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            path.unlink(missing_ok=True)
            raise
        db.refresh(personal_file)
        outcome.stored.append(personal_file)
        logger.info("Stored personal file %s for user %s (%s bytes)", personal_file.id, user_id, len(data))

    return outcome


def open_for_download(db: Session, user_id: int, file_id: int) -> PersonalFile:
    personal_file = get_file(db, user_id, file_id)
    if not Path(personal_file.file_path).is_file():
        raise ItemNotFoundError("File not found on server")
    personal_file.downloads = (personal_file.downloads or 0) + 1
    db.commit()
    db.refresh(personal_file)
    return personal_file


def _collect_folder_tree(db: Session, user_id: int, folder_id: int) -> tuple[list[PersonalFolder], list[PersonalFile]]:
    folders = []
    files = []
    pending = [folder_id]
    seen = set()

    while pending:
        current_id = pending.pop()
        if current_id in seen:
            continue
        seen.add(current_id)
        files.extend(db.query(PersonalFile).filter(
            PersonalFile.user_id == user_id,
            PersonalFile.folder_id == current_id,
        ).all())
        children = db.query(PersonalFolder).filter(
            PersonalFolder.user_id == user_id,
            PersonalFolder.parent_id == current_id,
        ).all()
        folders.extend(children)
        pending.extend(child.id for child in children)

    return folders, files


def delete_items(db: Session, user_id: int, file_ids: list[int], folder_ids: list[int]) -> int:
    """Delete files and whole folder subtrees. Returns the number of removed rows."""
    if not file_ids and not folder_ids:
        raise InvalidOperationError("No items to delete")

    files = db.query(PersonalFile).filter(
        PersonalFile.user_id == user_id,
        PersonalFile.id.in_(file_ids),
    ).all() if file_ids else []
    folders = db.query(PersonalFolder).filter(
        PersonalFolder.user_id == user_id,
        PersonalFolder.id.in_(folder_ids),
    ).all() if folder_ids else []

    for folder in list(folders):
        nested_folders, nested_files = _collect_folder_tree(db, user_id, folder.id)
        folders.extend(nested_folders)
        files.extend(nested_files)

    unique_files = {item.id: item for item in files}
    unique_folders = {item.id: item for item in folders}
    paths = [Path(item.file_path) for item in unique_files.values()]

    for item in unique_files.values():
        db.delete(item)
    db.flush()
    # Children before parents.
    for item in sorted(unique_folders.values(), key=lambda folder: _depth(db, folder), reverse=True):
        db.delete(item)
        db.flush()
    db.commit()

    for path in paths:
        path.unlink(missing_ok=True)

    return len(unique_files) + len(unique_folders)


def _depth(db: Session, folder: PersonalFolder) -> int:
    depth = 0
    seen = set()
    current = folder
    while current is not None and current.parent_id is not None and current.id not in seen:
        seen.add(current.id)
        depth += 1
        current = db.get(PersonalFolder, current.parent_id)
    return depth


def rename_item(db: Session, user_id: int, item_id: int, name: str, is_folder: bool):
    name = (name or "").strip()
    if not name:
        raise InvalidOperationError("Item ID and new name are required")

    if is_folder:
        item = get_folder(db, user_id, item_id)
        if _folder_name_taken(db, user_id, item.parent_id, name, exclude_id=item.id):
            raise NameConflictError("A folder with this name already exists in this location")
    else:
        item = get_file(db, user_id, item_id)
        if _file_name_taken(db, user_id, item.folder_id, name, exclude_id=item.id):
            raise NameConflictError("A file with this name already exists in this location")

    item.name = name
    db.commit()
    db.refresh(item)
    return item


def is_descendant(db: Session, user_id: int, folder_id: int, ancestor_id: int) -> bool:
    """True when ``folder_id`` sits somewhere below ``ancestor_id``."""
    seen = set()
    current = get_folder(db, user_id, folder_id)
    while current is not None and current.parent_id is not None and current.id not in seen:
        seen.add(current.id)
        if current.parent_id == ancestor_id:
            return True
        current = db.query(PersonalFolder).filter(
            PersonalFolder.id == current.parent_id,
            PersonalFolder.user_id == user_id,
        ).first()
    return False


def move_items(
    db: Session,
    user_id: int,
    file_ids: list[int],
    folder_ids: list[int],
    destination_id: int | None,
) -> None:
    if not file_ids and not folder_ids:
        raise InvalidOperationError("No items to move")

    try:
        get_folder(db, user_id, destination_id)
    except ItemNotFoundError as exc:
        raise ItemNotFoundError("Destination folder not found") from exc

    folders = db.query(PersonalFolder).filter(
        PersonalFolder.user_id == user_id,
        PersonalFolder.id.in_(folder_ids),
    ).all() if folder_ids else []
    files = db.query(PersonalFile).filter(
        PersonalFile.user_id == user_id,
        PersonalFile.id.in_(file_ids),
    ).all() if file_ids else []

    moving_folder_names = set()
    for folder in folders:
        if destination_id is not None and folder.id == destination_id:
            raise InvalidOperationError("Cannot move a folder into itself")
        if destination_id is not None and is_descendant(db, user_id, destination_id, folder.id):
            raise InvalidOperationError("Cannot move a folder into one of its descendants")
        if _folder_name_taken(db, user_id, destination_id, folder.name, exclude_id=folder.id):
            raise NameConflictError(f'A folder named "{folder.name}" already exists in the target location')
        if folder.name in moving_folder_names:
            raise NameConflictError(f'More than one folder named "{folder.name}" is being moved')
        moving_folder_names.add(folder.name)

    moving_file_names = set()
    for personal_file in files:
        if _file_name_taken(db, user_id, destination_id, personal_file.name, exclude_id=personal_file.id):
            raise NameConflictError(f'A file named "{personal_file.name}" already exists in the target location')
        if personal_file.name in moving_file_names:
            raise NameConflictError(f'More than one file named "{personal_file.name}" is being moved')
        moving_file_names.add(personal_file.name)

    for folder in folders:
        folder.parent_id = destination_id
    for personal_file in files:
        personal_file.folder_id = destination_id
    db.commit()


def remove_user_storage(user_id: int) -> None:
    directory = uploads.personal_files_root() / str(user_id)
    if directory.exists():
        shutil.rmtree(directory, ignore_errors=True)
        logger.info("Removed personal storage for user %s", user_id)
