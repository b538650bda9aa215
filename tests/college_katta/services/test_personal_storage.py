import io
from pathlib import Path

import pytest

from college_katta.core import config
from college_katta.models import PersonalFile, PersonalFolder
from college_katta.services import personal_storage
from college_katta.services.personal_storage import IncomingFile, UploadMetadata


def _incoming(name: str, data: bytes = b'lecture notes', content_type: str = 'text/plain') -> IncomingFile:
    return IncomingFile(name=name, content_type=content_type, stream=io.BytesIO(data))


def test_store_files_writes_under_user_directory(db, student, upload_root) -> None:
    outcome = personal_storage.store_files(
        db,
        student.id,
        None,
        [_incoming('notes.txt')],
        UploadMetadata(title='Week 1', material_type='NOTES'),
    )

    assert outcome.errors == []
    stored = outcome.stored[0]
    path = Path(stored.file_path)
    assert path.parent == upload_root / 'personal-files' / str(student.id)
    assert path.name == stored.stored_name
    assert stored.stored_name.endswith('-notes.txt')
    assert path.read_bytes() == b'lecture notes'
    assert stored.title == 'Week 1'
    assert stored.material_type == 'NOTES'
    assert stored.size == len(b'lecture notes')


def test_store_files_defaults_unknown_material_type(db, student) -> None:
    outcome = personal_storage.store_files(
        db,
        student.id,
        None,
        [_incoming('notes.txt')],
        UploadMetadata(material_type='MEME'),
    )

    assert outcome.stored[0].material_type == 'OTHER'
    assert outcome.stored[0].subject == 'Personal Study Material'


def test_rejected_upload_leaves_no_artifact(db, student, upload_root) -> None:
    outcome = personal_storage.store_files(db, student.id, None, [_incoming('virus.exe')])

    assert outcome.stored == []
    assert outcome.errors == [{'file': 'virus.exe', 'error': 'File type .exe is not allowed'}]
    assert db.query(PersonalFile).count() == 0
    assert not (upload_root / 'personal-files' / str(student.id)).exists()


def test_control_characters_in_name_are_reported_per_file(db, student, upload_root) -> None:
    outcome = personal_storage.store_files(
        db,
        student.id,
        None,
        [_incoming('notes\x00.pdf', content_type='application/pdf'), _incoming('../../week1.txt')],
    )

    assert outcome.errors == [{'file': 'notes\x00.pdf', 'error': 'File name contains invalid characters'}]
    stored = outcome.stored[0]
    assert stored.name == 'week1.txt'
    assert Path(stored.file_path).parent == upload_root / 'personal-files' / str(student.id)


def test_oversized_upload_is_reported_per_file(db, student, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, 'PERSONAL_FILE_MAX_BYTES', 4)

    outcome = personal_storage.store_files(
        db,
        student.id,
        None,
        [_incoming('big.txt', b'12345'), _incoming('small.txt', b'1234')],
    )

    assert [item.name for item in outcome.stored] == ['small.txt']
    assert outcome.errors[0]['file'] == 'big.txt'
    assert outcome.errors[0]['error'].startswith('File too large')


def test_store_files_limits_batch_size(db, student) -> None:
    files = [_incoming(f'notes{index}.txt') for index in range(config.PERSONAL_UPLOAD_MAX_FILES + 1)]

    with pytest.raises(personal_storage.InvalidOperationError):
        personal_storage.store_files(db, student.id, None, files)

    assert db.query(PersonalFile).count() == 0


def test_store_files_reports_name_conflicts(db, student) -> None:
    personal_storage.store_files(db, student.id, None, [_incoming('notes.txt')])

    outcome = personal_storage.store_files(db, student.id, None, [_incoming('notes.txt')])

    assert outcome.stored == []
    assert outcome.errors[0]['error'] == 'A file with this name already exists in this location'


def test_create_folder_rejects_duplicate_name_in_same_parent(db, student) -> None:
    personal_storage.create_folder(db, student.id, 'Semester 3', None)

    with pytest.raises(personal_storage.NameConflictError):
        personal_storage.create_folder(db, student.id, 'Semester 3', None)


def test_same_folder_name_is_allowed_for_different_users(db, student, classmate) -> None:
    personal_storage.create_folder(db, student.id, 'Semester 3', None)
    folder = personal_storage.create_folder(db, classmate.id, 'Semester 3', None)

    assert folder.user_id == classmate.id


def test_folders_of_other_users_are_not_found(db, student, classmate) -> None:
    folder = personal_storage.create_folder(db, student.id, 'Private', None)

    with pytest.raises(personal_storage.ItemNotFoundError):
        personal_storage.list_folder(db, classmate.id, folder.id)


def test_list_folder_sorts_by_name_and_builds_breadcrumbs(db, student) -> None:
    semester = personal_storage.create_folder(db, student.id, 'Semester 3', None)
    personal_storage.create_folder(db, student.id, 'Physics', semester.id)
    maths = personal_storage.create_folder(db, student.id, 'Maths', semester.id)
    personal_storage.store_files(db, student.id, semester.id, [_incoming('b.txt'), _incoming('a.txt')])

    folders, files, breadcrumbs = personal_storage.list_folder(db, student.id, semester.id)

    assert [folder.name for folder in folders] == ['Maths', 'Physics']
    assert [item.name for item in files] == ['a.txt', 'b.txt']
    assert breadcrumbs == [{'id': 'root', 'name': 'My Files'}, {'id': semester.id, 'name': 'Semester 3'}]

    _, _, nested = personal_storage.list_folder(db, student.id, maths.id)
    assert [crumb['name'] for crumb in nested] == ['My Files', 'Semester 3', 'Maths']


def test_move_refuses_folder_into_itself_or_descendant(db, student) -> None:
    parent = personal_storage.create_folder(db, student.id, 'Parent', None)
    child = personal_storage.create_folder(db, student.id, 'Child', parent.id)
    grandchild = personal_storage.create_folder(db, student.id, 'Grandchild', child.id)

    with pytest.raises(personal_storage.InvalidOperationError):
        personal_storage.move_items(db, student.id, [], [parent.id], parent.id)

    with pytest.raises(personal_storage.InvalidOperationError):
        personal_storage.move_items(db, student.id, [], [parent.id], grandchild.id)

    db.refresh(parent)
    assert parent.parent_id is None


def test_move_refuses_name_collisions(db, student) -> None:
    target = personal_storage.create_folder(db, student.id, 'Target', None)
    personal_storage.store_files(db, student.id, target.id, [_incoming('notes.txt')])
    outcome = personal_storage.store_files(db, student.id, None, [_incoming('notes.txt')])

    with pytest.raises(personal_storage.NameConflictError):
        personal_storage.move_items(db, student.id, [outcome.stored[0].id], [], target.id)


def test_move_refuses_same_names_within_one_batch(db, student) -> None:
    first = personal_storage.create_folder(db, student.id, 'A', None)
    second = personal_storage.create_folder(db, student.id, 'B', None)
    destination = personal_storage.create_folder(db, student.id, 'Dest', None)
    file_ids = [
        personal_storage.store_files(db, student.id, folder.id, [_incoming('notes.txt')]).stored[0].id
        for folder in (first, second)
    ]
    nested = [personal_storage.create_folder(db, student.id, 'Unit 1', folder.id).id for folder in (first, second)]

    with pytest.raises(personal_storage.NameConflictError):
        personal_storage.move_items(db, student.id, file_ids, [], destination.id)
    with pytest.raises(personal_storage.NameConflictError):
        personal_storage.move_items(db, student.id, [], nested, destination.id)

    db.rollback()
    folders, files, _ = personal_storage.list_folder(db, student.id, destination.id)
    assert folders == []
    assert files == []


def test_move_relocates_files_and_folders(db, student) -> None:
    target = personal_storage.create_folder(db, student.id, 'Target', None)
    folder = personal_storage.create_folder(db, student.id, 'Loose', None)
    outcome = personal_storage.store_files(db, student.id, None, [_incoming('notes.txt')])

    personal_storage.move_items(db, student.id, [outcome.stored[0].id], [folder.id], target.id)

    folders, files, _ = personal_storage.list_folder(db, student.id, target.id)
    assert [item.name for item in folders] == ['Loose']
    assert [item.name for item in files] == ['notes.txt']


def test_delete_items_removes_nested_tree_and_disk_files(db, student) -> None:
    parent = personal_storage.create_folder(db, student.id, 'Parent', None)
    child = personal_storage.create_folder(db, student.id, 'Child', parent.id)
    top = personal_storage.store_files(db, student.id, parent.id, [_incoming('top.txt')]).stored[0]
    nested = personal_storage.store_files(db, student.id, child.id, [_incoming('nested.txt')]).stored[0]
    paths = [Path(top.file_path), Path(nested.file_path)]

    removed = personal_storage.delete_items(db, student.id, [], [parent.id])

    assert removed == 4
    assert db.query(PersonalFolder).count() == 0
    assert db.query(PersonalFile).count() == 0
    assert not any(path.exists() for path in paths)


def test_rename_rejects_existing_sibling_name(db, student) -> None:
    outcome = personal_storage.store_files(db, student.id, None, [_incoming('a.txt'), _incoming('b.txt')])

    with pytest.raises(personal_storage.NameConflictError):
        personal_storage.rename_item(db, student.id, outcome.stored[1].id, 'a.txt', is_folder=False)

    renamed = personal_storage.rename_item(db, student.id, outcome.stored[1].id, 'c.txt', is_folder=False)
    assert renamed.name == 'c.txt'


def test_open_for_download_counts_downloads(db, student) -> None:
    stored = personal_storage.store_files(db, student.id, None, [_incoming('notes.txt')]).stored[0]

    personal_storage.open_for_download(db, student.id, stored.id)
    downloaded = personal_storage.open_for_download(db, student.id, stored.id)

    assert downloaded.downloads == 2


def test_open_for_download_reports_missing_disk_file(db, student) -> None:
    stored = personal_storage.store_files(db, student.id, None, [_incoming('notes.txt')]).stored[0]
    Path(stored.file_path).unlink()

    with pytest.raises(personal_storage.ItemNotFoundError) as exception_info:
        personal_storage.open_for_download(db, student.id, stored.id)

    assert str(exception_info.value) == 'File not found on server'


def test_remove_user_storage_deletes_directory(db, student, upload_root) -> None:
    personal_storage.store_files(db, student.id, None, [_incoming('notes.txt')])
    directory = upload_root / 'personal-files' / str(student.id)
    assert directory.exists()

    personal_storage.remove_user_storage(student.id)

    assert not directory.exists()
