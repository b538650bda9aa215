import re

import pytest

from college_katta.services import uploads


def test_validate_file_type_returns_normalized_extension() -> None:
    assert uploads.validate_file_type('Lecture Notes.PDF', 'application/pdf') == 'pdf'


def test_validate_file_type_rejects_extension_outside_allow_list() -> None:
    with pytest.raises(uploads.UploadValidationError) as exception_info:
        uploads.validate_file_type('installer.exe', 'application/octet-stream')

    assert str(exception_info.value) == 'File type .exe is not allowed'


def test_validate_file_type_rejects_mismatched_specific_mime() -> None:
    with pytest.raises(uploads.UploadValidationError) as exception_info:
        uploads.validate_file_type('notes.pdf', 'application/x-msdownload')

    assert str(exception_info.value) == 'File type not allowed. Please upload a document, image, or archive file.'


@pytest.mark.parametrize('mime_type', [None, '', 'application/octet-stream'])
def test_validate_file_type_defers_to_extension_for_generic_mime(mime_type) -> None:
    assert uploads.validate_file_type('archive.7z', mime_type) == '7z'


def test_validate_file_size_rejects_empty_and_oversized_payloads() -> None:
    with pytest.raises(uploads.UploadValidationError, match='File is empty'):
        uploads.validate_file_size(0, 10 * 1024 * 1024)

    with pytest.raises(uploads.UploadValidationError) as exception_info:
        uploads.validate_file_size(10 * 1024 * 1024 + 1, 10 * 1024 * 1024)

    assert str(exception_info.value) == 'File too large. Maximum file size is 10MB.'


def test_validate_file_size_accepts_exact_limit() -> None:
    uploads.validate_file_size(10 * 1024 * 1024, 10 * 1024 * 1024)


def test_decode_base64_payload_accepts_data_url() -> None:
    assert uploads.decode_base64_payload('data:application/pdf;base64,aGVsbG8=') == b'hello'


def test_decode_base64_payload_ignores_line_breaks() -> None:
    assert uploads.decode_base64_payload('aGVs\nbG8=') == b'hello'


@pytest.mark.parametrize(
    ('content', 'error_detail'),
    [
        ('', 'File content is required'),
        ('   ', 'File content is required'),
        ('not base64!!', 'File content is not valid base64'),
    ],
)
def test_decode_base64_payload_rejects_bad_content(content: str, error_detail: str) -> None:
    with pytest.raises(uploads.UploadValidationError) as exception_info:
        uploads.decode_base64_payload(content)

    assert str(exception_info.value) == error_detail


@pytest.mark.parametrize(
    ('declared', 'expected'),
    [
        (2048, 2048),
        ('2048', 2048),
        ('1.5 MB', 1572864),
        ('12 KB', 12288),
        ('lots', None),
        (True, None),
        (None, None),
    ],
)
def test_parse_declared_size(declared, expected) -> None:
    assert uploads.parse_declared_size(declared) == expected


def test_normalize_material_type_coerces_unknown_values_to_notes() -> None:
    assert uploads.normalize_material_type('Textbook') == 'Notes'
    assert uploads.normalize_material_type(None) == 'Notes'
    assert uploads.normalize_material_type('Lab Manual') == 'Lab Manual'


@pytest.mark.parametrize(
    ('year', 'expected'),
    [
        ('1st', 'First Year'),
        ('2nd Year', 'Second Year'),
        ('Third Year', 'Third Year'),
        ('', ''),
    ],
)
def test_format_year(year: str, expected: str) -> None:
    assert uploads.format_year(year) == expected


def test_safe_file_name_strips_directories() -> None:
    assert uploads.safe_file_name('../../etc/passwd.txt') == 'passwd.txt'
    assert uploads.safe_file_name('C:\\Users\\me\\notes.pdf') == 'notes.pdf'
    assert uploads.safe_file_name('') == 'file'


def test_make_storage_name_prefixes_unique_hex() -> None:
    first = uploads.make_storage_name('notes.pdf')
    second = uploads.make_storage_name('notes.pdf')

    assert re.fullmatch(r'[0-9a-f]{32}-notes\.pdf', first)
    assert first != second


@pytest.mark.parametrize(
    ('file_name', 'suffix'),
    [
        ('..', 'file'),
        ('../../secret.pdf', 'secret.pdf'),
        ('Lecture Notes (final).pdf', 'Lecture_Notes_final.pdf'),
        ('', 'file'),
    ],
)
def test_make_storage_name_keeps_only_safe_characters(file_name: str, suffix: str) -> None:
    assert uploads.make_storage_name(file_name).split('-', 1)[1] == suffix


@pytest.mark.parametrize('file_name', ['notes\x00.pdf', 'notes\n.pdf', 'notes\x7f.txt'])
def test_validate_file_type_rejects_control_characters(file_name: str) -> None:
    with pytest.raises(uploads.UploadValidationError) as exception_info:
        uploads.validate_file_type(file_name, 'application/pdf')

    assert str(exception_info.value) == 'File name contains invalid characters'


def test_user_upload_dir_is_created_on_first_use(upload_root) -> None:
    expected = upload_root / 'personal-files' / '7'
    assert not expected.exists()

    directory = uploads.user_upload_dir(7)

    assert directory == expected
    assert directory.is_dir()
