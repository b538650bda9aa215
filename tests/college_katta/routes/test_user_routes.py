import io

import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from college_katta.auth import jwt_handler
from college_katta.auth.dependencies import resolve_token_user
from college_katta.models import ChatMessage, MessageReaction, PersonalFile, PersonalFolder, Submission, User, submission_bookmarks
from college_katta.routes.user_routes import (
    UpdateProfileRequest,
    UpdateRoleRequest,
    UpdateUserStatusRequest,
    delete_user,
    get_user,
    list_users,
    update_user,
    update_user_role,
    update_user_status,
)
from college_katta.services import bookmarks, chat, personal_storage


def test_list_users_filters_by_search(db, student, classmate, admin) -> None:
    response = list_users(search='CLASS', admin=admin, db=db)

    assert [user.username for user in response.users] == ['classmate']


def test_list_users_returns_everyone_without_search(db, student, classmate, admin) -> None:
    response = list_users(search=None, admin=admin, db=db)

    assert response.count == 3


def test_users_can_read_themselves_but_not_others(db, student, classmate, admin) -> None:
    assert get_user(user_id=student.id, current_user=student, db=db).user.username == 'student'
    assert get_user(user_id=student.id, current_user=admin, db=db).user.username == 'student'

    with pytest.raises(HTTPException) as exception_info:
        get_user(user_id=classmate.id, current_user=student, db=db)

    assert exception_info.value.status_code == 403


def test_get_user_returns_not_found_for_admin(db, admin) -> None:
    with pytest.raises(HTTPException) as exception_info:
        get_user(user_id=999, current_user=admin, db=db)

    assert exception_info.value.status_code == 404


def test_update_user_changes_profile_fields_only(db, student) -> None:
    data = UpdateProfileRequest(bio='Loves compilers', year='4th', branch='AI & DS')

    response = update_user(user_id=student.id, data=data, current_user=student, db=db)

    assert response.user.bio == 'Loves compilers'
    assert response.user.year == 'Fourth Year'
    assert response.user.branch == 'AI & DS'
    assert response.user.role == 'user'
    assert response.user.full_name == 'Student'


def test_update_profile_ignores_role_escalation_attempts(db, student) -> None:
    data = UpdateProfileRequest.model_validate({'bio': 'hi', 'role': 'admin', 'status': 'active'})

    update_user(user_id=student.id, data=data, current_user=student, db=db)

    db.refresh(student)
    assert student.role == 'user'


def test_update_profile_rejects_long_bio() -> None:
    with pytest.raises(ValidationError):
        UpdateProfileRequest(bio='x' * 501)


def test_users_cannot_update_other_profiles(db, student, classmate) -> None:
    with pytest.raises(HTTPException) as exception_info:
        update_user(user_id=classmate.id, data=UpdateProfileRequest(bio='hacked'), current_user=student, db=db)

    assert exception_info.value.status_code == 403


def test_admin_can_promote_user(db, student, admin) -> None:
    response = update_user_role(user_id=student.id, data=UpdateRoleRequest(role='admin'), admin=admin, db=db)

    assert response.user.role == 'admin'


def test_admin_cannot_change_own_role(db, admin) -> None:
    with pytest.raises(HTTPException) as exception_info:
        update_user_role(user_id=admin.id, data=UpdateRoleRequest(role='user'), admin=admin, db=db)

    assert exception_info.value.status_code == 400


def test_role_request_rejects_unknown_roles() -> None:
    with pytest.raises(ValidationError):
        UpdateRoleRequest(role='moderator')


def test_admin_cannot_change_own_status(db, admin) -> None:
    with pytest.raises(HTTPException) as exception_info:
        update_user_status(user_id=admin.id, data=UpdateUserStatusRequest(status='suspended'), admin=admin, db=db)

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == 'You cannot change your own status'


def test_admins_cannot_be_suspended(db, make_user, admin) -> None:
    other_admin = make_user('deputy', role='admin')

    with pytest.raises(HTTPException) as exception_info:
        update_user_status(user_id=other_admin.id, data=UpdateUserStatusRequest(status='suspended'), admin=admin, db=db)

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == 'Cannot suspend an admin user'


def test_suspending_user_revokes_existing_token(db, student, admin) -> None:
    token = jwt_handler.create_user_token(student)

    update_user_status(user_id=student.id, data=UpdateUserStatusRequest(status='suspended'), admin=admin, db=db)

    with pytest.raises(HTTPException) as exception_info:
        resolve_token_user(token, db)

    assert exception_info.value.status_code == 403

    update_user_status(user_id=student.id, data=UpdateUserStatusRequest(status='active'), admin=admin, db=db)
    assert resolve_token_user(token, db).id == student.id


def test_admin_cannot_delete_self(db, admin) -> None:
    with pytest.raises(HTTPException) as exception_info:
        delete_user(user_id=admin.id, admin=admin, db=db)

    assert exception_info.value.status_code == 400


def test_delete_user_removes_owned_data(db, student, classmate, admin, make_submission, upload_root) -> None:
    own_submission = make_submission(student)
    others_submission = make_submission(classmate)
    reviewed = make_submission(classmate, status='pending')
    reviewed.reviewed_by_id = student.id
    db.commit()
    bookmarks.set_bookmark(db, others_submission, student, True)
    bookmarks.set_bookmark(db, own_submission, classmate, True)
    message = chat.post_message(db, classmate, 'general', 'hello')
    chat.set_reaction(db, message.id, student, '👍')
    chat.post_message(db, student, 'general', 'bye')
    parent = personal_storage.create_folder(db, student.id, 'Parent', None)
    personal_storage.create_folder(db, student.id, 'Child', parent.id)
    personal_storage.store_files(
        db,
        student.id,
        parent.id,
        [personal_storage.IncomingFile('notes.txt', 'text/plain', io.BytesIO(b'notes'))],
    )
    student_id = student.id

    delete_user(user_id=student_id, admin=admin, db=db)

    assert db.get(User, student_id) is None
    assert db.query(Submission).filter(Submission.owner_id == student_id).count() == 0
    assert db.execute(submission_bookmarks.select()).fetchall() == []
    assert db.query(MessageReaction).count() == 0
    assert [item.content for item in db.query(ChatMessage).all()] == ['hello']
    assert db.query(PersonalFolder).count() == 0
    assert db.query(PersonalFile).count() == 0
    assert db.get(Submission, reviewed.id).reviewed_by_id is None
    assert not (upload_root / 'personal-files' / str(student_id)).exists()
