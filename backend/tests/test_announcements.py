# tests/test_announcements.py
from unittest.mock import AsyncMock, patch

import pytest

from app.realtime.protocol import NEW_ANNOUNCEMENT

BASE = "/api/v1/announcements"


def create(client, headers, **fields):
    body = {"title": "Parents evening", "content": "Thursday 18:00 in the hall"}
    body.update(fields)
    return client.post(BASE, json=body, headers=headers)


@pytest.fixture
def teacher(make_user):
    return make_user("teacher", "Anna")


@pytest.fixture
def admin(make_user):
    return make_user("admin", "Ewa")


class TestCreateAnnouncement:

    def test_teacher_creates_with_defaults(self, client, teacher):
        t_user, t_headers, _ = teacher

        response = create(client, t_headers)
        assert response.status_code == 201

        data = response.json()
        assert data["created_by"] == str(t_user.id)
        assert data["target_role"] == "all"
        assert data["priority"] == "normal"
        assert data["grade"] is None

    def test_student_cannot_create(self, client, make_user):
        _, s_headers, _ = make_user("student")
        assert create(client, s_headers).status_code == 403

    def test_parent_cannot_create(self, client, make_user):
        _, p_headers, _ = make_user("parent")
        assert create(client, p_headers).status_code == 403

    def test_requires_authentication(self, client):
        assert create(client, {}).status_code == 401

    @pytest.mark.parametrize("fields", [
        {"title": "   "},
        {"content": ""},
        {"target_role": "janitor"},
        {"priority": "whenever"},
    ])
    def test_invalid_fields(self, client, teacher, fields):
        _, t_headers, _ = teacher
        assert create(client, t_headers, **fields).status_code == 422

    def test_broadcast_ignores_target_role(self, client, teacher, gateway):
        _, t_headers, _ = teacher

        with patch.object(gateway, "broadcast_all", new=AsyncMock()) as broadcast:
            response = create(client, t_headers, target_role="parent", grade="Grade 3")

        assert response.status_code == 201
        broadcast.assert_awaited_once()
        event_type, payload = broadcast.await_args.args
        assert event_type == NEW_ANNOUNCEMENT
        assert payload.id == response.json()["id"]

    def test_broadcast_failure_keeps_announcement(self, client, teacher, gateway):
        _, t_headers, _ = teacher

        with patch.object(gateway, "broadcast_all", new=AsyncMock(side_effect=RuntimeError("down"))):
            response = create(client, t_headers)

        assert response.status_code == 201
        assert client.get(f"{BASE}/{response.json()['id']}", headers=t_headers).status_code == 200


class TestListAnnouncements:

    def test_role_and_grade_filter(self, client, teacher, admin, make_user):
        _, t_headers, _ = teacher
        _, a_headers, _ = admin
        _, s_headers, _ = make_user("student")
        _, p_headers, _ = make_user("parent")

        for_teachers = create(client, t_headers, title="Staff meeting", target_role="teacher").json()
        for_grade_3 = create(client, t_headers, title="Grade 3 trip", grade="Grade 3").json()
        for_grade_4 = create(client, t_headers, title="Grade 4 trip", grade="Grade 4").json()
        for_everyone = create(client, t_headers, title="School closed Monday").json()
        mine = {a["id"] for a in (for_teachers, for_grade_3, for_grade_4, for_everyone)}

        def visible(headers, **params):
            listed = client.get(BASE, headers=headers, params=params).json()
            return [a["id"] for a in listed if a["id"] in mine]

        # Teachers viewing Grade 3: own role, that grade, and grade-less ones
        assert visible(t_headers, grade="Grade 3") == [
            for_everyone["id"], for_grade_3["id"], for_teachers["id"],
        ]
        # Students never see teacher-only announcements
        assert for_teachers["id"] not in visible(s_headers)
        assert set(visible(p_headers)) == mine - {for_teachers["id"]}
        # Admins see everything
        assert set(visible(a_headers)) == mine

    def test_newest_first(self, client, teacher):
        _, t_headers, _ = teacher
        first = create(client, t_headers, title="older").json()
        second = create(client, t_headers, title="newer").json()

        ids = [a["id"] for a in client.get(BASE, headers=t_headers).json()]
        assert ids.index(second["id"]) < ids.index(first["id"])


class TestManageAnnouncement:

    def test_get_update_delete(self, client, teacher, admin):
        _, t_headers, _ = teacher
        _, a_headers, _ = admin
        created = create(client, t_headers).json()
        url = f"{BASE}/{created['id']}"

        assert client.get(url, headers=t_headers).json()["title"] == "Parents evening"

        updated = client.put(url, json={"priority": "urgent", "title": "Moved to Friday"}, headers=t_headers)
        assert updated.status_code == 200
        assert updated.json()["priority"] == "urgent"
        assert updated.json()["title"] == "Moved to Friday"
        assert updated.json()["content"] == created["content"]

        # Teachers may edit but only admins delete
        assert client.delete(url, headers=t_headers).status_code == 403
        assert client.delete(url, headers=a_headers).status_code == 204
        assert client.get(url, headers=t_headers).status_code == 404

    def test_unknown_announcement(self, client, admin):
        _, a_headers, _ = admin
        url = f"{BASE}/99999999"

        assert client.get(url, headers=a_headers).status_code == 404
        assert client.put(url, json={"title": "x"}, headers=a_headers).status_code == 404
        assert client.delete(url, headers=a_headers).status_code == 404

    def test_student_cannot_update(self, client, teacher, make_user):
        _, t_headers, _ = teacher
        _, s_headers, _ = make_user("student")
        created = create(client, t_headers).json()

        response = client.put(f"{BASE}/{created['id']}", json={"title": "hacked"}, headers=s_headers)
        assert response.status_code == 403
