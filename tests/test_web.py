import httpx
import pytest
from fastapi import Depends, HTTPException
from fastapi.testclient import TestClient

from conftest import BASE_URL, FakeMoodle, stream_bytes
from moodle_actions.web.app import create_app

FILE_URL = f"{BASE_URL}/webservice/pluginfile.php/12/assignsubmission_file/submission_files/3/photo.png"


def moodle_with_files_route(fake: FakeMoodle):
    """Serve web service calls through `fake` and pluginfile downloads directly."""

    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.startswith("/webservice/pluginfile.php"):
            if request.headers.get("range") == "bytes=0-1":
                return httpx.Response(
                    206,
                    headers={"Content-Type": "image/png", "Content-Range": "bytes 0-1/4"},
                    content=stream_bytes(b"\x89P"),
                )
            return httpx.Response(200, headers={"Content-Type": "image/png"}, content=stream_bytes(b"\x89PNG"))
        return await fake(request)

    return httpx.MockTransport(handler)


@pytest.fixture
def client(app_settings, fake_moodle):
    app = create_app(app_settings, transport=moodle_with_files_route(fake_moodle))
    with TestClient(app) as test_client:
        yield test_client


def test_export_returns_csv(client, fake_moodle):
    fake_moodle.on("core_course_get_course_module", {"cm": {"id": 5, "instance": 42, "modname": "assign"}})
    fake_moodle.on(
        "mod_assign_get_submissions",
        {"assignments": [{"assignmentid": 42, "submissions": [{"id": 1, "userid": 1, "status": "submitted"}]}]},
    )
    fake_moodle.on("core_user_get_users_by_field", [{"id": 1, "firstname": "Ada", "lastname": "Lovelace"}])
    fake_moodle.on(
        "mod_assign_get_submission_status",
        {"feedback": {"grade": {"grade": "18.00000"},
                      "plugins": [{"type": "comments", "editorfields": [{"name": "comments", "text": "<p>Bravo</p>"}]}]}},
    )

    response = client.get("/api/actions/assignment-feedback/export", params={"cmid": "5"})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert 'filename="assignment-feedback-5-' in response.headers["content-disposition"]
    text = response.content.decode("utf-8-sig")
    assert text.splitlines() == ["Last name;First name;Grade;Feedback", "Lovelace;Ada;18.00000;Bravo"]


@pytest.mark.parametrize("query", [{}, {"cmid": "abc"}, {"cmid": "-4"}])
def test_export_validates_cmid(client, fake_moodle, query):
    response = client.get("/api/actions/assignment-feedback/export", params=query)

    assert response.status_code == 400
    assert "cmid" in response.json()["error"]
    assert fake_moodle.calls == []


def test_export_failure_is_a_400_with_message(client, fake_moodle):
    fake_moodle.on("core_course_get_course_module", {"cm": {"id": 5, "instance": 7, "modname": "forum"}})

    response = client.get("/api/actions/assignment-feedback/export", params={"cmid": "5"})

    assert response.status_code == 400
    assert "forum" in response.json()["error"]


def test_list_assignments(client, fake_moodle):
    fake_moodle.on(
        "core_course_get_contents",
        [{"id": 1, "modules": [{"id": 11, "instance": 101, "modname": "assign", "name": "Essay"}]}],
    )

    response = client.get("/api/actions/student-submissions/assignments", params={"courseId": "3"})

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "assignments": [{"cmid": 11, "instance_id": 101, "name": "Essay", "visible": True}],
    }


def test_list_students(client, fake_moodle):
    fake_moodle.on(
        "core_enrol_get_enrolled_users_with_capability",
        [{"courseid": 3, "users": [{"id": 1, "firstname": "Ada", "lastname": "Lovelace"}]}],
    )

    response = client.get("/api/actions/student-submissions/students", params={"courseId": "3"})

    assert response.status_code == 200
    assert response.json()["students"][0]["last_name"] == "Lovelace"


def test_student_files(client, fake_moodle):
    fake_moodle.on("core_user_get_users_by_field", [{"id": 7, "firstname": "Ada", "lastname": "Lovelace"}])
    fake_moodle.on(
        "mod_assign_get_submission_status",
        {"lastattempt": {"submission": {"id": 1, "userid": 7, "status": "draft", "plugins": [
            {"type": "file", "fileareas": [{"area": "submission_files", "files": [
                {"filename": "photo.png", "filepath": "/", "filesize": 4, "fileurl": FILE_URL, "mimetype": "image/png"},
            ]}]},
        ]}}},
    )

    response = client.post(
        "/api/actions/student-submissions/files",
        json={"userId": 7, "assignments": [{"cmid": 11, "assignid": 101, "name": "Essay"}]},
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["status"] == "draft"
    assert data["files"][0]["filename"] == "photo.png"
    assert data["files"][0]["assignment_id"] == 101


@pytest.mark.parametrize(
    "body",
    [
        {"userId": 0, "assignments": [{"cmid": 11, "assignid": 101, "name": "Essay"}]},
        {"userId": 7, "assignments": []},
        {"userId": 7},
        {"userId": 7, "assignments": [{"cmid": 11, "name": "Essay"}]},
        {"userId": True, "assignments": [{"cmid": 11, "assignid": 101, "name": "Essay"}]},
        {"userId": "7", "assignments": [{"cmid": 11, "assignid": 101, "name": "Essay"}]},
        {"userId": 7, "assignments": [{"cmid": 11.0, "assignid": 101, "name": "Essay"}]},
        {"userId": 7, "assignments": [{"cmid": 11, "assignid": False, "name": "Essay"}]},
    ],
)
def test_student_files_validation(client, fake_moodle, body):
    response = client.post("/api/actions/student-submissions/files", json=body)

    assert response.status_code == 400
    assert fake_moodle.calls == []


def test_proxy_streams_inline_image(client):
    response = client.get("/api/actions/student-submissions/proxy-file", params={"url": FILE_URL})

    assert response.status_code == 200
    assert response.content == b"\x89PNG"
    assert response.headers["content-disposition"] == "inline"
    assert response.headers["accept-ranges"] == "bytes"
    assert response.headers["cache-control"] == "private, max-age=3600"


def test_proxy_forwards_ranges(client):
    response = client.get(
        "/api/actions/student-submissions/proxy-file",
        params={"url": FILE_URL},
        headers={"Range": "bytes=0-1"},
    )

    assert response.status_code == 206
    assert response.headers["content-range"] == "bytes 0-1/4"
    assert response.content == b"\x89P"


def test_proxy_requires_url(client):
    response = client.get("/api/actions/student-submissions/proxy-file")

    assert response.status_code == 400


def test_proxy_rejects_foreign_hosts(client):
    response = client.get(
        "/api/actions/student-submissions/proxy-file",
        params={"url": "https://elsewhere.example.com/file.png"},
    )

    assert response.status_code == 400


def test_auth_dependency_guards_routes(app_settings, fake_moodle):
    def require_staff():
        raise HTTPException(status_code=401, detail="Not authenticated")

    app = create_app(app_settings, dependencies=[Depends(require_staff)])
    with TestClient(app) as test_client:
        response = test_client.get("/api/actions/student-submissions/assignments", params={"courseId": "3"})

    assert response.status_code == 401
    assert fake_moodle.calls == []
