"""
End-to-end tests through the HTTP API and the WebSocket rooms.
"""

import pytest
from bson import ObjectId
from pymongo.errors import PyMongoError

import projects
from realtime import rooms

PROJECT_BODY = {
    "name": "Website",
    "description": "Company website relaunch",
    "deadline": "2026-12-01T00:00:00Z",
    "client": "ACME",
}

TASK_BODY = {
    "name": "Design",
    "description": "Landing page mockups",
    "deadline": "2026-11-01T00:00:00Z",
    "priority": "High",
}


class TestAuthentication:

    def test_missing_token(self, client):
        response = client.get("/api/projects")
        assert response.status_code == 401

    def test_garbage_token(self, client):
        response = client.get("/api/projects", headers={"Authorization": "Bearer not.a.jwt"})
        assert response.status_code == 401
        assert response.json() == {"detail": "Invalid token"}

    def test_token_for_deleted_user(self, client, db, make_user):
        user = make_user("Ghost")
        db["user"].delete_one({"_id": user["_id"]})
        assert client.get("/api/projects", headers=user["headers"]).status_code == 401

    def test_unauthenticated_is_not_not_found(self, client):
        response = client.get(f"/api/projects/{ObjectId()}")
        assert response.status_code == 401

    def test_profile_hides_secrets(self, client, creator):
        body = client.get("/api/users/profile", headers=creator["headers"]).json()
        assert body["_id"] == str(creator["_id"])
        assert body["email"] == "carla@example.com"
        assert "password_hash" not in body
        assert "token" not in body


class TestProjectsApi:

    def test_create_and_list(self, client, creator):
        created = client.post("/api/projects", json=dict(PROJECT_BODY, creator=str(ObjectId())),
                              headers=creator["headers"])
        assert created.status_code == 200
        project = created.json()
        assert project["creator"] == str(creator["_id"])

        listed = client.get("/api/projects", headers=creator["headers"]).json()
        assert [p["_id"] for p in listed] == [project["_id"]]

    def test_detail(self, client, website, design, collaborator):
        response = client.get(f"/api/projects/{website['_id']}", headers=collaborator["headers"])
        assert response.status_code == 200
        body = response.json()
        assert body["tasks"][0]["_id"] == str(design["_id"])
        assert body["collaborators"][0]["email"] == "bruno@example.com"

    def test_malformed_id(self, client, creator):
        response = client.get("/api/projects/123", headers=creator["headers"])
        assert response.status_code == 404

    def test_partial_update(self, client, website, creator):
        response = client.put(f"/api/projects/{website['_id']}", json={"client": "Globex"},
                              headers=creator["headers"])
        assert response.status_code == 200
        assert response.json()["client"] == "Globex"
        assert response.json()["name"] == "Website"

    def test_add_self_is_conflict(self, client, website, creator):
        response = client.post(f"/api/projects/collaborators/{website['_id']}",
                               json={"email": creator["email"]}, headers=creator["headers"])
        assert response.status_code == 409

    def test_add_and_remove_collaborator(self, client, website, creator, make_user):
        dana = make_user("Dana")
        added = client.post(f"/api/projects/collaborators/{website['_id']}",
                            json={"email": "dana@example.com"}, headers=creator["headers"])
        assert added.status_code == 200
        assert added.json()["collaborator"]["_id"] == str(dana["_id"])

        for _ in range(2):
            removed = client.post(f"/api/projects/delete-collaborator/{website['_id']}",
                                  json={"id": str(dana["_id"])}, headers=creator["headers"])
            assert removed.status_code == 200

    def test_search_collaborator(self, client, creator, collaborator):
        response = client.post("/api/projects/collaborators", json={"email": collaborator["email"]},
                               headers=creator["headers"])
        assert response.json() == {"_id": str(collaborator["_id"]), "name": "Bruno", "email": "bruno@example.com"}

    def test_delete_project(self, client, db, website, design, creator):
        response = client.delete(f"/api/projects/{website['_id']}", headers=creator["headers"])
        assert response.status_code == 200
        assert db["task"].count_documents({}) == 0

    def test_store_failure_is_generic(self, client, creator, monkeypatch):
        def broken(*args, **kwargs):
            raise PyMongoError("connection reset by 10.0.0.3")

        monkeypatch.setattr(projects, "list_projects_visible_to", broken)
        response = client.get("/api/projects", headers=creator["headers"])
        assert response.status_code == 500
        assert "10.0.0.3" not in response.text


class TestStranger:

    @pytest.mark.parametrize("method,path,body", [
        ("get", "/api/projects/{project}", None),
        ("put", "/api/projects/{project}", {"name": "Mine"}),
        ("delete", "/api/projects/{project}", None),
        ("post", "/api/projects/collaborators/{project}", {"email": "xavi@example.com"}),
        ("post", "/api/projects/delete-collaborator/{project}", {"id": "{collaborator}"}),
        ("post", "/api/tasks", dict(TASK_BODY, project="{project}")),
        ("get", "/api/tasks/{task}", None),
        ("put", "/api/tasks/{task}", {"name": "Mine"}),
        ("delete", "/api/tasks/{task}", None),
        ("post", "/api/tasks/state/{task}", None),
    ])
    def test_every_gated_operation_is_denied(self, client, db, website, design, collaborator, stranger,
                                             method, path, body):
        ids = {"project": str(website["_id"]), "task": str(design["_id"]), "collaborator": str(collaborator["_id"])}
        if body is not None:
            body = {k: v.format(**ids) if isinstance(v, str) else v for k, v in body.items()}
        before = (db["project"].find_one({"_id": website["_id"]}), db["task"].find_one({"_id": design["_id"]}))

        response = client.request(method.upper(), path.format(**ids), json=body, headers=stranger["headers"])

        assert response.status_code == 403
        after = (db["project"].find_one({"_id": website["_id"]}), db["task"].find_one({"_id": design["_id"]}))
        assert after == before


class TestTasksApi:

    def test_create_update_delete(self, client, db, website, creator):
        created = client.post("/api/tasks", json=dict(TASK_BODY, project=str(website["_id"])),
                              headers=creator["headers"])
        assert created.status_code == 200
        task_id = created.json()["_id"]
        assert db["project"].find_one({"_id": website["_id"]})["tasks"] == [ObjectId(task_id)]

        updated = client.put(f"/api/tasks/{task_id}", json={"priority": "Low"}, headers=creator["headers"])
        assert updated.json()["priority"] == "Low"
        assert updated.json()["name"] == "Design"

        deleted = client.delete(f"/api/tasks/{task_id}", headers=creator["headers"])
        assert deleted.status_code == 200
        assert db["project"].find_one({"_id": website["_id"]})["tasks"] == []

    def test_collaborator_cannot_create(self, client, website, collaborator):
        response = client.post("/api/tasks", json=dict(TASK_BODY, project=str(website["_id"])),
                               headers=collaborator["headers"])
        assert response.status_code == 403

    def test_bad_priority_rejected(self, client, website, creator):
        response = client.post("/api/tasks", json=dict(TASK_BODY, project=str(website["_id"]), priority="Urgent"),
                               headers=creator["headers"])
        assert response.status_code == 422

    def test_unknown_task(self, client, creator):
        assert client.get(f"/api/tasks/{ObjectId()}", headers=creator["headers"]).status_code == 404


class TestRealtime:

    def join(self, ws, project_id):
        ws.send_json({"action": "join", "project": str(project_id)})
        assert ws.receive_json() == {"event": "joined", "project": str(project_id)}

    def test_website_scenario(self, client, website, design, collaborator):
        with client.websocket_connect("/ws") as ws:
            self.join(ws, website["_id"])
            response = client.post(f"/api/tasks/state/{design['_id']}", headers=collaborator["headers"])
            assert response.status_code == 200
            task = response.json()
            assert task["state"] is True
            assert task["complete"]["_id"] == str(collaborator["_id"])

            message = ws.receive_json()
            assert message["event"] == "task:completed"
            assert message["project"] == str(website["_id"])
            assert message["data"]["_id"] == str(design["_id"])
            assert message["data"]["state"] is True

    def test_untoggle_also_sends_completed(self, client, website, design, creator, collaborator):
        client.post(f"/api/tasks/state/{design['_id']}", headers=collaborator["headers"])
        with client.websocket_connect(f"/ws/projects/{website['_id']}") as ws:
            assert ws.receive_json() == {"event": "joined", "project": str(website["_id"])}
            client.post(f"/api/tasks/state/{design['_id']}", headers=creator["headers"])
            message = ws.receive_json()
            assert message["event"] == "task:completed"
            assert message["data"]["state"] is False
            assert message["data"]["complete"]["_id"] == str(creator["_id"])

    def test_lifecycle_events_in_order(self, client, website, creator):
        with client.websocket_connect("/ws") as ws:
            self.join(ws, website["_id"])
            task_id = client.post("/api/tasks", json=dict(TASK_BODY, project=str(website["_id"])),
                                  headers=creator["headers"]).json()["_id"]
            client.put(f"/api/tasks/{task_id}", json={"name": "Design v2"}, headers=creator["headers"])
            client.delete(f"/api/tasks/{task_id}", headers=creator["headers"])

            events = [ws.receive_json() for _ in range(3)]
            assert [e["event"] for e in events] == ["task:created", "task:updated", "task:deleted"]
            assert events[1]["data"]["name"] == "Design v2"
            assert all(e["data"]["project"]["_id"] == str(website["_id"]) for e in events)
            assert events[2]["data"]["_id"] == task_id
            assert events[2]["data"]["project"]["tasks"] == []

    def test_bad_message_gets_error(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_text("hello")
            assert ws.receive_json()["event"] == "error"
            ws.send_json({"action": "dance", "project": "p1"})
            assert ws.receive_json()["event"] == "error"

    def test_publish_failure_keeps_the_write(self, client, db, website, design, collaborator, monkeypatch, caplog):
        async def broken(*args, **kwargs):
            raise ValueError("socket state corrupted")

        monkeypatch.setattr(rooms, "publish", broken)
        response = client.post(f"/api/tasks/state/{design['_id']}", headers=collaborator["headers"])
        assert response.status_code == 200
        assert response.json()["state"] is True
        assert db["task"].find_one({"_id": design["_id"]})["state"] is True
        assert "Could not publish task:completed" in caplog.text
