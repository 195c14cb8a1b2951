"""Integration tests for the FastAPI endpoints.

Uses TestClient with an in-memory database and bearer tokens signed with a
test secret.
"""
from __future__ import annotations

import json
import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from conftest import auth_header
from deepvest.models import UserProfile
from deepvest.storage import StoredFile
from deepvest.transcribe import DownloadedFile

OWNER_ID = uuid.UUID("eeeeeeee-eeee-4eee-8eee-eeeeeeeeeeee")
STRANGER_ID = uuid.UUID("ffffffff-ffff-4fff-8fff-ffffffffffff")

LLM_JSON = json.dumps({
    "score": 68, "investment_rating": 66, "market_potential": 74, "team_competency": 61,
    "tech_innovation": 70, "business_model": 58, "execution_risk": 42,
    "summary": "Promising but early.", "research": "## Risks\nSmall team.",
})


@pytest.fixture()
def llm():
    client = MagicMock()
    client.configured = True
    client.api_key_env = "GEMINI_API_KEY"
    client.model_version = "gemini-2.0-flash-v1.0.0"
    client.generate = AsyncMock(return_value=LLM_JSON)
    return client


@pytest.fixture()
def storage():
    client = AsyncMock()
    client.delete_project_files.return_value = (True, None)
    client.upload.side_effect = lambda path, data, content_type: StoredFile(
        path=path, public_url=f"https://cdn.example/{path}", size=len(data), content_type=content_type,
    )
    return client


@pytest.fixture()
def client(session_factory, jwt_secret, llm, storage, monkeypatch):
    """FastAPI TestClient using the in-memory database."""
    monkeypatch.setenv("DATABASE_URL", "sqlite://")
    from deepvest.app import app, db_session, llm_client, storage_client

    def override_db_session():
        session = session_factory()
        try:
            yield session
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    app.dependency_overrides[db_session] = override_db_session
    app.dependency_overrides[llm_client] = lambda: llm
    app.dependency_overrides[storage_client] = lambda: storage
    with TestClient(app, raise_server_exceptions=True) as c:
        yield c
    app.dependency_overrides.clear()


def owner_headers():
    return auth_header(OWNER_ID)


def create_project(c, slug="acme-robotics", **extra) -> dict:
    resp = c.post("/api/projects", headers=owner_headers(), json={
        "name": "Acme Robotics", "slug": slug, "description": "Warehouse robots.", "status": "mvp", **extra,
    })
    assert resp.status_code == 201, resp.text
    return resp.json()


def publish(c, project_id: str) -> None:
    resp = c.post(f"/api/projects/{project_id}/publication", headers=owner_headers(),
                  json={"isCurrentlyPublic": False})
    assert resp.status_code == 200, resp.text


# ---------------------------------------------------------------------------
# Tests: projects
# ---------------------------------------------------------------------------


class TestProjectEndpoints:
    def test_create_project(self, client):
        data = create_project(client)
        assert data["slug"] == "acme-robotics"
        assert data["role"] == "owner"
        assert data["is_public"] is False
        assert data["publication_state"] == "unpublished"
        assert data["snapshot"]["name"] == "Acme Robotics"
        assert data["snapshot"]["version"] == 1
        assert len(data["snapshot"]["team_members"]) == 1

    def test_creator_becomes_ceo(self, client):
        project = create_project(client)
        members = client.get(f"/api/projects/{project['id']}/team-members", headers=owner_headers()).json()
        assert len(members) == 1
        assert members[0]["positions"] == ["CEO"]
        assert members[0]["is_founder"] is True
        assert members[0]["email"] == "founder@example.com"

    def test_skip_auto_team(self, client):
        project = create_project(client, skipAutoTeam=True)
        assert project["snapshot"]["team_members"] == []

    def test_duplicate_slug(self, client):
        create_project(client)
        resp = client.post("/api/projects", headers=owner_headers(),
                           json={"name": "Other", "slug": "acme-robotics"})
        assert resp.status_code == 409
        assert resp.json() == {
            "success": False, "error": "Project URL is already taken. Please choose a different one.",
        }

    def test_invalid_slug(self, client):
        resp = client.post("/api/projects", headers=owner_headers(), json={"name": "X", "slug": "Bad Slug"})
        assert resp.status_code == 400
        body = resp.json()
        assert body["success"] is False
        assert body["details"][0]["field"] == "slug"

    def test_create_requires_auth(self, client):
        resp = client.post("/api/projects", json={"name": "X", "slug": "xyz"})
        assert resp.status_code == 401
        assert resp.json() == {"success": False, "error": "Authentication required"}

    def test_invalid_token(self, client):
        resp = client.post("/api/projects", headers={"Authorization": "Bearer not-a-jwt"},
                           json={"name": "X", "slug": "xyz"})
        assert resp.status_code == 401

    def test_check_slug(self, client):
        create_project(client)
        assert client.get("/api/projects/check-slug?slug=acme-robotics").json()["available"] is False
        assert client.get("/api/projects/check-slug?slug=free-slug").json()["available"] is True

    def test_private_project_hidden(self, client):
        project = create_project(client)
        assert client.get("/api/projects").json()["items"] == []
        assert client.get(f"/api/projects/{project['id']}").status_code == 404
        stranger = client.get(f"/api/projects/{project['id']}", headers=auth_header(STRANGER_ID))
        assert stranger.status_code == 404

    def test_owner_sees_private_project(self, client):
        project = create_project(client)
        items = client.get("/api/projects", headers=owner_headers()).json()["items"]
        assert [i["id"] for i in items] == [project["id"]]
        detail = client.get(f"/api/projects/{project['id']}", headers=owner_headers())
        assert detail.status_code == 200
        assert len(detail.json()["team_members"]) == 1

    def test_unknown_project(self, client):
        assert client.get(f"/api/projects/{uuid.uuid4()}").status_code == 404

    def test_malformed_project_id(self, client):
        resp = client.get("/api/projects/not-a-uuid")
        assert resp.status_code == 400


# ---------------------------------------------------------------------------
# Tests: publication
# ---------------------------------------------------------------------------


class TestPublicationEndpoints:
    def test_publish_makes_project_visible(self, client):
        project = create_project(client)
        resp = client.post(f"/api/projects/{project['id']}/publication", headers=owner_headers(),
                           json={"isCurrentlyPublic": False})
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "is_public": True}

        listed = client.get("/api/projects").json()["items"]
        assert [i["id"] for i in listed] == [project["id"]]
        assert listed[0]["publication_state"] == "published"

        detail = client.get(f"/api/projects/{project['id']}").json()
        assert detail["snapshot"]["is_locked"] is True
        assert detail["role"] is None

    def test_anonymous_list_is_revalidated_after_publish(self, client):
        project = create_project(client)
        assert client.get("/api/projects").json()["items"] == []
        publish(client, project["id"])
        assert len(client.get("/api/projects").json()["items"]) == 1

    def test_stranger_cannot_toggle(self, client):
        project = create_project(client)
        resp = client.post(f"/api/projects/{project['id']}/publication", headers=auth_header(STRANGER_ID),
                           json={"isCurrentlyPublic": False})
        assert resp.status_code == 403
        assert resp.json()["error"] == "Only the project owner can perform this action"

    def test_anonymous_toggle(self, client):
        project = create_project(client)
        resp = client.post(f"/api/projects/{project['id']}/publication", json={"isCurrentlyPublic": False})
        assert resp.status_code == 401
        assert resp.json() == {"success": False, "error": "User not authenticated"}

    def test_publish_draft_without_draft(self, client):
        project = create_project(client)
        publish(client, project["id"])
        resp = client.post(f"/api/projects/{project['id']}/publish-draft", headers=owner_headers())
        assert resp.status_code == 400
        assert resp.json() == {"success": False, "error": "No draft to publish"}

    def test_edit_then_publish_draft(self, client):
        project = create_project(client)
        publish(client, project["id"])
        base = f"/api/projects/{project['id']}"

        locked = client.put(f"{base}/snapshots", headers=owner_headers(), json={"name": "Renamed"})
        assert locked.status_code == 409

        created = client.post(f"{base}/snapshots", headers=owner_headers(), json={"name": "Acme v2"})
        assert created.status_code == 201
        assert created.json()["version"] == 2

        resp = client.post(f"{base}/publish-draft", headers=owner_headers())
        assert resp.status_code == 200
        assert resp.json()["public_snapshot_id"] == created.json()["id"]
        assert client.get(base).json()["snapshot"]["name"] == "Acme v2"

        versions = client.get(f"{base}/snapshots", headers=owner_headers()).json()
        assert [v["version"] for v in versions] == [2, 1]


# ---------------------------------------------------------------------------
# Tests: permissions
# ---------------------------------------------------------------------------


class TestPermissionEndpoints:
    def test_grant_and_list(self, client):
        project = create_project(client)
        base = f"/api/projects/{project['id']}/permissions"
        resp = client.post(base, headers=owner_headers(), json={"user_id": str(STRANGER_ID), "role": "editor"})
        assert resp.status_code == 201
        assert resp.json()["role"] == "editor"

        mine = client.get(f"{base}/user", headers=auth_header(STRANGER_ID)).json()
        assert mine == {"user_id": str(STRANGER_ID), "role": "editor"}
        roles = [p["role"] for p in client.get(base, headers=owner_headers()).json()]
        assert roles == ["owner", "editor"]

    def test_admin_cannot_grant_owner(self, client):
        project = create_project(client)
        base = f"/api/projects/{project['id']}/permissions"
        client.post(base, headers=owner_headers(), json={"user_id": str(STRANGER_ID), "role": "admin"})
        other = uuid.uuid4()
        client.post(base, headers=auth_header(STRANGER_ID), json={"user_id": str(other), "role": "viewer"})
        resp = client.put(base, headers=auth_header(STRANGER_ID), json={"user_id": str(other), "role": "owner"})
        assert resp.status_code == 403

    def test_revoke(self, client):
        project = create_project(client)
        base = f"/api/projects/{project['id']}/permissions"
        client.post(base, headers=owner_headers(), json={"user_id": str(STRANGER_ID), "role": "viewer"})
        resp = client.delete(f"{base}?user_id={STRANGER_ID}", headers=owner_headers())
        assert resp.status_code == 200
        mine = client.get(f"{base}/user", headers=auth_header(STRANGER_ID)).json()
        assert mine["role"] is None


# ---------------------------------------------------------------------------
# Tests: team and documents
# ---------------------------------------------------------------------------


class TestTeamAndDocuments:
    def test_add_member_syncs_draft(self, client):
        project = create_project(client)
        base = f"/api/projects/{project['id']}"
        resp = client.post(f"{base}/team-members", headers=owner_headers(),
                           json={"name": "Bob Engineer", "email": "bob@acme.example", "positions": ["CTO"]})
        assert resp.status_code == 201
        draft = client.get(f"{base}/snapshots", headers=owner_headers()).json()[0]
        assert resp.json()["id"] in draft["team_members"]
        assert len(draft["team_members"]) == 2

    def test_duplicate_member_email(self, client):
        project = create_project(client)
        resp = client.post(f"/api/projects/{project['id']}/team-members", headers=owner_headers(),
                           json={"name": "Again", "email": "founder@example.com"})
        assert resp.status_code == 409

    def test_delete_member(self, client):
        project = create_project(client)
        base = f"/api/projects/{project['id']}/team-members"
        member = client.post(base, headers=owner_headers(), json={"name": "Temp"}).json()
        assert client.delete(f"{base}/{member['id']}", headers=owner_headers()).status_code == 200
        ids = [m["id"] for m in client.get(base, headers=owner_headers()).json()]
        assert member["id"] not in ids

    def test_documents(self, client):
        project = create_project(client)
        base = f"/api/projects/{project['id']}/documents"
        resp = client.post(base, headers=owner_headers(), json={
            "title": "Pitch Deck", "slug": "pitch-deck", "content_type": "pitch_deck",
            "content": "We build robots.", "is_public": True,
        })
        assert resp.status_code == 201
        client.post(base, headers=owner_headers(), json={"title": "Notes", "slug": "notes"})

        assert client.get(f"{base}/check-slug?slug=pitch-deck").json()["available"] is False
        owner_view = client.get(base, headers=owner_headers()).json()
        assert {d["slug"] for d in owner_view} == {"pitch-deck", "notes"}

        publish(client, project["id"])
        public_view = client.get(base).json()
        assert [d["slug"] for d in public_view] == ["pitch-deck"]

    def test_document_slug_required(self, client):
        project = create_project(client)
        resp = client.get(f"/api/projects/{project['id']}/documents/check-slug")
        assert resp.status_code == 400
        assert resp.json()["error"] == "Slug parameter is required"

    def test_upload(self, client, storage):
        project = create_project(client)
        resp = client.post(
            f"/api/projects/{project['id']}/upload", headers=owner_headers(),
            data={"uploadType": "logo"}, files={"file": ("logo.png", b"\x89PNG", "image/png")},
        )
        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert body["success"] is True
        assert body["path"].startswith(f"{project['id']}/logo_")
        assert body["path"].endswith(".png")
        storage.upload.assert_awaited_once()

    def test_upload_rejects_wrong_type(self, client, storage):
        project = create_project(client)
        resp = client.post(
            f"/api/projects/{project['id']}/upload", headers=owner_headers(),
            data={"uploadType": "logo"}, files={"file": ("deck.pdf", b"%PDF", "application/pdf")},
        )
        assert resp.status_code == 400
        assert resp.json()["error"].startswith("Invalid file type")
        storage.upload.assert_not_awaited()


# ---------------------------------------------------------------------------
# Tests: scoring
# ---------------------------------------------------------------------------


class TestScoringEndpoint:
    def test_preflight(self, client):
        resp = client.options(f"/api/projects/{uuid.uuid4()}/scoring")
        assert resp.status_code == 200
        assert resp.headers["access-control-allow-origin"] == "*"

    def test_generate_then_conflict(self, client, llm):
        project = create_project(client)
        publish(client, project["id"])
        url = f"/api/projects/{project['id']}/scoring"

        resp = client.post(url, headers=owner_headers(), json={})
        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert body["success"] is True
        assert body["data"]["score"] == 68
        assert body["data"]["status"] == "completed"
        assert body["metadata"]["aiEnabled"] is True
        assert resp.headers["access-control-allow-origin"] == "*"

        again = client.post(url, headers=owner_headers(), json={})
        assert again.status_code == 409
        conflict = again.json()
        assert conflict["success"] is False
        assert conflict["existingScoring"]["id"] == body["data"]["id"]
        assert "processingTimeMs" in conflict["metadata"]
        assert llm.generate.await_count == 1

        forced = client.post(url, headers=owner_headers(), json={"force": True})
        assert forced.status_code == 200
        assert forced.json()["data"]["id"] != body["data"]["id"]

    def test_no_body(self, client):
        project = create_project(client)
        publish(client, project["id"])
        resp = client.post(f"/api/projects/{project['id']}/scoring", headers=owner_headers())
        assert resp.status_code == 200

    def test_unpublished_project(self, client, llm):
        project = create_project(client)
        resp = client.post(f"/api/projects/{project['id']}/scoring", headers=owner_headers(), json={})
        assert resp.status_code == 400
        assert resp.json()["error"] == "Project has no public snapshot available for scoring"
        llm.generate.assert_not_awaited()

    def test_invalid_project_id(self, client):
        resp = client.post("/api/projects/abc/scoring", headers=owner_headers(), json={})
        assert resp.status_code == 400
        assert resp.json()["error"] == "Invalid project ID format"
        assert resp.headers["access-control-allow-origin"] == "*"

    def test_unauthenticated(self, client):
        project = create_project(client)
        resp = client.post(f"/api/projects/{project['id']}/scoring", json={})
        assert resp.status_code == 401

    def test_force_must_be_boolean(self, client):
        project = create_project(client)
        publish(client, project["id"])
        resp = client.post(f"/api/projects/{project['id']}/scoring", headers=owner_headers(),
                           json={"force": "yes"})
        assert resp.status_code == 400
        assert resp.json()["details"][0]["field"] == "force"


# ---------------------------------------------------------------------------
# Tests: delete and profile
# ---------------------------------------------------------------------------


class TestDeleteAndProfile:
    def test_delete_project(self, client, storage):
        project = create_project(client)
        resp = client.delete(f"/api/projects/{project['id']}", headers=owner_headers())
        assert resp.status_code == 200
        assert resp.json() == {"success": True}
        storage.delete_project_files.assert_awaited_once()
        assert client.get(f"/api/projects/{project['id']}", headers=owner_headers()).status_code == 404

    def test_stranger_cannot_delete(self, client, storage):
        project = create_project(client)
        resp = client.delete(f"/api/projects/{project['id']}", headers=auth_header(STRANGER_ID))
        assert resp.status_code == 403
        storage.delete_project_files.assert_not_awaited()

    def test_profile_created_on_first_access(self, client):
        resp = client.get("/api/profile", headers=owner_headers())
        assert resp.status_code == 200
        data = resp.json()
        assert data["id"] == str(OWNER_ID)
        assert data["nickname"] == "founder"
        assert data["full_name"] == "Ada Founder"

    def test_update_profile(self, client):
        resp = client.put("/api/profile", headers=owner_headers(), json={"bio": "Robots.", "city": "Munich"})
        assert resp.status_code == 200
        assert resp.json()["bio"] == "Robots."

    def test_nickname_taken(self, client, session_factory):
        with session_factory() as session:
            session.add(UserProfile(id=uuid.uuid4(), nickname="taken-name"))
            session.commit()
        resp = client.put("/api/profile", headers=owner_headers(), json={"nickname": "taken-name"})
        assert resp.status_code == 409
        assert resp.json()["error"] == "Nickname is already taken"


# ---------------------------------------------------------------------------
# Tests: partial updates
# ---------------------------------------------------------------------------


class TestPartialUpdates:
    def test_null_member_name_is_ignored(self, client):
        project = create_project(client)
        base = f"/api/projects/{project['id']}/team-members"
        member = client.post(base, headers=owner_headers(),
                             json={"name": "Bob Engineer", "email": "bob@acme.example"}).json()
        resp = client.put(f"{base}/{member['id']}", headers=owner_headers(),
                          json={"name": None, "status": None, "email": None})
        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert body["name"] == "Bob Engineer"
        assert body["status"] == "active"
        assert body["email"] is None

    def test_null_document_slug_is_ignored(self, client):
        project = create_project(client)
        base = f"/api/projects/{project['id']}/documents"
        doc = client.post(base, headers=owner_headers(), json={"title": "Pitch Deck", "slug": "pitch-deck"}).json()
        resp = client.put(f"{base}/{doc['id']}", headers=owner_headers(),
                          json={"slug": None, "is_public": None, "title": "Deck v2", "description": None})
        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert body["slug"] == "pitch-deck"
        assert body["is_public"] is False
        assert body["title"] == "Deck v2"


# ---------------------------------------------------------------------------
# Tests: bulk team operations
# ---------------------------------------------------------------------------


class TestBulkTeamMembers:
    def _members(self, client, project_id, *names):
        base = f"/api/projects/{project_id}/team-members"
        return [client.post(base, headers=owner_headers(), json={"name": n}).json()["id"] for n in names]

    def test_deactivate(self, client):
        project = create_project(client)
        ids = self._members(client, project["id"], "Bob", "Carol")
        resp = client.post(f"/api/projects/{project['id']}/team-members/bulk", headers=owner_headers(),
                           json={"action": "deactivate", "team_member_ids": ids})
        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert body["affected_count"] == 2
        assert {m["status"] for m in body["team_members"]} == {"inactive"}

    def test_delete(self, client):
        project = create_project(client)
        ids = self._members(client, project["id"], "Bob", "Carol")
        resp = client.post(f"/api/projects/{project['id']}/team-members/bulk", headers=owner_headers(),
                           json={"action": "delete", "team_member_ids": ids})
        assert resp.status_code == 200
        listed = [m["id"] for m in client.get(f"/api/projects/{project['id']}/team-members",
                                              headers=owner_headers()).json()]
        assert not set(ids) & set(listed)

    def test_delete_refused_for_locked_snapshot_members(self, client):
        project = create_project(client)
        publish(client, project["id"])
        ceo = client.get(f"/api/projects/{project['id']}/team-members", headers=owner_headers()).json()[0]
        resp = client.post(f"/api/projects/{project['id']}/team-members/bulk", headers=owner_headers(),
                           json={"action": "delete", "team_member_ids": [ceo["id"]]})
        assert resp.status_code == 409
        assert "locked snapshots" in resp.json()["error"]

    def test_unknown_member(self, client):
        project = create_project(client)
        resp = client.post(f"/api/projects/{project['id']}/team-members/bulk", headers=owner_headers(),
                           json={"action": "invite", "team_member_ids": [str(uuid.uuid4())]})
        assert resp.status_code == 404

    def test_invalid_action(self, client):
        project = create_project(client)
        ids = self._members(client, project["id"], "Bob")
        resp = client.post(f"/api/projects/{project['id']}/team-members/bulk", headers=owner_headers(),
                           json={"action": "promote", "team_member_ids": ids})
        assert resp.status_code == 400

    def test_stranger_denied(self, client):
        project = create_project(client)
        ids = self._members(client, project["id"], "Bob")
        resp = client.post(f"/api/projects/{project['id']}/team-members/bulk", headers=auth_header(STRANGER_ID),
                           json={"action": "deactivate", "team_member_ids": ids})
        assert resp.status_code == 403


# ---------------------------------------------------------------------------
# Tests: scoring CORS and provider setup
# ---------------------------------------------------------------------------


class TestScoringCors:
    def test_browser_preflight_gets_scoring_methods(self, client):
        resp = client.options(f"/api/projects/{uuid.uuid4()}/scoring", headers={
            "Origin": "https://app.example",
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "authorization, content-type",
        })
        assert resp.status_code == 200
        assert resp.headers["access-control-allow-methods"] == "POST, OPTIONS"
        assert resp.headers["access-control-allow-origin"] == "*"

    def test_other_routes_keep_site_cors(self, client):
        resp = client.options("/api/projects", headers={
            "Origin": "https://app.example", "Access-Control-Request-Method": "PUT",
        })
        assert resp.status_code == 200
        assert "PUT" in resp.headers["access-control-allow-methods"]

    def test_unknown_provider_uses_fallback(self, client, monkeypatch):
        from deepvest.app import app, llm_client
        app.dependency_overrides.pop(llm_client)
        monkeypatch.setenv("LLM_PROVIDER", "mystery")
        project = create_project(client)
        publish(client, project["id"])
        resp = client.post(f"/api/projects/{project['id']}/scoring", headers=owner_headers(), json={})
        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert body["metadata"]["aiEnabled"] is False
        assert body["metadata"]["llmError"] == "LLM provider misconfigured"
        assert resp.headers["access-control-allow-methods"] == "POST, OPTIONS"


# ---------------------------------------------------------------------------
# Tests: leaderboard
# ---------------------------------------------------------------------------


def llm_answer(score: float) -> str:
    return json.dumps({**json.loads(LLM_JSON), "score": score})


class TestLeaderboard:
    def _scored(self, client, slug):
        project = create_project(client, slug=slug)
        publish(client, project["id"])
        resp = client.post(f"/api/projects/{project['id']}/scoring", headers=owner_headers(), json={})
        assert resp.status_code == 200, resp.text
        return project

    def test_ranked_by_score(self, client, llm):
        llm.generate.return_value = llm_answer(55)
        low = self._scored(client, "low-score")
        llm.generate.return_value = llm_answer(91)
        high = self._scored(client, "high-score")
        create_project(client, slug="never-scored")

        body = client.get("/api/leaderboard").json()
        assert [p["project_id"] for p in body["projects"]] == [high["id"], low["id"]]
        top = body["projects"][0]
        assert top["score"] == 91
        assert top["project_slug"] == "high-score"
        assert top["project_name"] == "Acme Robotics"
        assert top["snapshot_version"] == 1
        assert body["pagination"] == {"page": 1, "limit": 10, "offset": 0, "hasMore": False}

    def test_min_score_and_paging(self, client, llm):
        for slug, score in (("alpha-co", 40), ("beta-co", 70), ("gamma-co", 80)):
            llm.generate.return_value = llm_answer(score)
            self._scored(client, slug)

        filtered = client.get("/api/leaderboard?min_score=60").json()
        assert [p["project_slug"] for p in filtered["projects"]] == ["gamma-co", "beta-co"]

        first = client.get("/api/leaderboard?limit=2").json()
        assert first["pagination"]["hasMore"] is True
        second = client.get("/api/leaderboard?limit=2&page=2").json()
        assert [p["project_slug"] for p in second["projects"]] == ["alpha-co"]
        assert second["pagination"]["offset"] == 2

    def test_fallback_and_hidden_projects_left_out(self, client, llm):
        llm.configured = False
        self._scored(client, "mock-only")
        llm.configured = True
        llm.generate.return_value = llm_answer(77)
        hidden = self._scored(client, "hidden-co")
        client.post(f"/api/projects/{hidden['id']}/publication", headers=owner_headers(),
                    json={"isCurrentlyPublic": True})

        slugs = [p["project_slug"] for p in client.get("/api/leaderboard").json()["projects"]]
        assert "mock-only" not in slugs
        assert "hidden-co" not in slugs

    def test_limit_bounds(self, client):
        assert client.get("/api/leaderboard?limit=500").status_code == 400
        assert client.get("/api/leaderboard?min_score=120").status_code == 400


# ---------------------------------------------------------------------------
# Tests: transcription
# ---------------------------------------------------------------------------


@pytest.fixture()
def gemini(client):
    from deepvest.app import app, transcriber
    fake = MagicMock()
    fake.configured = True
    fake.model = "gemini-2.0-flash"
    fake.transcribe = AsyncMock(return_value="# Pitch Deck\nWe build robots.")
    app.dependency_overrides[transcriber] = lambda: fake
    return fake


@pytest.fixture()
def download(monkeypatch):
    fetch = AsyncMock(return_value=DownloadedFile(data=b"%PDF-1.7", mime_type="application/pdf"))
    monkeypatch.setattr("deepvest.transcribe.download_file", fetch)
    return fetch


class TestTranscription:
    def test_transcribe_url(self, client, gemini, download):
        resp = client.post("/api/transcribe", headers=owner_headers(),
                           json={"url": "https://cdn.example/deck.pdf", "prompt": "Transcribe"})
        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert body["success"] is True
        assert body["result"].startswith("# Pitch Deck")
        assert body["metadata"] == {"fileSize": 8, "mimeType": "application/pdf", "model": "gemini-2.0-flash"}
        gemini.transcribe.assert_awaited_once_with("Transcribe", b"%PDF-1.7", "application/pdf")

    def test_requires_auth(self, client, gemini, download):
        resp = client.post("/api/transcribe", json={"url": "https://cdn.example/deck.pdf", "prompt": "x"})
        assert resp.status_code == 401
        download.assert_not_awaited()

    def test_prompt_required(self, client, gemini, download):
        resp = client.post("/api/transcribe", headers=owner_headers(),
                           json={"url": "https://cdn.example/deck.pdf", "prompt": ""})
        assert resp.status_code == 400

    def test_not_configured(self, client, gemini, download):
        gemini.configured = False
        resp = client.post("/api/transcribe", headers=owner_headers(),
                           json={"url": "https://cdn.example/deck.pdf", "prompt": "x"})
        assert resp.status_code == 500
        assert resp.json()["error"] == "Transcription service not configured"

    def test_document_content_is_filled(self, client, gemini, download):
        project = create_project(client)
        base = f"/api/projects/{project['id']}/documents"
        doc = client.post(base, headers=owner_headers(), json={
            "title": "Pitch Deck", "slug": "pitch-deck", "file_urls": ["https://cdn.example/deck.pdf"],
        }).json()
        resp = client.post(f"{base}/{doc['id']}/transcribe", headers=owner_headers())
        assert resp.status_code == 200, resp.text
        assert resp.json()["document"]["content"] == "# Pitch Deck\nWe build robots."
        download.assert_awaited_once()
        assert download.await_args.args[0] == "https://cdn.example/deck.pdf"

    def test_document_without_file(self, client, gemini, download):
        project = create_project(client)
        base = f"/api/projects/{project['id']}/documents"
        doc = client.post(base, headers=owner_headers(), json={"title": "Notes", "slug": "notes"}).json()
        resp = client.post(f"{base}/{doc['id']}/transcribe", headers=owner_headers())
        assert resp.status_code == 400
        assert resp.json()["error"] == "Document has no file to transcribe"
