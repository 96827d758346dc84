"""GitHub webhook ingestion: signature checks, close propagation, imports."""

import hashlib
import hmac
import json

import pytest
from sqlalchemy import select

from threadsync.db.enums import ThreadStatus, UpdateType
from threadsync.db.models import Message, Thread, Update


def _signed_headers(body: bytes, event: str, delivery: str = "delivery-1") -> dict:
    digest = hmac.new(b"test-github-secret", body, hashlib.sha256).hexdigest()
    return {
        "Content-Type": "application/json",
        "X-GitHub-Event": event,
        "X-GitHub-Delivery": delivery,
        "X-Hub-Signature-256": f"sha256={digest}",
    }


async def _post(client, event: str, payload: dict, delivery: str = "delivery-1"):
    body = json.dumps(payload).encode()
    return await client.post(
        "/webhooks/github", content=body, headers=_signed_headers(body, event, delivery)
    )


def _repository() -> dict:
    return {"name": "widgets", "full_name": "acme/widgets", "owner": {"login": "acme"}}


def _issue_closed(issue_id: int = 998) -> dict:
    return {
        "action": "closed",
        "issue": {"id": issue_id, "number": 12, "title": "Crash on save"},
        "repository": _repository(),
        "installation": {"id": 4242},
    }


def _linked_thread(db, org, status=ThreadStatus.OPEN, issue_ref="998") -> Thread:
    thread = Thread(
        organization_id=org.id,
        name="Crash on save",
        status=status.value,
        external_issue_id=issue_ref,
    )
    db.add(thread)
    db.commit()
    return thread


def _updates(db, thread) -> list[Update]:
    return list(db.scalars(select(Update).where(Update.thread_id == thread.id)))


@pytest.mark.asyncio
async def test_issue_closed_resolves_linked_thread(client, db, test_org):
    thread = _linked_thread(db, test_org)

    response = await _post(client, "issues", _issue_closed())

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "event": "issues.closed", "handled": True}

    db.refresh(thread)
    assert thread.status == ThreadStatus.RESOLVED
    updates = _updates(db, thread)
    assert len(updates) == 1
    assert updates[0].type == UpdateType.STATUS_CHANGED.value
    assert updates[0].replicated == {"github": True}
    assert updates[0].meta["oldStatus"] == ThreadStatus.OPEN
    assert updates[0].meta["newStatus"] == ThreadStatus.RESOLVED
    assert updates[0].meta["userName"] == "GitHub Integration"
    assert updates[0].meta["issueNumber"] == 12


@pytest.mark.asyncio
async def test_issue_closed_redelivery_is_a_no_op(client, db, test_org):
    thread = _linked_thread(db, test_org)

    await _post(client, "issues", _issue_closed())
    response = await _post(client, "issues", _issue_closed())

    assert response.status_code == 200
    db.refresh(thread)
    assert thread.status == ThreadStatus.RESOLVED
    assert len(_updates(db, thread)) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status", [ThreadStatus.RESOLVED, ThreadStatus.CLOSED, ThreadStatus.DUPLICATE]
)
async def test_issue_closed_leaves_settled_threads_alone(client, db, test_org, status):
    thread = _linked_thread(db, test_org, status=status)

    response = await _post(client, "issues", _issue_closed())

    assert response.status_code == 200
    db.refresh(thread)
    assert thread.status == status
    assert _updates(db, thread) == []


@pytest.mark.asyncio
async def test_issue_closed_transitions_only_the_open_thread_of_a_shared_issue(
    client, db, test_org
):
    resolved = _linked_thread(db, test_org, status=ThreadStatus.RESOLVED)
    open_thread = _linked_thread(db, test_org, status=ThreadStatus.OPEN)

    response = await _post(client, "issues", _issue_closed())

    assert response.json()["handled"] is True
    db.refresh(resolved)
    db.refresh(open_thread)
    assert resolved.status == ThreadStatus.RESOLVED
    assert open_thread.status == ThreadStatus.RESOLVED

    all_updates = list(db.scalars(select(Update)))
    assert len(all_updates) == 1
    assert all_updates[0].thread_id == open_thread.id
    assert _updates(db, resolved) == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status", [ThreadStatus.RESOLVED, ThreadStatus.CLOSED, ThreadStatus.DUPLICATE]
)
async def test_pull_request_closed_leaves_settled_threads_alone(client, db, test_org, status):
    thread = Thread(
        organization_id=test_org.id, name="Fix", status=status.value, external_pr_id="555"
    )
    db.add(thread)
    db.commit()

    payload = {
        "action": "closed",
        "pull_request": {"id": 555, "number": 7, "merged": True},
        "repository": _repository(),
    }
    response = await _post(client, "pull_request", payload)

    assert response.json()["handled"] is True
    db.refresh(thread)
    assert thread.status == status
    assert _updates(db, thread) == []


@pytest.mark.asyncio
async def test_issue_closed_matches_portal_formatted_reference(client, db, test_org):
    thread = _linked_thread(
        db, test_org, status=ThreadStatus.IN_PROGRESS, issue_ref="github:acme/widgets#998"
    )

    await _post(client, "issues", _issue_closed())

    db.refresh(thread)
    assert thread.status == ThreadStatus.RESOLVED


@pytest.mark.asyncio
async def test_issue_closed_ignores_unrelated_issue(client, db, test_org):
    thread = _linked_thread(db, test_org)

    response = await _post(client, "issues", _issue_closed(issue_id=1))

    assert response.json()["handled"] is True
    db.refresh(thread)
    assert thread.status == ThreadStatus.OPEN


@pytest.mark.asyncio
async def test_pull_request_closed_records_merge(client, db, test_org):
    thread = Thread(organization_id=test_org.id, name="Fix", external_pr_id="555")
    db.add(thread)
    db.commit()

    payload = {
        "action": "closed",
        "pull_request": {"id": 555, "number": 7, "merged": True},
        "repository": _repository(),
    }
    response = await _post(client, "pull_request", payload)

    assert response.json()["event"] == "pull_request.closed"
    db.refresh(thread)
    assert thread.status == ThreadStatus.RESOLVED
    (update,) = _updates(db, thread)
    assert update.meta["merged"] is True
    assert update.meta["prNumber"] == 7


@pytest.mark.asyncio
async def test_issue_opened_imports_thread_once(client, db, test_org, github_integration):
    payload = {
        "action": "opened",
        "issue": {
            "id": 31337,
            "number": 44,
            "title": "Export fails",
            "body": "Steps to reproduce",
            "html_url": "https://github.com/acme/widgets/issues/44",
            "user": {"id": 901, "login": "octocat"},
        },
        "repository": _repository(),
        "installation": {"id": 4242},
    }

    await _post(client, "issues", payload)
    await _post(client, "issues", payload, delivery="delivery-2")

    threads = list(db.scalars(select(Thread).where(Thread.organization_id == test_org.id)))
    assert len(threads) == 1
    thread = threads[0]
    assert thread.name == "Export fails"
    assert thread.external_origin == "github"
    assert thread.external_id == "github:acme/widgets#31337"
    assert thread.external_issue_id == "github:acme/widgets#31337"
    assert thread.author.name == "octocat"

    messages = list(db.scalars(select(Message).where(Message.thread_id == thread.id)))
    assert len(messages) == 1
    assert messages[0].origin == "github"


@pytest.mark.asyncio
async def test_issue_opened_for_untracked_repo_is_ignored(client, db, test_org, github_integration):
    payload = {
        "action": "opened",
        "issue": {"id": 1, "number": 1, "title": "Other"},
        "repository": {"name": "gadgets", "full_name": "acme/gadgets", "owner": {"login": "acme"}},
        "installation": {"id": 4242},
    }

    await _post(client, "issues", payload)

    assert db.scalars(select(Thread)).first() is None


@pytest.mark.asyncio
async def test_unknown_action_is_acknowledged_but_not_handled(client, db):
    response = await _post(client, "issues", {"action": "labeled"})

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "event": "issues.labeled", "handled": False}


@pytest.mark.asyncio
async def test_ping(client, db):
    response = await _post(client, "ping", {"zen": "Keep it logically awesome."})

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "event": "ping"}


@pytest.mark.asyncio
async def test_invalid_signature_is_rejected(client, db, test_org):
    thread = _linked_thread(db, test_org)
    body = json.dumps(_issue_closed()).encode()
    headers = _signed_headers(body, "issues")
    headers["X-Hub-Signature-256"] = "sha256=" + "0" * 64

    response = await client.post("/webhooks/github", content=body, headers=headers)

    assert response.status_code == 403
    db.refresh(thread)
    assert thread.status == ThreadStatus.OPEN


@pytest.mark.asyncio
async def test_missing_signature_is_rejected(client, db):
    response = await client.post(
        "/webhooks/github", content=b"{}", headers={"X-GitHub-Event": "issues"}
    )

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_oversized_payload_is_rejected(client, db, monkeypatch):
    from threadsync.core.config import settings

    monkeypatch.setattr(settings, "WEBHOOK_MAX_PAYLOAD_BYTES", 16)
    body = json.dumps(_issue_closed()).encode()

    response = await client.post("/webhooks/github", content=body, headers=_signed_headers(body, "issues"))

    assert response.status_code == 413
