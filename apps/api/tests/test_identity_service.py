import uuid

from sqlalchemy import select

from threadsync.db.models import Author, Thread
from threadsync.services import identity_service


def test_format_and_parse_github_id():
    ref = identity_service.format_github_id(998, "acme", "widgets")

    assert ref == "github:acme/widgets#998"
    assert identity_service.parse_github_id(ref) == ("acme", "widgets", 998)
    assert identity_service.parse_github_id("998") is None
    assert identity_service.parse_github_id("github:acme#998") is None


def test_github_reference_keys_cover_raw_and_formatted():
    assert identity_service.github_reference_keys(5, "acme", "widgets") == ["5", "github:acme/widgets#5"]
    assert identity_service.github_reference_keys(5, None, None) == ["5"]


def test_find_threads_by_issue_id_skips_deleted(db, test_org):
    from datetime import datetime, timezone

    live = Thread(organization_id=test_org.id, name="Live", external_issue_id="github:acme/widgets#5")
    gone = Thread(
        organization_id=test_org.id,
        name="Gone",
        external_issue_id="5",
        deleted_at=datetime.now(timezone.utc),
    )
    db.add_all([live, gone])
    db.commit()

    assert identity_service.find_threads_by_issue_id(db, 5, "acme", "widgets") == [live]


def test_get_or_create_author_is_idempotent(db, test_org):
    first = identity_service.get_or_create_author(db, test_org.id, "U1", "Riley")
    second = identity_service.get_or_create_author(db, test_org.id, "U1", "Riley Renamed")

    assert first.id == second.id
    assert second.name == "Riley"
    assert len(db.scalars(select(Author)).all()) == 1


def test_get_or_create_author_recovers_from_lost_race(db, test_org, monkeypatch):
    winner = Author(organization_id=test_org.id, meta_id="U1", name="Riley")
    db.add(winner)
    db.commit()

    original = identity_service.get_author_by_meta_id
    calls = []

    def first_lookup_misses(session, org_id, meta_id):
        # A concurrent insert lands between the first lookup and our insert
        calls.append(meta_id)
        if len(calls) == 1:
            return None
        return original(session, org_id, meta_id)

    monkeypatch.setattr(identity_service, "get_author_by_meta_id", first_lookup_misses)

    author = identity_service.get_or_create_author(db, test_org.id, "U1", "Riley")

    assert author.id == winner.id
    assert len(db.scalars(select(Author)).all()) == 1


def test_authors_are_scoped_per_organization(db, test_org):
    from threadsync.db.models import Organization

    other = Organization(id=uuid.uuid4(), name="Other", slug=f"other-{uuid.uuid4().hex[:8]}")
    db.add(other)
    db.commit()

    a = identity_service.get_or_create_author(db, test_org.id, "U1", "Riley")
    b = identity_service.get_or_create_author(db, other.id, "U1", "Riley")

    assert a.id != b.id
