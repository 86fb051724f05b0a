from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest

from snaplink import codes, crud, models, schemas
from snaplink.errors import CodeAlreadyTaken, CodeGenerationExhausted, InvalidFormat, InvalidUrl


def _link_in(url="https://example.com", code=None, **extra):
    return schemas.LinkCreate(original_url=url, custom_short_code=code, **extra)


def test_create_with_custom_code_then_find(db, make_user):
    user = make_user()
    created = crud.create_link(db, user.id, _link_in("https://example.com/docs", "docs-link", title="Docs"))

    found = crud.get_link_by_code(db, "docs-link")
    assert found.id == created.id
    assert found.original_url == "https://example.com/docs"
    assert found.title == "Docs"
    assert found.click_count == 0


def test_lookup_is_case_sensitive(db, make_user):
    user = make_user()
    crud.create_link(db, user.id, _link_in(code="Promo"))
    assert crud.get_link_by_code(db, "promo") is None
    assert crud.get_link_by_code(db, "Promo") is not None


def test_random_code_assigned_without_custom(db, make_user):
    user = make_user()
    link = crud.create_link(db, user.id, _link_in())
    assert len(link.short_code) == 7


def test_duplicate_custom_code_conflicts(db, make_user):
    alice, bob = make_user("alice"), make_user("bob")
    crud.create_link(db, alice.id, _link_in(code="promo"))
    with pytest.raises(CodeAlreadyTaken):
        crud.create_link(db, bob.id, _link_in("https://other.example", code="promo"))
    assert crud.get_link_by_code(db, "promo").owner_id == alice.id


def test_unique_constraint_wins_when_advisory_check_misses(db, make_user, monkeypatch):
    user = make_user()
    crud.create_link(db, user.id, _link_in(code="promo"))
    # simulate the other request inserting between our check and our insert
    monkeypatch.setattr(crud, "get_link_by_code", lambda db, code: None)
    with pytest.raises(CodeAlreadyTaken):
        crud.create_link(db, user.id, _link_in(code="promo"))
    assert crud.count_links(db) == 1


def test_random_code_collision_retries(db, make_user, monkeypatch):
    user = make_user()
    crud.create_link(db, user.id, _link_in(code="taken77"))
    candidates = iter(["taken77", "fresh77"])
    monkeypatch.setattr(codes, "generate", lambda: next(candidates))

    link = crud.create_link(db, user.id, _link_in())
    assert link.short_code == "fresh77"


def test_random_code_retries_are_bounded(db, make_user, monkeypatch):
    user = make_user()
    crud.create_link(db, user.id, _link_in(code="taken77"))
    calls = []

    def always_taken():
        calls.append(1)
        return "taken77"

    monkeypatch.setattr(codes, "generate", always_taken)
    with pytest.raises(CodeGenerationExhausted):
        crud.create_link(db, user.id, _link_in())
    assert len(calls) == codes.MAX_ATTEMPTS


def test_create_rejects_bad_input(db, make_user):
    user = make_user()
    with pytest.raises(InvalidUrl):
        crud.create_link(db, user.id, _link_in("not a url"))
    with pytest.raises(InvalidFormat):
        crud.create_link(db, user.id, _link_in(code="no"))


def test_expiry_is_stored_in_utc(db, make_user):
    user = make_user()
    plus_two = timezone(timedelta(hours=2))
    link = crud.create_link(db, user.id, _link_in(expires_at=datetime(2030, 1, 1, 12, 0, tzinfo=plus_two)))
    db.expire_all()
    stored = models.as_utc(crud.get_link_by_code(db, link.short_code).expires_at)
    assert stored == datetime(2030, 1, 1, 10, 0, tzinfo=timezone.utc)


def test_list_by_owner_newest_first(db, make_user):
    alice, bob = make_user("alice"), make_user("bob")
    first = crud.create_link(db, alice.id, _link_in(code="first"))
    crud.create_link(db, bob.id, _link_in(code="bobs"))
    second = crud.create_link(db, alice.id, _link_in(code="second"))

    assert [l.id for l in crud.list_links_for_owner(db, alice.id)] == [second.id, first.id]


def test_delete_is_ownership_scoped_and_cascades(db, make_user):
    alice, bob = make_user("alice"), make_user("bob")
    link = crud.create_link(db, alice.id, _link_in(code="mine"))
    db.add(models.ClickEvent(link_id=link.id, device_type="desktop"))
    db.commit()

    assert crud.delete_owned_link(db, bob.id, link.id) is None
    assert crud.get_link_by_code(db, "mine") is not None

    assert crud.delete_owned_link(db, alice.id, link.id) is not None
    assert crud.get_link_by_code(db, "mine") is None
    assert db.query(models.ClickEvent).count() == 0


def test_increment_clicks(db, make_user):
    user = make_user()
    link = crud.create_link(db, user.id, _link_in())
    crud.increment_clicks(db, link.id)
    crud.increment_clicks(db, link.id)
    db.expire_all()
    assert crud.get_link_by_code(db, link.short_code).click_count == 2


def test_delete_expired_links(db, make_user):
    user = make_user()
    now = datetime.now(timezone.utc)
    crud.create_link(db, user.id, _link_in(code="stale", expires_at=now - timedelta(days=1)))
    crud.create_link(db, user.id, _link_in(code="fresh", expires_at=now + timedelta(days=1)))
    crud.create_link(db, user.id, _link_in(code="forever"))

    removed = crud.delete_expired_links(db, now=now)

    assert [l.short_code for l in removed] == ["stale"]
    assert {l.short_code for l in crud.list_links_for_owner(db, user.id)} == {"fresh", "forever"}


def test_delete_links_for_owner(db, make_user):
    alice, bob = make_user("alice"), make_user("bob")
    crud.create_link(db, alice.id, _link_in(code="a-one"))
    crud.create_link(db, alice.id, _link_in(code="a-two"))
    crud.create_link(db, bob.id, _link_in(code="b-one"))

    assert crud.delete_links_for_owner(db, alice.id) == 2
    assert crud.count_links(db) == 1


def test_set_admin_and_banned_ips(db, make_user):
    make_user("carol")
    assert crud.set_admin(db, "carol@example.com").is_admin is True
    assert crud.set_admin(db, "nobody@example.com") is None

    assert crud.is_ip_banned(db, "203.0.113.9") is False
    crud.ban_ip(db, "203.0.113.9", reason="spam")
    crud.ban_ip(db, "203.0.113.9")
    assert crud.is_ip_banned(db, "203.0.113.9") is True
    assert db.query(models.BannedIP).count() == 1


def test_concurrent_custom_code_claims_have_one_winner(session_factory, make_user):
    alice, bob = make_user("alice"), make_user("bob")

    def claim(owner_id):
        session = session_factory()
        try:
            crud.create_link(session, owner_id, _link_in(code="promo"))
            return "created"
        except CodeAlreadyTaken:
            return "conflict"
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=2) as pool:
        outcomes = sorted(pool.map(claim, [alice.id, bob.id]))

    assert outcomes == ["conflict", "created"]


@pytest.mark.parametrize("code", [" promo ", "promo\n", "   "])
def test_custom_code_with_surrounding_whitespace_is_rejected(db, make_user, code):
    user = make_user()
    with pytest.raises(InvalidFormat):
        crud.create_link(db, user.id, _link_in(code=code))
    assert crud.count_links(db) == 0
