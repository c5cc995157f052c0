"""
Conversation dedup tests.

Verifies:
- One conversation per unordered admin/seller pair, whichever side asks
- Creation tiers converge on the committed record when inserts race
- Only admin/seller pairs may talk
- Selector lookups ("me", "admin", id) respect seller isolation
- Participant checks, including the opt-in role fallback
"""

import threading

import pytest

from marketplace import create_app
from marketplace.config import TestConfig
from marketplace.extensions import db
from marketplace.models import Conversation, ROLE_ADMIN
from marketplace.services import conversation_service
from marketplace.services.conversation_service import DuplicateConversation, canonical_pair
from marketplace.validation import ConflictError, ForbiddenError, NotFoundError, ValidationError

from conftest import make_user


def _count(db_session) -> int:
    return db_session.query(Conversation).count()


class TestCanonicalPair:

    def test_order_independent(self):
        assert canonical_pair(3, 7) == canonical_pair(7, 3) == (3, 7)

    def test_sorted_as_strings(self):
        assert canonical_pair(9, 10) == (10, 9)


class TestGetOrCreate:

    def test_creates_once(self, db_session, admin, seller):
        first, created = conversation_service.get_or_create_conversation(admin.id, seller.id)
        second, created_again = conversation_service.get_or_create_conversation(seller.id, admin.id)

        assert created is True
        assert created_again is False
        assert first.id == second.id
        assert _count(db_session) == 1
        assert set(first.participant_ids) == {admin.id, seller.id}

    def test_create_conversation_requires_recipient(self, db_session, admin):
        with pytest.raises(ValidationError):
            conversation_service.create_conversation(admin, None)

    def test_create_conversation_reports_created(self, db_session, admin, seller):
        _, created = conversation_service.create_conversation(seller, admin.id)
        _, created_again = conversation_service.create_conversation(admin, seller.id)
        assert (created, created_again) == (True, False)

    def test_unknown_user(self, db_session, admin):
        with pytest.raises(NotFoundError):
            conversation_service.get_or_create_conversation(admin.id, 4242)

    def test_seller_pair_forbidden(self, db_session, seller, other_seller):
        with pytest.raises(ForbiddenError):
            conversation_service.get_or_create_conversation(seller.id, other_seller.id)
        assert _count(db_session) == 0

    def test_admin_pair_forbidden(self, db_session, admin):
        second_admin = make_user(db_session, email="admin2@marketplace.test", role=ROLE_ADMIN)
        with pytest.raises(ForbiddenError):
            conversation_service.get_or_create_conversation(admin.id, second_admin.id)

    def test_self_conversation_forbidden(self, db_session, seller):
        with pytest.raises(ForbiddenError):
            conversation_service.get_or_create_conversation(seller.id, seller.id)


class TestRaceTiers:
    """Simulate a concurrent writer by hiding the committed row from lookups."""

    def _precreate(self, admin, seller) -> Conversation:
        pair = canonical_pair(admin.id, seller.id)
        conv = Conversation(participant_one_id=pair[0], participant_two_id=pair[1], unread_count=0)
        db.session.add(conv)
        db.session.commit()
        return conv

    def test_duplicate_insert_falls_back_to_requery(self, db_session, admin, seller, monkeypatch):
        existing = self._precreate(admin, seller)
        real_find = conversation_service._find_by_pair
        calls = {"n": 0}

        def stale_find(pair):
            calls["n"] += 1
            # Lookups before the insert miss the racing row
            return None if calls["n"] <= 2 else real_find(pair)

        monkeypatch.setattr(conversation_service, "_find_by_pair", stale_find)

        conv, created = conversation_service.get_or_create_conversation(admin.id, seller.id)

        assert created is False
        assert conv.id == existing.id
        assert _count(db_session) == 1

    def test_forced_insert_when_requery_misses(self, db_session, admin, seller, monkeypatch):
        def lost_race(pair):
            raise DuplicateConversation()

        monkeypatch.setattr(conversation_service, "_guarded_insert", lost_race)
        monkeypatch.setattr(conversation_service, "_find_by_pair", lambda pair: None)

        conv, created = conversation_service.get_or_create_conversation(admin.id, seller.id)

        assert created is True
        assert conv.id is not None
        assert _count(db_session) == 1

    def test_all_tiers_failing_conflicts(self, db_session, admin, seller, monkeypatch):
        self._precreate(admin, seller)
        monkeypatch.setattr(conversation_service, "_find_by_pair", lambda pair: None)

        with pytest.raises(ConflictError):
            conversation_service.get_or_create_conversation(admin.id, seller.id)
        assert _count(db_session) == 1

    def test_duplicate_signal_carries_existing(self, db_session, admin, seller):
        existing = self._precreate(admin, seller)
        with pytest.raises(DuplicateConversation) as exc:
            conversation_service._guarded_insert(canonical_pair(admin.id, seller.id))
        assert exc.value.existing.id == existing.id


def test_concurrent_requests_share_one_conversation(tmp_path):
    """Threads racing on a file-backed database end with a single row."""

    class RaceConfig(TestConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'race.sqlite3'}"

    race_app = create_app(RaceConfig)
    with race_app.app_context():
        db.create_all()
        admin = make_user(db.session, email="admin@race.test", role=ROLE_ADMIN)
        seller = make_user(db.session, email="seller@race.test")
        admin_id, seller_id = admin.id, seller.id
        db.session.remove()

    workers = 8
    barrier = threading.Barrier(workers)
    results, errors = [], []
    lock = threading.Lock()

    def worker(index):
        pair = (admin_id, seller_id) if index % 2 == 0 else (seller_id, admin_id)
        with race_app.app_context():
            try:
                barrier.wait()
                conv, _ = conversation_service.get_or_create_conversation(*pair)
                with lock:
                    results.append(conv.id)
            except Exception as e:  # collected for the assertion below
                with lock:
                    errors.append(e)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert not errors
    assert len(results) == workers
    assert len(set(results)) == 1

    with race_app.app_context():
        assert db.session.query(Conversation).count() == 1
        db.session.remove()
        db.engine.dispose()


class TestSelectors:

    def test_list_conversations_for_actor(self, db_session, admin, seller, other_seller):
        conversation_service.get_or_create_conversation(admin.id, seller.id)
        conversation_service.get_or_create_conversation(admin.id, other_seller.id)

        assert len(conversation_service.list_conversations(admin)) == 2
        assert len(conversation_service.list_conversations(seller)) == 1

    def test_seller_admin_selector(self, db_session, admin, seller, other_seller):
        mine, _ = conversation_service.get_or_create_conversation(admin.id, seller.id)
        conversation_service.get_or_create_conversation(admin.id, other_seller.id)

        result = conversation_service.get_conversations_by_user(seller, "admin")
        assert [c.id for c in result] == [mine.id]

    def test_seller_me_selector(self, db_session, admin, seller):
        mine, _ = conversation_service.get_or_create_conversation(admin.id, seller.id)
        assert [c.id for c in conversation_service.get_conversations_by_user(seller, "me")] == [mine.id]
        assert [c.id for c in conversation_service.get_conversations_by_user(seller, str(seller.id))] == [mine.id]

    def test_seller_cannot_view_other_seller(self, db_session, admin, seller, other_seller):
        with pytest.raises(ForbiddenError):
            conversation_service.get_conversations_by_user(seller, str(other_seller.id))

    def test_admin_views_pair_with_seller(self, db_session, admin, seller, other_seller):
        theirs, _ = conversation_service.get_or_create_conversation(admin.id, other_seller.id)
        conversation_service.get_or_create_conversation(admin.id, seller.id)

        result = conversation_service.get_conversations_by_user(admin, other_seller.id)
        assert [c.id for c in result] == [theirs.id]

    def test_admin_selector_without_admin(self, db_session, seller):
        with pytest.raises(NotFoundError):
            conversation_service.get_conversations_by_user(seller, "admin")

    def test_malformed_selector(self, db_session, seller):
        with pytest.raises(ValidationError):
            conversation_service.get_conversations_by_user(seller, "somebody")


class TestIsParticipant:

    def test_members_only(self, db_session, admin, seller, other_seller):
        conv, _ = conversation_service.get_or_create_conversation(admin.id, seller.id)

        assert conversation_service.is_participant(admin, conv)
        assert conversation_service.is_participant(seller, conv)
        assert not conversation_service.is_participant(other_seller, conv)

    def test_role_fallback_is_opt_in(self, app, db_session, admin, seller, other_seller, monkeypatch):
        conv, _ = conversation_service.get_or_create_conversation(admin.id, seller.id)

        monkeypatch.setitem(app.config, "CHAT_ROLE_FALLBACK_ENABLED", True)
        assert conversation_service.is_participant(other_seller, conv)

        monkeypatch.setitem(app.config, "CHAT_ROLE_FALLBACK_ENABLED", False)
        assert not conversation_service.is_participant(other_seller, conv)
