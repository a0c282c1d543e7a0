"""
Counter Tests
"""

from datetime import datetime

import pytest

from conftest import seed_firm


class TestSequences:

    def test_starts_at_one_and_increments(self, sqlalchemy_db):
        from docket_lite.counters import get_current_sequence, get_next_sequence
        from docket_lite.db.session import get_db_session

        firm = seed_firm()
        with get_db_session() as db:
            assert get_current_sequence(db, "invoice", firm["firm_id"]) is None
            assert get_next_sequence(db, "invoice", firm["firm_id"]) == 1
            assert get_next_sequence(db, "invoice", firm["firm_id"]) == 2
            assert get_current_sequence(db, "invoice", firm["firm_id"]) == 2

    def test_sequences_are_per_firm(self, sqlalchemy_db):
        from docket_lite.counters import get_next_sequence
        from docket_lite.db.session import get_db_session

        one = seed_firm(name="One", admin_email="a@one.example.com")
        two = seed_firm(name="Two", admin_email="a@two.example.com")
        with get_db_session() as db:
            get_next_sequence(db, "invoice", one["firm_id"])
            get_next_sequence(db, "invoice", one["firm_id"])
            assert get_next_sequence(db, "invoice", two["firm_id"]) == 1

    def test_rolled_back_increment_is_undone(self, sqlalchemy_db):
        from docket_lite.counters import get_current_sequence, get_next_sequence
        from docket_lite.db.session import get_db_session, new_session

        firm = seed_firm()
        with get_db_session() as db:
            get_next_sequence(db, "invoice", firm["firm_id"])

        db = new_session()
        try:
            assert get_next_sequence(db, "invoice", firm["firm_id"]) == 2
            db.rollback()
        finally:
            db.close()

        with get_db_session() as db:
            assert get_current_sequence(db, "invoice", firm["firm_id"]) == 1

    @pytest.mark.parametrize("name,firm_id", [("", "firm"), (None, "firm"), ("invoice", ""), ("invoice", None)])
    def test_name_and_firm_required(self, sqlalchemy_db, name, firm_id):
        from docket_lite.counters import get_next_sequence
        from docket_lite.db.session import get_db_session
        from docket_lite.errors import CounterError

        with get_db_session() as db:
            with pytest.raises(CounterError):
                get_next_sequence(db, name, firm_id)


class TestInitializeCounter:

    def test_seeds_value(self, sqlalchemy_db):
        from docket_lite.counters import get_next_sequence, initialize_counter
        from docket_lite.db.session import get_db_session

        firm = seed_firm()
        with get_db_session() as db:
            initialize_counter(db, "invoice", firm["firm_id"], 41)
            assert get_next_sequence(db, "invoice", firm["firm_id"]) == 42

    @pytest.mark.parametrize("value", [-1, True, 1.5])
    def test_rejects_bad_start_value(self, sqlalchemy_db, value):
        from docket_lite.counters import initialize_counter
        from docket_lite.db.session import get_db_session
        from docket_lite.errors import CounterError

        with get_db_session() as db:
            with pytest.raises(CounterError):
                initialize_counter(db, "invoice", "firm", value)

    def test_never_overwrites(self, sqlalchemy_db):
        from docket_lite.counters import initialize_counter
        from docket_lite.db.session import get_db_session
        from docket_lite.errors import CounterError

        firm = seed_firm()
        with get_db_session() as db:
            # The firm's client counter exists from bootstrap
            with pytest.raises(CounterError):
                initialize_counter(db, "client", firm["firm_id"], 0)


class TestIdentifiers:

    def test_case_number_format(self, sqlalchemy_db):
        from docket_lite.counters import generate_case_number
        from docket_lite.db.session import get_db_session

        firm = seed_firm()
        day = datetime(2026, 1, 9, 15, 30)
        with get_db_session() as db:
            assert generate_case_number(db, firm["firm_id"], now=day) == "CASE-20260109-00001"
            assert generate_case_number(db, firm["firm_id"], now=day) == "CASE-20260109-00002"
            # New day, new sequence
            assert generate_case_number(db, firm["firm_id"], now=datetime(2026, 1, 10)) == "CASE-20260110-00001"

    def test_client_ids_follow_bootstrap(self, sqlalchemy_db):
        from docket_lite.counters import generate_client_id
        from docket_lite.db.session import get_db_session

        firm = seed_firm()
        with get_db_session() as db:
            assert generate_client_id(db, firm["firm_id"]) == "C000002"

    def test_resolve_case_identifier(self, sqlalchemy_db):
        from docket_lite.counters import resolve_case_identifier
        from docket_lite.db.models import Case
        from docket_lite.db.session import get_db_session

        firm = seed_firm()
        other = seed_firm(name="Other", admin_email="a@other.example.com")
        with get_db_session() as db:
            case = Case(firm_id=firm["firm_id"], case_number="CASE-20260109-00001", title="T")
            db.add(case)
            db.flush()

            assert resolve_case_identifier(db, firm["firm_id"], case.id).id == case.id
            assert resolve_case_identifier(db, firm["firm_id"], "case-20260109-00001").id == case.id
            assert resolve_case_identifier(db, other["firm_id"], case.id) is None
            assert resolve_case_identifier(db, firm["firm_id"], "") is None

            case.deleted_at = datetime.utcnow()
            db.flush()
            assert resolve_case_identifier(db, firm["firm_id"], case.id) is None
            assert resolve_case_identifier(db, firm["firm_id"], case.id, include_deleted=True).id == case.id
