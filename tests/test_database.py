import threading
from datetime import date
from decimal import Decimal

from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from balances import BalanceCache
from database import Base, write_lock
from schemas import DefinitionIn
from services import ObligationService

TODAY = date(2025, 1, 1)


def _file_engine(path):
    engine = create_engine(
        f"sqlite:///{path}", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    return engine


def _service(session: Session) -> ObligationService:
    return ObligationService(session, clock=lambda: TODAY, cache=BalanceCache())


def test_sessions_on_one_database_share_a_lock() -> None:
    engine = create_engine("sqlite:///:memory:")
    with Session(engine) as first, Session(engine) as second:
        assert write_lock(first) is write_lock(second)


def test_separate_databases_get_separate_locks(tmp_path) -> None:
    one = create_engine(f"sqlite:///{tmp_path / 'one.db'}")
    two = create_engine(f"sqlite:///{tmp_path / 'two.db'}")
    with Session(one) as first, Session(two) as second:
        assert write_lock(first) is not write_lock(second)


def test_synchronize_waits_for_the_writer_lock(tmp_path) -> None:
    engine = _file_engine(tmp_path / "obligations.db")
    with Session(engine) as session:
        definition_id = _service(session).create_definition(
            DefinitionIn(
                name="Rent",
                amount=Decimal("1200"),
                recurrence_interval_months=1,
                first_occurrence_date=date(2025, 1, 10),
            ),
            6,
        )

    results = []
    done = threading.Event()

    def worker() -> None:
        try:
            with Session(engine) as session:
                results.append(_service(session).synchronize(definition_id, 6))
        finally:
            done.set()

    with Session(engine) as holder:
        lock = write_lock(holder)
        lock.acquire()
        thread = threading.Thread(target=worker)
        try:
            thread.start()
            assert not done.wait(0.2)
            assert results == []
        finally:
            lock.release()
        assert done.wait(5)
        thread.join(5)

    assert len(results) == 1
    summary = results[0]
    assert (summary.created_count, summary.updated_count, summary.removed_count) == (
        0,
        0,
        0,
    )
