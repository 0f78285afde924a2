from datetime import datetime

import pytest
from sqlalchemy import create_engine, inspect, select
from sqlalchemy.orm import Session

from courtfetch.database import (
    CaseInfo,
    DatabaseError,
    Order,
    Party,
    QueryLog,
    initialize,
    migrate,
    run_migrations,
)

TABLES = {"query_logs", "case_infos", "parties", "orders"}


@pytest.fixture
def engine():
    return initialize(":memory:")


def test_initialize_creates_directory_and_tables(tmp_path):
    db_path = tmp_path / "data" / "court_cases.db"
    engine = initialize(db_path)
    assert db_path.parent.is_dir()
    assert set(inspect(engine).get_table_names()) == TABLES


def test_initialize_in_memory(engine):
    assert set(inspect(engine).get_table_names()) == TABLES


def test_initialize_directory_failure(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    with pytest.raises(DatabaseError, match="failed to create database directory"):
        initialize(blocker / "court.db")


def test_migrate_is_idempotent():
    engine = create_engine("sqlite://")
    migrate(engine)
    migrate(engine)
    assert set(inspect(engine).get_table_names()) == TABLES


def test_run_migrations_creates_indexes(engine):
    run_migrations(engine)
    inspector = inspect(engine)
    assert "idx_case_info_search" in {ix["name"] for ix in inspector.get_indexes("case_infos")}
    assert "idx_query_logs_time" in {ix["name"] for ix in inspector.get_indexes("query_logs")}
    assert "idx_orders_date" in {ix["name"] for ix in inspector.get_indexes("orders")}


def test_run_migrations_without_tables_fails():
    with pytest.raises(DatabaseError, match="failed to create indexes"):
        run_migrations(create_engine("sqlite://"))


def test_zero_values_on_construction():
    case = CaseInfo()
    order = Order()
    log = QueryLog()
    assert case.case_number == ""
    assert case.query_log_id == 0
    assert order.downloaded is False
    assert log.success is False
    assert case.filing_date is None


def test_unknown_keyword_rejected():
    with pytest.raises(TypeError):
        CaseInfo(not_a_field="x")


def test_case_with_parties_and_orders_round_trip(engine):
    with Session(engine) as session:
        case = CaseInfo(
            case_number="CS/1234/2023",
            case_type="CS",
            filing_year="2023",
            status="Pending",
            parties=[Party(name="Ram Kumar", type="Petitioner")],
            orders=[Order(description="Notice issued", order_date=datetime(2023, 3, 15))],
        )
        session.add(case)
        session.commit()
        case_id = case.id

    with Session(engine) as session:
        loaded = session.get(CaseInfo, case_id)
        data = loaded.to_dict()
    assert data["case_number"] == "CS/1234/2023"
    assert data["status"] == "Pending"
    assert [p["name"] for p in data["parties"]] == ["Ram Kumar"]
    assert data["parties"][0]["case_info_id"] == case_id
    assert data["orders"][0]["order_date"] == datetime(2023, 3, 15).isoformat()


def test_timestamps_set_on_insert(engine):
    with Session(engine) as session:
        log = QueryLog(case_type="CS", case_number="1234", filing_year="2023")
        session.add(log)
        session.commit()
        assert log.created_at is not None and log.updated_at is not None
        assert log.id > 0


def test_query_log_to_dict_keys():
    data = QueryLog(case_type="CS", success=True).to_dict()
    assert set(data) == {
        "ID",
        "CreatedAt",
        "UpdatedAt",
        "DeletedAt",
        "case_type",
        "case_number",
        "filing_year",
        "raw_response",
        "success",
        "error_message",
        "query_time",
        "ip_address",
    }
    assert data["case_type"] == "CS"
    assert data["success"] is True


def test_order_update_persists(engine):
    with Session(engine) as session:
        session.add(Order(pdf_link="https://example.com/a.pdf"))
        session.commit()
    with Session(engine) as session:
        order = session.scalars(select(Order)).one()
        order.downloaded = True
        session.commit()
    with Session(engine) as session:
        assert session.scalars(select(Order)).one().to_dict()["downloaded"] is True