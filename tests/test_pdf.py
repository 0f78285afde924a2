from datetime import datetime, timedelta
from pathlib import Path

import httpx
import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from courtfetch.database import Base, CaseInfo, Order
from courtfetch.pdf import PDFDownloadError, PDFDownloader

PDF_BYTES = b"%PDF-1.4 sample content"


@pytest.fixture
def engine(tmp_path):
    eng = create_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


def _store(engine, *orders):
    with Session(engine, expire_on_commit=False) as session:
        case = CaseInfo(
            case_number="CS/1234/2023",
            case_type="CS",
            filing_year="2023",
            orders=list(orders),
        )
        session.add(case)
        session.commit()
    return orders


def _client(handler):
    return httpx.Client(transport=httpx.MockTransport(handler))


def _ok_handler(seen):
    def handler(request):
        seen.append(request)
        if "missing" in str(request.url):
            return httpx.Response(404)
        return httpx.Response(200, content=PDF_BYTES)

    return handler


def test_download_pdf_writes_file_and_sets_local_path(engine, tmp_path):
    seen = []
    (order,) = _store(
        engine,
        Order(
            order_date=datetime(2023, 3, 15),
            description="Order",
            pdf_link="https://court.example.com/orders/a.pdf",
            downloaded=False,
        ),
    )
    downloader = PDFDownloader(
        engine, save_path=tmp_path, client=_client(_ok_handler(seen)), sleep=lambda s: None
    )
    path = downloader.download_pdf(order)

    now = datetime.now()
    expected_dir = tmp_path / "pdfs" / str(now.year) / f"{now.month:02d}"
    assert path == expected_dir / f"order_{order.id}_20230315.pdf"
    assert path.read_bytes() == PDF_BYTES
    assert order.local_path == str(path)
    assert seen[0].headers["User-Agent"].startswith("Mozilla/5.0")


def test_download_pdf_bad_status_raises(engine, tmp_path):
    (order,) = _store(
        engine,
        Order(
            order_date=datetime(2023, 3, 15),
            description="Order",
            pdf_link="https://court.example.com/missing.pdf",
            downloaded=False,
        ),
    )
    downloader = PDFDownloader(
        engine, save_path=tmp_path, client=_client(_ok_handler([])), sleep=lambda s: None
    )
    with pytest.raises(PDFDownloadError, match="bad status"):
        downloader.download_pdf(order)
    assert not list((tmp_path / "pdfs").rglob("*.pdf"))


def test_download_order_pdfs_marks_only_successes(engine, tmp_path):
    _store(
        engine,
        Order(order_date=datetime(2023, 1, 2), description="good",
              pdf_link="https://court.example.com/good.pdf", downloaded=False),
        Order(order_date=datetime(2023, 1, 3), description="bad",
              pdf_link="https://court.example.com/missing.pdf", downloaded=False),
        Order(order_date=datetime(2023, 1, 4), description="nolink",
              pdf_link="", downloaded=False),
    )
    seen = []
    sleeps = []
    downloader = PDFDownloader(
        engine, save_path=tmp_path, client=_client(_ok_handler(seen)), sleep=sleeps.append
    )
    downloader.download_order_pdfs()

    assert len(seen) == 2
    assert sleeps == [2.0]
    with Session(engine) as session:
        by_desc = {o.description: o for o in session.scalars(select(Order))}
    assert by_desc["good"].downloaded is True
    assert Path(by_desc["good"].local_path).read_bytes() == PDF_BYTES
    assert by_desc["bad"].downloaded is False
    assert by_desc["nolink"].downloaded is False


def test_cleanup_old_pdfs_removes_only_old_files(engine, tmp_path):
    old_file = tmp_path / "old.pdf"
    new_file = tmp_path / "new.pdf"
    old_file.write_bytes(PDF_BYTES)
    new_file.write_bytes(PDF_BYTES)
    _store(
        engine,
        Order(order_date=datetime(2022, 1, 1), description="old", pdf_link="x",
              downloaded=True, local_path=str(old_file),
              created_at=datetime.now() - timedelta(days=40)),
        Order(order_date=datetime(2023, 1, 1), description="new", pdf_link="y",
              downloaded=True, local_path=str(new_file),
              created_at=datetime.now() - timedelta(days=1)),
    )
    downloader = PDFDownloader(engine, save_path=tmp_path, client=_client(_ok_handler([])))
    downloader.cleanup_old_pdfs(30)

    assert not old_file.exists()
    assert new_file.exists()
    with Session(engine) as session:
        by_desc = {o.description: o for o in session.scalars(select(Order))}
    assert by_desc["old"].local_path == ""
    assert by_desc["old"].downloaded is False
    assert by_desc["new"].local_path == str(new_file)
    assert by_desc["new"].downloaded is True


def test_cleanup_keeps_record_when_file_missing(engine, tmp_path):
    missing = tmp_path / "gone.pdf"
    _store(
        engine,
        Order(order_date=datetime(2022, 1, 1), description="gone", pdf_link="x",
              downloaded=True, local_path=str(missing),
              created_at=datetime.now() - timedelta(days=40)),
    )
    downloader = PDFDownloader(engine, save_path=tmp_path, client=_client(_ok_handler([])))
    downloader.cleanup_old_pdfs(30)

    with Session(engine) as session:
        order = session.scalars(select(Order)).one()
    assert order.local_path == str(missing)
    assert order.downloaded is True