from datetime import datetime

import pytest

from courtfetch.database import CaseInfo
from courtfetch.parser import Page, Parser, ParsingError

SAMPLE_HTML = """
<div class="container">
    <table class="table">
        <tr>
            <td>Case Number:</td>
            <td>CS/1234/2023</td>
        </tr>
        <tr>
            <td>Filing Date:</td>
            <td>15-03-2023</td>
        </tr>
        <tr>
            <td>Next Hearing Date:</td>
            <td>20-02-2024</td>
        </tr>
        <tr>
            <td>Case Status:</td>
            <td>Pending</td>
        </tr>
    </table>
</div>
"""


@pytest.fixture
def parser():
    return Parser()


def test_parser_with_sample_html(parser):
    info = parser.parse_case_details(Page(SAMPLE_HTML))
    assert info.case_number == "CS/1234/2023"
    assert info.filing_date == datetime(2023, 3, 15)
    assert info.next_hearing == datetime(2024, 2, 20)
    assert info.status == "Pending"
    assert info.parties == []


def test_table_other_labels(parser):
    html = """
    <div id="case_details"><table>
      <tr><th>CNR</th><td>DLHC01000045</td></tr>
      <tr><td>Case Type</td><td>CS</td></tr>
      <tr><td>Filing Number</td><td>DL/2021/00045</td></tr>
      <tr><td>Registration Date</td><td>02/01/2021</td></tr>
      <tr><td>Coram</td><td>Hon'ble Judge</td></tr>
      <tr><td>Court Number</td><td>12</td></tr>
      <tr><td>Court Complex</td><td>Saket</td></tr>
    </table></div>
    """
    info = parser.parse_case_details(Page(html))
    assert info.case_number == "DLHC01000045"
    assert info.case_type == "CS"
    assert info.filing_year == "2021"
    assert info.filing_date == datetime(2021, 1, 2)
    assert info.judge == "Hon'ble Judge"
    assert info.court_complex == "Saket"


def test_details_from_divs(parser):
    html = (
        "<div class='case-info'><span>Case No:</span><span>CS/99/2022</span>"
        "<span>Status:</span><span>Pending</span><span>Judge:</span><span>A. Sharma</span></div>"
    )
    info = parser.parse_case_details(Page(html))
    assert info.case_number == "CS/99/2022"
    assert info.status == "Pending"
    assert info.judge == "A. Sharma"


def test_details_from_text_fallback(parser):
    html = (
        "<html><body><div class='container'><p>Case No: CS/1234/2023</p><p>Year: 2023</p>"
        "<p>Filing Date: 15-03-2023</p><p>Next Date: 20-02-2024</p></div></body></html>"
    )
    info = parser.parse_case_details(Page(html))
    assert info.case_number == "CS/1234/2023"
    assert info.case_type == "CS"
    assert info.filing_year == "2023"
    assert info.filing_date == datetime(2023, 3, 15)
    assert info.next_hearing == datetime(2024, 2, 20)


def test_parse_case_details_from_text_cnr(parser):
    info = CaseInfo()
    parser.parse_case_details_from_text("CNR Number: DLHC010012342023", info)
    assert info.case_number == "DLHC010012342023"
    assert info.case_type == "DLHC010012342023"


def test_parse_case_details_from_text_keeps_existing_type(parser):
    info = CaseInfo(case_type="CRL.A")
    parser.parse_case_details_from_text("Reference FAO-12-2020 Institution on 5/6/2020", info)
    assert info.case_number == "FAO-12-2020"
    assert info.case_type == "CRL.A"
    # single-digit day and month do not match the two-digit formats
    assert info.filing_date is None


def test_missing_container(parser):
    with pytest.raises(ParsingError, match="container not found"):
        parser.parse_case_details(Page("<p>nothing</p>"))


def test_missing_case_number(parser):
    with pytest.raises(ParsingError, match="failed to extract case number"):
        parser.parse_case_details(Page("<div class='container'><p>Hello</p></div>"))


def test_case_history_sets_disposed(parser):
    html = SAMPLE_HTML + (
        "<table id='case_history'><tr><td>Pending at stage</td></tr>"
        "<tr><td>Case disposed of</td></tr></table>"
    )
    info = parser.parse_case_details(Page(html))
    assert info.status == "Disposed"


def test_parties_from_table(parser):
    html = """
    <table id="party_table">
      <tr><th>Type</th><th>Name</th></tr>
      <tr><td>Petitioner 1</td><td>Ram Kumar</td><td>S. Gupta</td><td>D/123/2010</td></tr>
      <tr><td>RESPONDENT</td><td>State</td></tr>
      <tr><td>Intervener</td><td>Trust</td></tr>
      <tr><td>Petitioner</td><td></td></tr>
    </table>
    """
    parties = parser.parse_parties(Page(html))
    assert [(p.type, p.name) for p in parties] == [
        ("Petitioner", "Ram Kumar"),
        ("Respondent", "State"),
        ("Intervener", "Trust"),
    ]
    assert parties[0].advocate_name == "S. Gupta"
    assert parties[0].advocate_code == "D/123/2010"


def test_parties_from_divs(parser):
    html = (
        "<div id='party_info'><div class='petitioner'>A Kumar and B Singh</div>"
        "<div class='respondent'>State of Delhi</div></div>"
    )
    parties = parser.parse_parties(Page(html))
    assert [(p.type, p.name) for p in parties] == [
        ("Petitioner", "A Kumar"),
        ("Petitioner", "B Singh"),
        ("Respondent", "State of Delhi"),
    ]


def test_parties_from_text(parser):
    html = "<html><body><p>Petitioner: Ram Kumar</p><p>Respondent: State of Delhi</p></body></html>"
    parties = parser.parse_parties(Page(html))
    assert [(p.type, p.name) for p in parties] == [
        ("Petitioner", "Ram Kumar"),
        ("Respondent", "State of Delhi"),
    ]


@pytest.mark.parametrize(
    "text, expected",
    [
        ("Ram Kumar and Shyam Lal & Others etc.", ["Ram Kumar", "Shyam Lal", "Others"]),
        ("  John   Doe 2 ", ["John Doe"]),
        ("A and Bo", []),
        ("Asha AND Meera", ["Asha", "Meera"]),
        ("", []),
    ],
)
def test_extract_party_names(parser, text, expected):
    assert parser.extract_party_names(text) == expected


def test_parse_orders(parser):
    html = """
    <table id="order_table">
      <tr><th>Date</th><th>Order</th><th>Judge</th><th>File</th></tr>
      <tr><td>15-03-2023</td><td>Notice issued</td><td>J. Rao</td>
          <td><a href="/orders/123.pdf">View</a></td></tr>
      <tr><td>not a date</td><td>Skipped</td></tr>
      <tr><td>01 Jan 2024</td><td>Adjourned <a href="download?id=7">get</a></td></tr>
    </table>
    """
    orders = parser.parse_orders(Page(html, url="https://court.example.com/app/case"))
    assert len(orders) == 2
    assert orders[0].order_date == datetime(2023, 3, 15)
    assert orders[0].description == "Notice issued"
    assert orders[0].judge_name == "J. Rao"
    assert orders[0].pdf_link == "https://court.example.com/orders/123.pdf"
    assert orders[1].order_date == datetime(2024, 1, 1)
    assert orders[1].pdf_link == "https://court.example.com/app/download?id=7"


def test_parse_orders_fallback_table(parser):
    html = """
    <table><tr><td>Unrelated</td></tr></table>
    <table>
      <tr><th>Date</th><th>Order details</th></tr>
      <tr><td>2023-05-10</td><td>Final order <a href="https://files.example.com/x.pdf">PDF</a></td></tr>
    </table>
    """
    orders = parser.parse_orders(Page(html))
    assert [o.pdf_link for o in orders] == ["https://files.example.com/x.pdf"]
    assert orders[0].order_date == datetime(2023, 5, 10)


def test_parse_orders_missing_table(parser):
    with pytest.raises(ParsingError, match="orders table not found"):
        parser.parse_orders(Page("<table><tr><td>Nothing</td></tr></table>"))


@pytest.mark.parametrize(
    "value, expected",
    [
        ("15-03-2023", datetime(2023, 3, 15)),
        ("15/03/2023", datetime(2023, 3, 15)),
        ("15.03.2023", datetime(2023, 3, 15)),
        ("15-Mar-2023", datetime(2023, 3, 15)),
        ("15-March-2023", datetime(2023, 3, 15)),
        ("15  Mar   2023", datetime(2023, 3, 15)),
        ("15 March 2023", datetime(2023, 3, 15)),
        ("2023-03-15", datetime(2023, 3, 15)),
        ("Mar 15, 2023", datetime(2023, 3, 15)),
        ("March 15, 2023", datetime(2023, 3, 15)),
        ("Wednesday, 15-03-2023", datetime(2023, 3, 15)),
    ],
)
def test_parse_date(parser, value, expected):
    assert parser.parse_date(value) == expected


@pytest.mark.parametrize("value", ["5-03-2023", "32-01-2023", "tomorrow", ""])
def test_parse_date_invalid(parser, value):
    with pytest.raises(ParsingError, match="unable to parse date"):
        parser.parse_date(value)


@pytest.mark.parametrize(
    "page_url, relative, expected",
    [
        ("https://court.example.com/app/case/view", "/files/a.pdf", "https://court.example.com/files/a.pdf"),
        ("https://court.example.com/app/case/view", "a.pdf", "https://court.example.com/app/case/a.pdf"),
        ("https://court.example.com/app", "http://other.example.com/b.pdf", "http://other.example.com/b.pdf"),
        ("", "a.pdf", "a.pdf"),
    ],
)
def test_make_absolute_url(parser, page_url, relative, expected):
    assert parser.make_absolute_url(page_url, relative) == expected


def test_parse_error_from_selector(parser):
    html = "<div class='error-message'>  Session expired </div><p>No records found</p>"
    assert parser.parse_error(Page(html)) == "Session expired"


def test_parse_error_from_phrase(parser):
    html = "<html><body><p>No Record Found for this case</p></body></html>"
    assert parser.parse_error(Page(html)) == "No Record Found"


def test_parse_error_none(parser):
    assert parser.parse_error(Page("<html><body><p>All good</p></body></html>")) == ""


def test_page_text_separates_blocks():
    page = Page("<html><body><p>One <b>two</b></p><div>Three</div><script>x()</script></body></html>")
    assert page.text == "One two\nThree"