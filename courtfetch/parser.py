"""Extraction of case details, parties and orders from court result pages."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Optional, Union

from bs4 import BeautifulSoup, Comment, Declaration, Doctype, NavigableString, ProcessingInstruction, Tag

from .database import CaseInfo, Order, Party
from .logger import Logger

_BLOCK_TAGS = frozenset(
    {
        "address", "article", "aside", "blockquote", "body", "caption", "dd", "div", "dl", "dt",
        "fieldset", "figure", "footer", "form", "h1", "h2", "h3", "h4", "h5", "h6", "header",
        "hr", "html", "li", "main", "nav", "ol", "p", "pre", "section", "table", "tbody",
        "tfoot", "thead", "tr", "ul",
    }
)
_HIDDEN_TAGS = frozenset({"script", "style", "head", "template", "noscript"})
_NON_TEXT = (Comment, Declaration, Doctype, ProcessingInstruction)

_WHITESPACE = re.compile(r"\s+")
_FOUR_DIGITS = re.compile(r"\d{4}")
_CASE_NUMBER_PATTERNS = (
    re.compile(r"Case\s*No[.\s:]+([A-Z]+[/\-]?\d+[/\-]?\d+)"),
    re.compile(r"CNR\s*Number[.\s:]+([A-Z0-9]+)"),
    re.compile(r"([A-Z]+[/\-]\d+[/\-]\d{4})"),
)
_CASE_NUMBER_SEPARATOR = re.compile(r"[/\-]")
_YEAR = re.compile(r"Year[.\s:]+(\d{4})")
_DATE_IN_TEXT = re.compile(r"(\d{1,2}[\-/]\d{1,2}[\-/]\d{4})")
_PETITIONER = re.compile(r"Petitioner\(?\s?\)?:?\s*([^\n\r]+)", re.IGNORECASE)
_RESPONDENT = re.compile(r"Respondent\(?\s?\)?:?\s*([^\n\r]+)", re.IGNORECASE)
_NAME_SEPARATOR = re.compile(r"\s+(?:and|AND|And|&)\s+")
_NAME_SUFFIX = re.compile(r"\s*(?:etc\.?|\d+\.?)\Z")
_DAY_NAMES = re.compile(r"(Monday|Tuesday|Wednesday|Thursday|Friday|Saturday|Sunday),?\s*", re.IGNORECASE)

_DATE_FORMATS = tuple(
    (re.compile(pattern, re.ASCII), fmt)
    for pattern, fmt in (
        (r"\d{2}-\d{2}-\d{4}", "%d-%m-%Y"),
        (r"\d{2}/\d{2}/\d{4}", "%d/%m/%Y"),
        (r"\d{2}\.\d{2}\.\d{4}", "%d.%m.%Y"),
        (r"\d{2}-[A-Za-z]{3}-\d{4}", "%d-%b-%Y"),
        (r"\d{2}-[A-Za-z]+-\d{4}", "%d-%B-%Y"),
        (r"\d{2} [A-Za-z]{3} \d{4}", "%d %b %Y"),
        (r"\d{2} [A-Za-z]+ \d{4}", "%d %B %Y"),
        (r"\d{4}-\d{2}-\d{2}", "%Y-%m-%d"),
        (r"[A-Za-z]{3} \d{2}, \d{4}", "%b %d, %Y"),
        (r"[A-Za-z]+ \d{2}, \d{4}", "%B %d, %Y"),
    )
)

_ORDER_SELECTORS = (
    "table#order_table",
    "table.order-table",
    "div#order_details table",
    "table[summary*='order']",
    "table[summary*='Order']",
)

_ERROR_SELECTORS = (
    ".error-message",
    ".alert-danger",
    "#errorMsg",
    "div.error",
    "span.error",
    "div[style*='color:red']",
    "span[style*='color:red']",
)

_ERROR_PHRASES = (
    "No records found",
    "No Record Found",
    "Invalid case number",
    "Case not found",
    "No data available",
    "Wrong Captcha",
    "Invalid Captcha",
)


class ParsingError(Exception):
    """Raised when a page does not hold the expected information."""


def _collect_text(node: Tag, out: list[str]) -> None:
    for child in node.children:
        if isinstance(child, _NON_TEXT):
            continue
        if isinstance(child, NavigableString):
            out.append(_WHITESPACE.sub(" ", str(child)))
            continue
        if not isinstance(child, Tag) or child.name in _HIDDEN_TAGS:
            continue
        if child.name == "br":
            out.append("\n")
            continue
        block = child.name in _BLOCK_TAGS
        if block:
            out.append("\n")
        _collect_text(child, out)
        if child.name in ("td", "th"):
            out.append("\t")
        if block:
            out.append("\n")


def element_text(node: Tag) -> str:
    """Rendered text of an element: blocks on their own lines, cells separated by tabs."""
    out: list[str] = []
    _collect_text(node, out)
    lines = (re.sub(r" +", " ", line).strip(" \t") for line in "".join(out).split("\n"))
    return "\n".join(line for line in lines if line)


class Page:
    """An HTML document together with the URL it was loaded from."""

    def __init__(self, html: str, url: str = ""):
        self.html = html
        self.url = url
        self.soup = BeautifulSoup(html, "html.parser")

    def element(self, selector: str) -> Optional[Tag]:
        return self.soup.select_one(selector)

    def elements(self, selector: str) -> list[Tag]:
        return list(self.soup.select(selector))

    @property
    def body(self) -> Union[Tag, BeautifulSoup]:
        """The body element, or the whole document when it has none."""
        return self.soup.body or self.soup

    @property
    def text(self) -> str:
        return element_text(self.body)


class Parser:
    """Reads case information out of court website pages."""

    def __init__(self, logger: Optional[Logger] = None):
        self._logger = logger

    def parse_case_details(self, page: Page) -> CaseInfo:
        """Extract the case details, parties and status from a case page."""
        container = page.element("div.container, div#case_details, div.case-info")
        if container is None:
            raise ParsingError("case details container not found")

        case_info = CaseInfo()
        table = container.select_one("table")
        if table is not None:
            self._parse_case_details_from_table(table, case_info)
        if not case_info.case_number:
            self._parse_case_details_from_divs(container, case_info)
        if not case_info.case_number:
            self.parse_case_details_from_text(element_text(container), case_info)
        if not case_info.case_number:
            raise ParsingError("failed to extract case number")

        try:
            case_info.parties = self.parse_parties(page)
        except ParsingError as exc:
            if self._logger is not None:
                self._logger.warn("Failed to parse parties", error=str(exc))

        self._parse_case_history(page, case_info)
        return case_info

    def _parse_case_details_from_table(self, table: Tag, case_info: CaseInfo) -> None:
        for row in table.select("tr"):
            cells = row.select("td, th")
            if len(cells) < 2:
                continue
            label = element_text(cells[0]).strip().lower()
            value = element_text(cells[1]).strip()

            if "case number" in label or "cnr" in label:
                case_info.case_number = value
            elif "case type" in label:
                case_info.case_type = value
            elif "filing number" in label:
                match = _FOUR_DIGITS.search(value)
                if match:
                    case_info.filing_year = match.group()
            elif "filing date" in label or "date of filing" in label:
                case_info.filing_date = self._date_or_none(value)
            elif "registration date" in label:
                if case_info.filing_date is None:
                    case_info.filing_date = self._date_or_none(value)
            elif "next date" in label or "next hearing" in label:
                case_info.next_hearing = self._date_or_none(value)
            elif "stage" in label or "status" in label:
                case_info.status = value
            elif "judge" in label or "coram" in label:
                case_info.judge = value
            elif "court" in label and "court number" not in label:
                case_info.court_complex = value

    def _parse_case_details_from_divs(self, container: Tag, case_info: CaseInfo) -> None:
        elements = container.select("div, span")
        for element, following in zip(elements, elements[1:]):
            text = element_text(element).strip()
            if not text.endswith(":"):
                continue
            label = text.lower()
            value = element_text(following).strip()

            if "case no" in label:
                case_info.case_number = value
            elif "case type" in label:
                case_info.case_type = value
            elif "year" in label:
                case_info.filing_year = value
            elif "filing date" in label:
                case_info.filing_date = self._date_or_none(value)
            elif "next date" in label:
                case_info.next_hearing = self._date_or_none(value)
            elif "status" in label:
                case_info.status = value
            elif "judge" in label:
                case_info.judge = value

    def parse_case_details_from_text(self, text: str, case_info: CaseInfo) -> None:
        """Fill ``case_info`` from free text using known label patterns."""
        for pattern in _CASE_NUMBER_PATTERNS:
            match = pattern.search(text)
            if match:
                case_info.case_number = match.group(1)
                break

        if not case_info.case_type and case_info.case_number:
            case_info.case_type = _CASE_NUMBER_SEPARATOR.split(case_info.case_number)[0]

        year = _YEAR.search(text)
        if year:
            case_info.filing_year = year.group(1)

        for line in text.split("\n"):
            lower = line.lower()
            if "filing date" in lower or "institution" in lower:
                date = _DATE_IN_TEXT.search(line)
                if date:
                    case_info.filing_date = self._date_or_none(date.group())
            if "next" in lower and "date" in lower:
                date = _DATE_IN_TEXT.search(line)
                if date:
                    case_info.next_hearing = self._date_or_none(date.group())

    def parse_parties(self, page: Page) -> list[Party]:
        """Extract petitioners and respondents from a table, sections or plain text."""
        table = page.element("table#party_table, table.party-table, div#party_details table")
        if table is not None:
            return self._parse_parties_from_table(table)

        container = page.element("div#petitioner_respondent, div.party-details, div#party_info")
        if container is not None:
            return self._parse_parties_from_divs(container)

        return self._parse_parties_from_text(page.text)

    def _parse_parties_from_table(self, table: Tag) -> list[Party]:
        parties = []
        for row in table.select("tr")[1:]:
            cells = row.select("td")
            if len(cells) < 2:
                continue
            party_type = element_text(cells[0]).strip()
            if "petitioner" in party_type.lower():
                party_type = "Petitioner"
            elif "respondent" in party_type.lower():
                party_type = "Respondent"

            party = Party(type=party_type, name=element_text(cells[1]).strip())
            if len(cells) > 2:
                party.advocate_name = element_text(cells[2]).strip()
            if len(cells) > 3:
                party.advocate_code = element_text(cells[3]).strip()
            if party.name:
                parties.append(party)
        return parties

    def _parse_parties_from_divs(self, container: Tag) -> list[Party]:
        parties = []
        for selector, party_type in (
            ("div.petitioner, div#petitioner", "Petitioner"),
            ("div.respondent, div#respondent", "Respondent"),
        ):
            section = container.select_one(selector)
            if section is not None:
                parties.extend(
                    Party(type=party_type, name=name)
                    for name in self.extract_party_names(element_text(section))
                )
        return parties

    def _parse_parties_from_text(self, text: str) -> list[Party]:
        parties = []
        for pattern, party_type in ((_PETITIONER, "Petitioner"), (_RESPONDENT, "Respondent")):
            match = pattern.search(text)
            if match:
                parties.extend(
                    Party(type=party_type, name=name) for name in self.extract_party_names(match.group(1))
                )
        return parties

    def extract_party_names(self, text: str) -> list[str]:
        """Split a list of party names joined by "and" or "&"."""
        text = _WHITESPACE.sub(" ", text.strip())
        names = []
        for part in _NAME_SEPARATOR.split(text):
            name = _NAME_SUFFIX.sub("", part.strip())
            if len(name.encode("utf-8")) > 2:
                names.append(name)
        return names

    def parse_orders(self, page: Page) -> list[Order]:
        """Extract dated orders, with their PDF links, from the orders table."""
        orders_table = next(
            (table for table in map(page.element, _ORDER_SELECTORS) if table is not None), None
        )
        if orders_table is None:
            for table in page.elements("table"):
                text = element_text(table)
                if "order" in text.lower() and ("PDF" in text or "Download" in text):
                    orders_table = table
                    break
        if orders_table is None:
            raise ParsingError("orders table not found")

        orders = []
        for row in orders_table.select("tr")[1:]:
            cells = row.select("td")
            if len(cells) < 2:
                continue
            order = Order()
            date_text = element_text(cells[0]).strip()
            if date_text:
                order.order_date = self._date_or_none(date_text)
            order.description = element_text(cells[1]).strip()

            for cell in cells:
                for link in cell.select("a"):
                    href = link.get("href")
                    if href is None:
                        continue
                    lower = href.lower()
                    if "pdf" in lower or "download" in lower or "order" in lower:
                        order.pdf_link = self.make_absolute_url(page.url, href)
                        break

            if len(cells) > 2:
                order.judge_name = element_text(cells[2]).strip()

            if order.order_date is not None and order.order_date.year > 1900:
                orders.append(order)
        return orders

    def _parse_case_history(self, page: Page, case_info: CaseInfo) -> None:
        table = page.element("table#case_history, table.case-history, div#history table")
        if table is None:
            return
        for row in table.select("tr"):
            text = element_text(row).lower()
            if "disposed" in text or "decided" in text:
                case_info.status = "Disposed"
                return
            if "pending" in text:
                case_info.status = "Pending"

    def parse_date(self, date_str: str) -> datetime:
        """Parse the date formats used by Indian court websites."""
        cleaned = _WHITESPACE.sub(" ", date_str.strip())
        for candidate in (cleaned, _DAY_NAMES.sub("", cleaned)):
            for pattern, fmt in _DATE_FORMATS:
                if not pattern.fullmatch(candidate):
                    continue
                try:
                    return datetime.strptime(candidate, fmt)
                except ValueError:
                    continue
        raise ParsingError(f"unable to parse date: {_DAY_NAMES.sub('', cleaned)}")

    def _date_or_none(self, value: str) -> Optional[datetime]:
        try:
            return self.parse_date(value)
        except ParsingError:
            return None

    def make_absolute_url(self, page_url: str, relative_url: str) -> str:
        """Resolve ``relative_url`` against the URL of the page it was found on."""
        if relative_url.startswith(("http://", "https://")):
            return relative_url
        parts = page_url.split("/")
        if len(parts) < 3:
            return relative_url
        if relative_url.startswith("/"):
            return "/".join(parts[:3]) + relative_url
        return "/".join(parts[:-1]) + "/" + relative_url

    def parse_error(self, page: Page) -> str:
        """Return the error message shown on the page, or an empty string."""
        for selector in _ERROR_SELECTORS:
            element = page.element(selector)
            if element is not None:
                text = element_text(element).strip()
                if text:
                    return text

        body = page.text.lower()
        for phrase in _ERROR_PHRASES:
            if phrase.lower() in body:
                return phrase
        return ""