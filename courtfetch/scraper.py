"""Searching the court website for cases and collecting their details."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Optional, Union
from urllib.parse import urljoin

import httpx
from bs4 import BeautifulSoup, Tag

from .captcha import CaptchaError, CaptchaSolver
from .config import Config
from .database import CaseInfo
from .logger import Logger
from .parser import Page, Parser, ParsingError, element_text

_SEARCH_PATH = "/app/get-case-type-status"
_NAVIGATION_TIMEOUT = 15.0
_ACCEPT_LANGUAGE = "en-US,en;q=0.9"
_ERROR_SELECTORS = ("div.error", "div.alert-danger", "span.error-message", "div#errormsg")
_NO_RECORDS_HINTS = ("no record", "not found", "invalid case")
_NO_RECORDS_MESSAGE = "No records found for the given case details"
_CAPTCHA_INPUT_SELECTOR = (
    "input[name='captcha'], input[id*='captcha'], input[type='text'][placeholder*='captcha']"
)
_UNSUBMITTED_INPUT_TYPES = frozenset({"submit", "button", "image", "reset", "file"})


class ScraperError(Exception):
    """Raised when a search fails; ``raw_html`` holds the page seen, if any."""

    def __init__(self, message: str, raw_html: str = ""):
        super().__init__(message)
        self.raw_html = raw_html


@dataclass(frozen=True)
class CaseQuery:
    """The three values that identify a case."""

    case_type: str
    case_number: str
    filing_year: str

    def validate(self) -> CaseQuery:
        """Return the query, or raise ValueError when a value is missing."""
        if not self.case_type:
            raise ValueError("case type is required")
        if not self.case_number:
            raise ValueError("case number is required")
        if not self.filing_year:
            raise ValueError("filing year is required")
        return self


@dataclass
class CaseResult:
    """Outcome of one search of a batch."""

    query: CaseQuery
    case_info: Optional[CaseInfo] = None
    raw_html: str = ""
    error: Optional[Exception] = None


def _option_text(option: Tag) -> str:
    return element_text(option).strip()


def _option_value(option: Tag) -> str:
    value = option.get("value")
    return value if value is not None else _option_text(option)


def _field_name(field: Tag) -> str:
    return field.get("name") or field.get("id") or ""


class Scraper:
    """Fills in the court's case status form and reads the pages it leads to.

    Each search runs in its own HTTP session, so searches may run in parallel.
    """

    def __init__(
        self,
        config: Config,
        logger: Optional[Logger] = None,
        client_factory: Optional[Callable[[], httpx.Client]] = None,
        captcha_solver_factory: Optional[Callable[[httpx.Client], CaptchaSolver]] = None,
    ):
        self._config = config
        self._logger = logger or Logger(logging.getLogger("courtfetch.scraper"))
        self._client_factory = client_factory or self._default_client
        self._captcha_solver_factory = captcha_solver_factory or (
            lambda client: CaptchaSolver(config, self._logger, client=client)
        )
        self._parser = Parser(self._logger)
        self._lock = threading.Lock()
        self._sessions: set[httpx.Client] = set()
        self._closed = False

    def _default_client(self) -> httpx.Client:
        return httpx.Client(
            headers={"User-Agent": self._config.user_agent, "Accept-Language": _ACCEPT_LANGUAGE},
            follow_redirects=True,
        )

    def _open_session(self) -> httpx.Client:
        with self._lock:
            if self._closed:
                raise ScraperError("failed to create page: scraper is closed")
            try:
                client = self._client_factory()
            except (OSError, httpx.HTTPError) as exc:
                raise ScraperError(f"failed to create page: {exc}") from exc
            self._sessions.add(client)
            return client

    def _end_session(self, client: httpx.Client) -> None:
        with self._lock:
            self._sessions.discard(client)
        client.close()

    def close(self) -> None:
        """Close every open session; later searches fail."""
        with self._lock:
            self._closed = True
            sessions = list(self._sessions)
            self._sessions.clear()
        for client in sessions:
            client.close()

    def __enter__(self) -> Scraper:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def _seconds(self, timeout: Union[timedelta, float, None]) -> float:
        if timeout is None:
            return self._config.scraper_timeout.total_seconds()
        if isinstance(timeout, timedelta):
            return timeout.total_seconds()
        return float(timeout)

    def search_case(
        self,
        case_type: str,
        case_number: str,
        filing_year: str,
        timeout: Union[timedelta, float, None] = None,
    ) -> tuple[CaseInfo, str]:
        """Search for a case; return its details and the HTML of the results page."""
        deadline = time.monotonic() + self._seconds(timeout)
        client = self._open_session()
        try:
            return self._search(client, case_type, case_number, filing_year, deadline)
        finally:
            self._end_session(client)

    def _fetch(
        self,
        client: httpx.Client,
        method: str,
        url: str,
        deadline: float,
        cap: Optional[float] = None,
        **kwargs: Any,
    ) -> Page:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise ScraperError("search timed out")
        request_timeout = min(remaining, cap) if cap else remaining
        headers = {"User-Agent": self._config.user_agent, "Accept-Language": _ACCEPT_LANGUAGE}
        try:
            response = client.request(method, url, headers=headers, timeout=request_timeout, **kwargs)
        except httpx.HTTPError as exc:
            raise ScraperError(str(exc) or type(exc).__name__) from exc
        return Page(response.text, str(response.url))

    def _required(self, page: Page, selector: str, message: str) -> Tag:
        element = page.element(selector)
        if element is None:
            self._logger.error(message)
            raise ScraperError(message, page.html)
        return element

    def _choose_option(self, select: Tag, wanted: str, label: str, page: Page) -> str:
        options = select.select("option")
        matchers = (
            lambda option: _option_text(option) == wanted or _option_value(option) == wanted,
            lambda option: wanted in _option_text(option),
        )
        for matches in matchers:
            for option in options:
                if matches(option):
                    return _option_value(option)
        raise ScraperError(f"option {wanted!r} not found in {label}", page.html)

    def _form_submission(
        self, page: Page, form: Optional[Tag], submit: Tag
    ) -> tuple[str, str, dict[str, str]]:
        scope: Union[Tag, BeautifulSoup] = form if form is not None else page.soup
        data: dict[str, str] = {}
        for field in scope.select("input, select, textarea"):
            name = field.get("name")
            if not name or field.has_attr("disabled"):
                continue
            if field.name == "input":
                kind = (field.get("type") or "text").lower()
                if kind in _UNSUBMITTED_INPUT_TYPES:
                    continue
                if kind in ("checkbox", "radio"):
                    if field.has_attr("checked"):
                        data[name] = field.get("value", "on")
                    continue
                data[name] = field.get("value", "")
            elif field.name == "select":
                options = field.select("option")
                chosen = next(
                    (option for option in options if option.has_attr("selected")),
                    options[0] if options else None,
                )
                if chosen is not None:
                    data[name] = _option_value(chosen)
            else:
                data[name] = field.get_text()

        if submit.get("name"):
            data[submit["name"]] = submit.get("value", "")

        method = ((form.get("method") if form is not None else None) or "get").upper()
        action = (form.get("action") if form is not None else None) or ""
        url = urljoin(page.url, action) if action else page.url
        return method, url, data

    def _search(
        self,
        client: httpx.Client,
        case_type: str,
        case_number: str,
        filing_year: str,
        deadline: float,
    ) -> tuple[CaseInfo, str]:
        url = self._config.court_base_url + _SEARCH_PATH
        self._logger.info("Navigating to court website", url=url)
        try:
            page = self._fetch(client, "GET", url, deadline, cap=_NAVIGATION_TIMEOUT)
        except ScraperError as exc:
            self._logger.error("Navigation failed", url=url, error=str(exc))
            raise ScraperError(f"failed to navigate: {exc}") from exc
        self._logger.info("Page info", url=page.url)

        fields: dict[str, str] = {}

        case_type_select = self._required(page, "#case_type", "case type select not found")
        fields[_field_name(case_type_select)] = self._choose_option(
            case_type_select, case_type, "#case_type", page
        )
        self._logger.debug("Selected case type", type=case_type)

        case_number_input = self._required(page, "#case_number", "case number input not found")
        fields[_field_name(case_number_input)] = case_number
        self._logger.debug("Entered case number", number=case_number)

        year_select = self._required(page, "#case_year", "year select not found")
        fields[_field_name(year_select)] = self._choose_option(year_select, filing_year, "#case_year", page)
        self._logger.debug("Selected year", year=filing_year)

        code_element = page.element("#captcha-code")
        if code_element is not None:
            code = element_text(code_element)
            self._logger.info("CAPTCHA found", code=code)
            code_input = page.element("#captchaInput")
            if code_input is not None:
                fields[_field_name(code_input)] = code
                self._logger.debug("Entered CAPTCHA", code=code)
            else:
                self._logger.warn("CAPTCHA input not found")
        else:
            self._logger.debug("No CAPTCHA found on page")

        try:
            solved = self._captcha_solver_factory(client).solve(page)
        except CaptchaError as exc:
            raise ScraperError(f"captcha handling failed: {exc}") from exc
        if solved:
            captcha_input = page.element(_CAPTCHA_INPUT_SELECTOR)
            if captcha_input is not None:
                fields[_field_name(captcha_input)] = solved

        submit = self._required(page, "#search", "submit button not found")
        method, action, data = self._form_submission(page, submit.find_parent("form"), submit)
        data.update(fields)

        self._logger.debug("Submitting search form", url=action)
        payload = {"data": data} if method == "POST" else {"params": data}
        try:
            results_page = self._fetch(client, method, action, deadline, **payload)
        except ScraperError as exc:
            raise ScraperError(f"failed to submit search: {exc}") from exc

        error_message = self.check_for_errors(results_page)
        if error_message:
            raise ScraperError(f"search error: {error_message}")

        html = results_page.html
        try:
            case_info, detail_page = self._parse_results(client, results_page, deadline)
        except (ParsingError, ScraperError) as exc:
            raise ScraperError(f"failed to parse results: {exc}", html) from exc

        try:
            self._fetch_additional_details(client, detail_page, case_info, deadline)
        except (ParsingError, ScraperError) as exc:
            self._logger.warn("Failed to fetch additional details", error=str(exc))

        return case_info, html

    def _parse_results(self, client: httpx.Client, page: Page, deadline: float) -> tuple[CaseInfo, Page]:
        table = page.element("table.table")
        if table is None:
            raise ParsingError("no results table found")
        link = table.select_one("a[href*='view']")
        if link is not None:
            page = self._fetch(client, "GET", urljoin(page.url, link.get("href", "")), deadline)
        return self._parser.parse_case_details(page), page

    def _fetch_additional_details(
        self, client: httpx.Client, page: Page, case_info: CaseInfo, deadline: float
    ) -> None:
        orders_tab = next(
            (
                link
                for link in page.elements("a")
                if link.get("href")
                and ("Orders" in element_text(link) or "Judgements" in element_text(link))
            ),
            None,
        )
        if orders_tab is None:
            return
        orders_page = self._fetch(client, "GET", urljoin(page.url, orders_tab["href"]), deadline)
        case_info.orders = self._parser.parse_orders(orders_page)

    def check_for_errors(self, page: Page) -> str:
        """Return an error message shown on the page, or an empty string."""
        for selector in _ERROR_SELECTORS:
            element = page.element(selector)
            if element is not None:
                text = element_text(element)
                if text:
                    return text
        body = page.text.lower()
        if any(hint in body for hint in _NO_RECORDS_HINTS):
            return _NO_RECORDS_MESSAGE
        return ""

    def search_case_concurrent(self, queries: Iterable[CaseQuery]) -> list[CaseResult]:
        """Run the searches in parallel; results come back in the order of the queries."""
        queries = list(queries)
        if not queries:
            return []

        def run(query: CaseQuery) -> CaseResult:
            try:
                case_info, html = self.search_case(query.case_type, query.case_number, query.filing_year)
            except ScraperError as exc:
                return CaseResult(query=query, case_info=None, raw_html=exc.raw_html, error=exc)
            return CaseResult(query=query, case_info=case_info, raw_html=html, error=None)

        with ThreadPoolExecutor(max_workers=max(1, self._config.max_concurrent_scrapes)) as pool:
            return list(pool.map(run, queries))