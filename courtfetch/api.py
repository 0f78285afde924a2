"""HTTP handlers and routes of the web interface and the JSON API."""

from __future__ import annotations

import os
import re
import time
from collections.abc import Mapping
from contextlib import nullcontext
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Union

import httpx
from flask import Flask, Response, jsonify, render_template_string, request, send_from_directory
from sqlalchemy import Engine, func, select, true
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from .cache import CaseCache, generate_cache_key
from .config import Config
from .database import CaseInfo, QueryLog
from .logger import Logger
from .scraper import CaseQuery, Scraper, ScraperError

_INTEGER = re.compile(r"[+-]?[0-9]+")
_UNSIGNED = re.compile(r"[0-9]+")
_MAX_ID = 2**32 - 1
_SEARCH_FIELDS = ("case_type", "case_number", "filing_year")
_MAX_BULK_QUERIES = 10
_PDF_TIMEOUT = 30.0
_LOGS_PAGE_SIZE = 20

_TEMPLATES = {
    "index.html": """<!doctype html>
<html><head><title>{{ title }}</title></head>
<body>
<h1>{{ title }}</h1>
<h2>{{ courtName }}</h2>
<form method="post" action="/search">
  <label>Case type
    <select name="case_type">{% for t in caseTypes %}<option value="{{ t }}">{{ t }}</option>{% endfor %}</select>
  </label>
  <label>Case number <input name="case_number" required></label>
  <label>Filing year
    <select name="filing_year">{% for y in years %}<option value="{{ y }}">{{ y }}</option>{% endfor %}</select>
  </label>
  <button type="submit">Search</button>
</form>
<p><a href="/logs">Query logs</a></p>
</body></html>
""",
    "results.html": """<!doctype html>
<html><head><title>Case {{ case.case_number }}</title></head>
<body>
<h1>Case {{ case.case_number }}</h1>
{% if fromCache %}<p class="cached">Served from cache</p>{% endif %}
<table>
  <tr><th>Case type</th><td>{{ case.case_type }}</td></tr>
  <tr><th>Filing year</th><td>{{ case.filing_year }}</td></tr>
  <tr><th>Filing date</th><td>{{ case.filing_date.strftime('%d-%m-%Y') if case.filing_date else '' }}</td></tr>
  <tr><th>Next hearing</th><td>{{ case.next_hearing.strftime('%d-%m-%Y') if case.next_hearing else '' }}</td></tr>
  <tr><th>Status</th><td>{{ case.status }}</td></tr>
  <tr><th>Judge</th><td>{{ case.judge }}</td></tr>
  <tr><th>Court complex</th><td>{{ case.court_complex }}</td></tr>
</table>
<h2>Parties</h2>
<ul>{% for party in case.parties %}<li>{{ party.type }}: {{ party.name }}{% if party.advocate_name %} (advocate {{ party.advocate_name }}){% endif %}</li>{% endfor %}</ul>
<h2>Orders</h2>
<ul>{% for order in case.orders %}<li>{{ order.order_date.strftime('%d-%m-%Y') if order.order_date else '' }} {{ order.description }}{% if order.pdf_link %} <a href="/api/download/pdf?url={{ order.pdf_link | urlencode }}">PDF</a>{% endif %}</li>{% endfor %}</ul>
{% if queryLog and queryLog.id %}<p><a href="/api/logs/{{ queryLog.id }}/raw">Raw response</a></p>{% endif %}
</body></html>
""",
    "error.html": """<!doctype html>
<html><head><title>Error</title></head>
<body><h1>Error</h1><p class="error">{{ error }}</p><p><a href="/">Back</a></p></body></html>
""",
    "captcha.html": """<!doctype html>
<html><head><title>{{ title }}</title></head>
<body>
<h1>{{ title }}</h1>
<p>Open a saved CAPTCHA by its id and send its solution.</p>
<form id="captcha-form"><input name="captcha_id"><input name="solution"><button type="submit">Send</button></form>
</body></html>
""",
    "logs.html": """<!doctype html>
<html><head><title>{{ title }}</title></head>
<body>
<h1>{{ title }}</h1>
<table>
<tr><th>Time</th><th>Case type</th><th>Number</th><th>Year</th><th>Success</th><th>Error</th></tr>
{% for log in logs %}<tr><td>{{ log.query_time }}</td><td>{{ log.case_type }}</td><td>{{ log.case_number }}</td><td>{{ log.filing_year }}</td><td>{{ log.success }}</td><td>{{ log.error_message }}</td></tr>{% endfor %}
</table>
<p>Page {{ pagination.page }} of {{ pagination.totalPages }} ({{ pagination.total }} queries)</p>
{% if pagination.page > 1 %}<a href="/logs?page={{ pagination.prevPage }}">Previous</a>{% endif %}
{% if pagination.page < pagination.totalPages %}<a href="/logs?page={{ pagination.nextPage }}">Next</a>{% endif %}
</body></html>
""",
}


def _atoi(value: str) -> int:
    """Integer value of a query parameter, 0 when it is not an integer."""
    return int(value) if _INTEGER.fullmatch(value) else 0


def _parse_id(value: str) -> Optional[int]:
    if not _UNSIGNED.fullmatch(value):
        return None
    number = int(value)
    return number if number <= _MAX_ID else None


def _live(model: type) -> Any:
    column = model.__table__.c.get("deleted_at")
    return column.is_(None) if column is not None else true()


def _paginate(statement: Any, page: int, limit: int) -> Any:
    offset = (page - 1) * limit
    if offset > 0:
        statement = statement.offset(offset)
    if limit >= 0:
        statement = statement.limit(limit)
    return statement


def _client_ip() -> str:
    forwarded = request.headers.get("X-Forwarded-For", "").split(",")[0].strip()
    if forwarded:
        return forwarded
    real_ip = request.headers.get("X-Real-Ip", "").strip()
    return real_ip or (request.remote_addr or "")


def _query_from(item: Mapping[str, Any]) -> CaseQuery:
    normalized = {str(key).replace("_", "").lower(): value for key, value in item.items()}

    def field(name: str) -> str:
        value = normalized.get(name)
        return "" if value is None else str(value)

    return CaseQuery(field("casetype"), field("casenumber"), field("filingyear"))


def _query_to_dict(query: CaseQuery) -> dict[str, str]:
    return {
        "case_type": query.case_type,
        "case_number": query.case_number,
        "filing_year": query.filing_year,
    }


def get_case_types() -> list[str]:
    """Case types offered on the search form."""
    return ["BAIL APPLN.", "CS", "CC", "CRL.M.C", "CRL.A", "CRL.REV.P", "FAO", "RFA", "RSA", "CR", "EXEC"]


def get_year_range() -> list[str]:
    """The current year and the nineteen before it, newest first."""
    current = datetime.now().year
    return [str(year) for year in range(current, current - 20, -1)]


class Handlers:
    """Request handlers; each reads the current Flask request."""

    def __init__(
        self,
        engine: Engine,
        cache: CaseCache,
        scraper: Optional[Scraper],
        logger: Logger,
        config: Config,
        captcha_dir: Union[str, os.PathLike] = "./data/captchas",
        template_dir: Union[str, os.PathLike] = "./web/templates",
        http_client: Optional[httpx.Client] = None,
    ):
        self._engine = engine
        self._cache = cache
        self._scraper = scraper
        self._logger = logger
        self._config = config
        self._captcha_dir = Path(captcha_dir)
        self._template_dir = Path(template_dir)
        self._http_client = http_client

    def _session(self) -> Session:
        return Session(self._engine, expire_on_commit=False)

    def _render(self, name: str, status: int, **context: Any) -> tuple[str, int]:
        path = self._template_dir / name
        source = path.read_text(encoding="utf-8") if path.is_file() else _TEMPLATES[name]
        return render_template_string(source, **context), status

    def _save(self, session: Session, record: Any, failure: str) -> bool:
        try:
            session.add(record)
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            self._logger.error(failure, error=str(exc))
            return False
        return True

    def _scrape(self, case_type: str, case_number: str, filing_year: str) -> tuple[CaseInfo, str]:
        if self._scraper is None:
            raise ScraperError("scraper is not available")
        return self._scraper.search_case(
            case_type, case_number, filing_year, timeout=self._config.scraper_timeout
        )

    @staticmethod
    def _cases() -> Any:
        return (
            select(CaseInfo)
            .options(selectinload(CaseInfo.parties), selectinload(CaseInfo.orders))
            .where(_live(CaseInfo))
        )

    def home_page(self) -> tuple[str, int]:
        self._logger.info("Home page accessed", ip=_client_ip())
        return self._render(
            "index.html",
            200,
            title="Court Data Fetcher",
            courtName=self._config.court_name,
            caseTypes=get_case_types(),
            years=get_year_range(),
        )

    def search_case(self) -> tuple[str, int]:
        """Handle the search form: serve from cache or scrape, log and store the result."""
        form = {name: request.values.get(name, "") for name in _SEARCH_FIELDS}
        missing = [name for name, value in form.items() if not value]
        if missing:
            return self._render(
                "error.html", 400, error="Invalid form data: " + ", ".join(missing) + " required"
            )
        case_type, case_number, filing_year = form["case_type"], form["case_number"], form["filing_year"]

        cache_key = generate_cache_key(case_type, case_number, filing_year)
        with self._session() as session:
            cached = self._cache.get(cache_key)
            if cached is not None:
                self._logger.info("Cache hit", key=cache_key)
                query_log = session.get(QueryLog, cached.query_log_id) if cached.query_log_id else None
                return self._render("results.html", 200, case=cached, queryLog=query_log, fromCache=True)

            query_log = QueryLog(
                case_type=case_type,
                case_number=case_number,
                filing_year=filing_year,
                query_time=datetime.now(),
                ip_address=_client_ip(),
            )
            self._save(session, query_log, "Failed to create query log")

            try:
                case_info, raw_html = self._scrape(case_type, case_number, filing_year)
            except ScraperError as exc:
                query_log.raw_response = exc.raw_html
                query_log.success = False
                query_log.error_message = str(exc)
                self._save(session, query_log, "Failed to update query log")
                return self._render("error.html", 500, error=f"Failed to fetch case data: {exc}")

            query_log.raw_response = raw_html
            query_log.success = True
            self._save(session, query_log, "Failed to update query log")

            case_info.query_log_id = query_log.id
            self._save(session, case_info, "Failed to save case info")

            self._cache.set(cache_key, case_info)
            return self._render("results.html", 200, case=case_info, queryLog=query_log, fromCache=False)

    def view_results(self, result_id: str) -> tuple[str, int]:
        """Show a stored case by its own id, or by the id of the query that found it."""
        number = _parse_id(result_id)
        if number is None:
            return self._render("error.html", 400, error="Invalid result ID")

        with self._session() as session:
            case_info = session.scalar(self._cases().where(CaseInfo.id == number).limit(1))
            if case_info is None:
                query_log = session.scalar(
                    select(QueryLog).where(QueryLog.id == number, _live(QueryLog)).limit(1)
                )
                if query_log is None:
                    return self._render("error.html", 404, error="Result not found")
                case_info = session.scalar(
                    self._cases()
                    .where(CaseInfo.query_log_id == query_log.id)
                    .order_by(CaseInfo.id)
                    .limit(1)
                )
                if case_info is None:
                    return self._render(
                        "error.html", 404, error="Case information not found for this query"
                    )
                return self._render("results.html", 200, case=case_info, queryLog=query_log)

            query_log = None
            if case_info.query_log_id:
                query_log = session.scalar(
                    select(QueryLog).where(QueryLog.id == case_info.query_log_id, _live(QueryLog)).limit(1)
                )
            return self._render("results.html", 200, case=case_info, queryLog=query_log)

    def get_case_api(self) -> tuple[Response, int]:
        case_type = request.args.get("type", "")
        case_number = request.args.get("number", "")
        filing_year = request.args.get("year", "")
        if not (case_type and case_number and filing_year):
            return jsonify(success=False, error="Missing required parameters: type, number, year"), 400

        cache_key = generate_cache_key(case_type, case_number, filing_year)
        cached = self._cache.get(cache_key)
        if cached is not None:
            return jsonify({"success": True, "data": cached.to_dict(), "fromCache": True}), 200

        try:
            case_info, _ = self._scrape(case_type, case_number, filing_year)
        except ScraperError as exc:
            return jsonify(success=False, error=str(exc)), 500

        self._cache.set(cache_key, case_info)
        return jsonify({"success": True, "data": case_info.to_dict(), "fromCache": False}), 200

    def list_cases_api(self) -> tuple[Response, int]:
        page = _atoi(request.args.get("page", "1"))
        limit = _atoi(request.args.get("limit", "10"))
        with self._session() as session:
            total = session.scalar(select(func.count()).select_from(CaseInfo).where(_live(CaseInfo))) or 0
            statement = self._cases().order_by(CaseInfo.created_at.desc(), CaseInfo.id.desc())
            cases = session.scalars(_paginate(statement, page, limit)).all()
            data = [case.to_dict() for case in cases]
        return jsonify(
            success=True, data=data, pagination={"page": page, "limit": limit, "total": total}
        ), 200

    def bulk_search_api(self) -> tuple[Response, int]:
        payload = request.get_json(silent=True, force=True)
        queries = payload.get("queries") if isinstance(payload, dict) else None
        if not isinstance(queries, list):
            return jsonify(success=False, error="queries is required"), 400
        if not 1 <= len(queries) <= _MAX_BULK_QUERIES:
            return jsonify(
                success=False, error=f"queries must hold between 1 and {_MAX_BULK_QUERIES} entries"
            ), 400
        if not all(isinstance(item, dict) for item in queries):
            return jsonify(success=False, error="each query must be an object"), 400

        if self._scraper is None:
            return jsonify(success=False, error="scraper is not available"), 500
        try:
            results = self._scraper.search_case_concurrent([_query_from(item) for item in queries])
        except ScraperError as exc:
            return jsonify(success=False, error=str(exc)), 500

        response_data = []
        for result in results:
            entry: dict[str, Any] = {"query": _query_to_dict(result.query)}
            if result.error is not None:
                entry["success"] = False
                entry["error"] = str(result.error)
            else:
                entry["success"] = True
                entry["data"] = result.case_info.to_dict() if result.case_info is not None else None
            response_data.append(entry)
        return jsonify(success=True, results=response_data), 200

    def health_check(self) -> tuple[Response, int]:
        try:
            with self._session() as session:
                session.scalar(select(func.count()).select_from(QueryLog))
            database_healthy = True
        except SQLAlchemyError:
            database_healthy = False
        return jsonify(
            status="healthy",
            database=database_healthy,
            cache=self._cache.stats().to_dict(),
            time=int(time.time()),
        ), 200

    def cache_stats(self) -> tuple[Response, int]:
        return jsonify(success=True, stats=self._cache.stats().to_dict()), 200

    def captcha_page(self) -> tuple[str, int]:
        return self._render("captcha.html", 200, title="Solve CAPTCHA")

    def get_captcha(self, captcha_id: str) -> Union[Response, tuple[Response, int]]:
        try:
            data = (self._captcha_dir / f"{captcha_id}.png").read_bytes()
        except OSError:
            return jsonify(success=False, error="CAPTCHA not found"), 404
        return Response(data, status=200, mimetype="image/png")

    def solve_captcha(self, captcha_id: str) -> tuple[Response, int]:
        payload = request.get_json(silent=True, force=True)
        solution = payload.get("solution") if isinstance(payload, dict) else None
        if not isinstance(solution, str) or not solution:
            return jsonify(success=False, error="Invalid request"), 400
        try:
            (self._captcha_dir / f"{captcha_id}.txt").write_text(solution, encoding="utf-8")
        except OSError:
            return jsonify(success=False, error="Failed to save solution"), 500
        return jsonify(success=True, message="CAPTCHA solution saved"), 200

    def download_pdf(self) -> Union[Response, tuple[Response, int]]:
        """Fetch a PDF from the court website and hand it to the client as a download."""
        pdf_url = request.args.get("url", "")
        if not pdf_url:
            return jsonify(error="PDF URL required"), 400

        owned = self._http_client is None
        client = httpx.Client(timeout=_PDF_TIMEOUT) if owned else self._http_client
        with client if owned else nullcontext(client):
            headers = {"User-Agent": self._config.user_agent, "Referer": self._config.court_base_url}
            try:
                outgoing = client.build_request("GET", pdf_url, headers=headers)
            except (httpx.InvalidURL, ValueError, TypeError):
                return jsonify(error="Invalid URL"), 400
            try:
                response = client.send(outgoing)
            except httpx.HTTPError as exc:
                self._logger.error("Failed to fetch PDF", url=pdf_url, error=str(exc))
                return jsonify(error="Failed to download PDF"), 500
            if response.status_code != 200:
                return jsonify(error="PDF not found"), 404
            content = response.content

        last_part = pdf_url.split("/")[-1]
        filename = last_part if last_part.endswith(".pdf") else "court_order.pdf"
        result = Response(content, status=200)
        result.headers["Content-Description"] = "File Transfer"
        result.headers["Content-Transfer-Encoding"] = "binary"
        result.headers["Content-Disposition"] = f"attachment; filename={filename}"
        result.headers["Content-Type"] = "application/pdf"
        self._logger.info("PDF downloaded", url=pdf_url, size=len(content))
        return result

    def _logs_page(self, page: int, limit: int) -> tuple[int, list[QueryLog]]:
        with self._session() as session:
            total = session.scalar(select(func.count()).select_from(QueryLog).where(_live(QueryLog))) or 0
            statement = (
                select(QueryLog)
                .where(_live(QueryLog))
                .order_by(QueryLog.created_at.desc(), QueryLog.id.desc())
            )
            logs = list(session.scalars(_paginate(statement, page, limit)).all())
        return total, logs

    def get_query_logs(self) -> tuple[Response, int]:
        page = _atoi(request.args.get("page", "1"))
        limit = _atoi(request.args.get("limit", "20"))
        total, logs = self._logs_page(page, limit)
        return jsonify(
            success=True,
            data=[log.to_dict() for log in logs],
            pagination={"page": page, "limit": limit, "total": total},
        ), 200

    def get_raw_response(self, log_id: str) -> Union[Response, tuple[Response, int]]:
        number = _parse_id(log_id)
        if number is None:
            return jsonify(error="Invalid ID"), 400
        with self._session() as session:
            query_log = session.scalar(select(QueryLog).where(QueryLog.id == number, _live(QueryLog)).limit(1))
            if query_log is None:
                return jsonify(error="Query log not found"), 404
            raw = query_log.raw_response or ""
        return Response(raw, status=200, content_type="text/html; charset=utf-8")

    def view_logs(self) -> tuple[str, int]:
        page = _atoi(request.args.get("page", "1"))
        limit = _LOGS_PAGE_SIZE
        total, logs = self._logs_page(page, limit)
        total_pages = -(-total // limit)
        return self._render(
            "logs.html",
            200,
            title="Query Logs",
            logs=logs,
            pagination={
                "page": page,
                "limit": limit,
                "total": total,
                "totalPages": total_pages,
                "prevPage": page - 1,
                "nextPage": page + 1,
            },
        )


def setup_routes(
    app: Flask,
    db: Engine,
    cache: CaseCache,
    scraper: Optional[Scraper],
    logger: Logger,
    config: Config,
) -> Handlers:
    """Register every page and API route on ``app``; return the handlers used."""
    handlers = Handlers(db, cache, scraper, logger, config)

    static_dir = Path("web/static").resolve()
    if "static" in app.view_functions:
        app.static_folder = str(static_dir)
    else:
        app.add_url_rule(
            "/static/<path:filename>",
            "static",
            lambda filename: send_from_directory(static_dir, filename),
        )

    app.add_url_rule(
        "/test", "test", lambda: jsonify(message="Server is running", time=int(time.time()))
    )
    app.add_url_rule(
        "/test-simple",
        "test_simple",
        lambda: jsonify(status="ok", court_url=config.court_base_url, court_name=config.court_name),
    )

    routes = (
        ("/", "home_page", handlers.home_page, ["GET"]),
        ("/search", "search_case", handlers.search_case, ["POST"]),
        ("/results/<result_id>", "view_results", handlers.view_results, ["GET"]),
        ("/captcha", "captcha_page", handlers.captcha_page, ["GET"]),
        ("/logs", "view_logs", handlers.view_logs, ["GET"]),
        ("/api/health", "health_check", handlers.health_check, ["GET"]),
        ("/api/case", "get_case_api", handlers.get_case_api, ["GET"]),
        ("/api/cases", "list_cases_api", handlers.list_cases_api, ["GET"]),
        ("/api/cache/stats", "cache_stats", handlers.cache_stats, ["GET"]),
        ("/api/cases/bulk", "bulk_search_api", handlers.bulk_search_api, ["POST"]),
        ("/api/captcha/<captcha_id>", "get_captcha", handlers.get_captcha, ["GET"]),
        ("/api/captcha/<captcha_id>/solve", "solve_captcha", handlers.solve_captcha, ["POST"]),
        ("/api/download/pdf", "download_pdf", handlers.download_pdf, ["GET"]),
        ("/api/logs", "get_query_logs", handlers.get_query_logs, ["GET"]),
        ("/api/logs/<log_id>/raw", "get_raw_response", handlers.get_raw_response, ["GET"]),
    )
    for rule, endpoint, view, methods in routes:
        app.add_url_rule(rule, endpoint, view, methods=methods)

    app.add_url_rule(
        "/debug/templates",
        "debug_templates",
        lambda: jsonify(message="Templates should be loaded", path="web/templates/*"),
    )
    return handlers