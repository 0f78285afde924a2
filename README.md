# courtfetch

A small web service for looking up cases on a court's case-status site.
Give it a case type, a case number and a filing year; it fills in the site's
search form over plain HTTP, reads the case details, the parties and the list
of orders from the pages it gets back, stores them in a SQLite database, keeps
them in an in-memory cache and records every query with the raw page received.

It offers an HTML interface for people, a JSON API for programs, and a
background job that downloads the PDF files of orders.

## Installing

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## Running

Start the server:

```
courtfetch
```

Create any missing database tables and exit:

```
courtfetch --migrate
```

(`-migrate` is accepted too.) The search indexes are not created by this
command; call `courtfetch.database.run_migrations(engine)` for those.

The server is a threaded WSGI server listening on `HOST:PORT`. Stop it with
Ctrl+C or SIGTERM; it closes the scraper's open sessions and shuts down.

While the server runs, a background worker wakes every 30 minutes and
downloads order PDFs that have a link but have not been fetched yet. It uses
the `DATABASE_PATH` value as its storage root, so files are written to
`<DATABASE_PATH>/pdfs/<year>/<month>/order_<id>_<yyyymmdd>.pdf`. When
`DATABASE_PATH` names the database file itself, that directory cannot be
created and each download is logged as failed; `courtfetch.pdf.PDFDownloader`
can be used directly with another `save_path`.

## Configuration

Settings come from the environment. A `.env` file in the working directory is
read as well; variables already set in the environment take precedence. An
empty variable counts as unset.

| Variable                 | Default                   | Meaning                                    |
|--------------------------|---------------------------|--------------------------------------------|
| `HOST`                   | `0.0.0.0`                 | Address to listen on                       |
| `PORT`                   | `8080`                    | Port to listen on                          |
| `DATABASE_PATH`          | `./data/court_cases.db`   | SQLite file; its directory is created      |
| `LOG_LEVEL`              | `info`                    | `debug`, `info`, `warn` or `error`         |
| `LOG_FORMAT`             | `json`                    | `json`, or anything else for console text  |
| `CACHE_SIZE`             | `1000`                    | Maximum number of cached cases             |
| `CACHE_TTL`              | `30`                      | Cache lifetime, in minutes                 |
| `COURT_BASE_URL`         | the court's site          | Base address of the court website          |
| `COURT_NAME`             | `Delhi District Courts`   | Name shown on the home page                |
| `SCRAPER_TIMEOUT`        | `30`                      | Time limit per search, in seconds          |
| `USER_AGENT`             | a desktop browser string  | User-Agent sent to the court site          |
| `MAX_CONCURRENT_SCRAPES` | `5`                       | Parallel searches in a bulk request        |
| `HEADLESS_MODE`          | `true`                    | Read into `Config.headless_mode`           |
| `ROD_BROWSER_PATH`       | empty                     | Read into `Config.browser_path`            |
| `WORKER_POOL_SIZE`       | `10`                      | Read into `Config.worker_pool_size`        |
| `API_RATE_LIMIT`         | `100`                     | Read into `Config.api_rate_limit`          |
| `API_RATE_WINDOW`        | `60`                      | Read into `Config.api_rate_window` (s)     |

The last five are loaded and validated but nothing in the package acts on them.
A value that should be a whole number but is not makes `courtfetch.config.load`
raise `ConfigError` naming the variable; the command then prints the error and
exits with status 1. An unknown `LOG_LEVEL` also stops start-up.

With `LOG_LEVEL=debug` the Flask application runs in debug mode.

### CAPTCHAs

If the search page shows a code in `#captcha-code`, it is copied into
`#captchaInput`. If the page has a CAPTCHA image, its bytes are taken from a
`data:` URI or fetched from its URL, and the solver tries, in order:

1. the 2Captcha service, if `TWOCAPTCHA_API_KEY` is set;
2. the Anti-Captcha service, if `ANTICAPTCHA_API_KEY` is set;
3. manual solving: the image is saved as `./data/captchas/<id>.png` and the
   solver waits up to 60 seconds for a solution, which can be posted to
   `/api/captcha/<id>/solve` or written to `./data/captchas/<id>.txt`.

## Web pages

Pages are rendered from `./web/templates/<name>` when such a file exists, and
from built-in templates otherwise. Files under `./web/static` are served at
`/static/`.

| Method | Path            | Purpose                                                   |
|--------|-----------------|-----------------------------------------------------------|
| GET    | `/`             | Search form                                               |
| POST   | `/search`       | Run a search (`case_type`, `case_number`, `filing_year`); logs the query and stores the case |
| GET    | `/results/<id>` | Saved result, by case id or, failing that, query-log id   |
| GET    | `/captcha`      | Page for solving a CAPTCHA by hand                        |
| GET    | `/logs`         | Query log, 20 entries per page                            |

## JSON API

| Method | Path                            | Purpose                                        |
|--------|---------------------------------|------------------------------------------------|
| GET    | `/api/health`                   | Service, database and cache status             |
| GET    | `/api/case?type=&number=&year=` | Look up one case (cached; not stored or logged)|
| GET    | `/api/cases?page=&limit=`       | Stored cases, newest first (limit 10)          |
| POST   | `/api/cases/bulk`               | 1 to 10 searches at once                       |
| GET    | `/api/cache/stats`              | Hits, misses, size and last access             |
| GET    | `/api/captcha/<id>`             | A saved CAPTCHA image                          |
| POST   | `/api/captcha/<id>/solve`       | Submit `{"solution": "..."}`                   |
| GET    | `/api/download/pdf?url=`        | Fetch an order PDF through the server          |
| GET    | `/api/logs?page=&limit=`        | Query logs, newest first (limit 20)            |
| GET    | `/api/logs/<id>/raw`            | The raw HTML a query received                  |

`/test`, `/test-simple` and `/debug/templates` answer with small JSON status
messages. Every response carries permissive CORS headers, and `OPTIONS`
requests are answered with 204.

A bulk request looks like this:

```json
{
  "queries": [
    {"case_type": "CS", "case_number": "100", "filing_year": "2023"},
    {"case_type": "CS", "case_number": "200", "filing_year": "2023"}
  ]
}
```

Each entry in the answer carries its query and either `"success": true` with
the case data or `"success": false` with an error message.

## Using the pieces from Python

The cache keeps cases for a time limit and, when full, evicts the entry that
expires first:

```python
from datetime import timedelta
from courtfetch.cache import CaseCache, generate_cache_key

cache = CaseCache(max_size=100, ttl=timedelta(minutes=30))
key = generate_cache_key("CS", "1234", "2023")   # "case:CS:1234:2023"
```

The parser works on `Page` objects built from HTML and the URL it came from:

```python
from courtfetch.parser import Page, Parser

parser = Parser()
parser.parse_date("15-03-2023")          # datetime(2023, 3, 15, 0, 0)
details = parser.parse_case_details(Page(html, "https://court.example.com/case"))
```

`courtfetch.scraper.Scraper` runs searches (`search_case`,
`search_case_concurrent`) and can be used as a context manager;
`courtfetch.database.initialize(path)` opens the database and creates its
tables.

## What it does not do

- The scraper speaks plain HTTP and parses HTML; it runs no browser and no
  JavaScript, so a court page that builds its form or results with scripts
  will not be read.
- No request rate limiting is applied, whatever `API_RATE_LIMIT` says.
- There is no authentication on any page or API route.