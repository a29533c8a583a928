# scifind

`scifind` provides the building blocks of a JSON API for discovering
scientific papers across several search providers (arXiv, Semantic Scholar,
Exa, Tavily): a typed configuration loader, structured logging with
request-scoped context, and Flask request handlers for papers, authors,
multi-provider search and health checks.

The handlers do not talk to a database or to any provider themselves. Each
one is given a service object and calls it; you supply those services.

## Modules

| Module | Contents |
| --- | --- |
| `scifind.config` | `Config` and its section dataclasses, `load_config`, `load_config_from_path`, `default_settings`, `parse_duration`, `ConfigError` |
| `scifind.logger` | `new_logger`, `LogLevel`, `parse_log_level`, `RequestContext`, `new_request_context`, `request_context`, `get_request_context`, `log_with_context` and the `debug_`/`info_`/`warn_`/`error_with_context` helpers |
| `scifind.papers` | `PaperHandler`, `AuthorHandler` |
| `scifind.search` | `SearchHandler`, `SearchRequest`, `ErrorResponse`, `split_and_trim`, `ServiceValidationError`, `ServiceTimeoutError`, `ServiceRateLimitError` |
| `scifind.health` | `HealthHandler`, `HealthStatus`, `CheckResult` |

## Configuration

```python
import os

from scifind.config import load_config_from_path

config = load_config_from_path("configs/config.yaml", os.environ)

print(config.server.port)                      # 8080 unless overridden
print(config.is_development())                 # True when server.mode is "debug"
print(config.get_database_connection_string()) # "./scifind.db" by default
print(config.get_timeout_config().server.idle) # timedelta(seconds=120)
```

Settings are built in three layers:

1. the defaults returned by `default_settings()`;
2. the YAML file, if it exists (a missing file is not an error; with an empty
   path, `config.yaml` and `config.yml` are looked for in `./configs` and then
   the current directory);
3. environment variables named `SCIFIND_` plus the dotted key in upper case
   with dots replaced by underscores, e.g. `SCIFIND_SERVER_MODE=test` or
   `SCIFIND_DATABASE_SQLITE_PATH=:memory:`. Only keys that exist in the
   defaults or the file are looked up, and empty values are ignored.

`load_config()` is the same as `load_config_from_path("configs/config.yaml")`
with the process environment.

Values are coerced to the field types (`"8080"` becomes `8080`, `"true"`
becomes `True`, a comma-separated string becomes a list). `Config.validate()`
is then run and raises `ConfigError` listing every problem: the server port
must be 1–65535, `server.mode` one of `debug`/`release`/`test`,
`database.type` one of `postgres`/`sqlite`, the PostgreSQL pool sizes at
least 1, `nats.url` a URL, and the logging level, format and output among
their allowed values. `Config.from_mapping()` builds a `Config` from nested
dictionaries without validating it.

`parse_duration()` accepts strings such as `"300ms"`, `"1.5h"` or `"2h45m"`
and returns a `timedelta`; malformed text raises `ConfigError`.

## Logging

```python
from scifind.config import load_config
from scifind.logger import info_with_context, new_logger, new_request_context, request_context

logger = new_logger(load_config())

with request_context(new_request_context("search")):
    info_with_context(logger, "search started", query="graphene")
```

`new_logger()` configures the `scifind` logger from `config.logging`: JSON or
`key=value` text output, to stdout, stderr or a file (`file_path` is required
for `file`), at the configured level, with the source location when
`add_source` is set. Inside a `request_context(...)` block, the
`*_with_context` functions add `request_id`, `trace_id`, `span_id`,
`operation`, the elapsed `duration` and, if set, `user_id` to each record.

## Handlers

Handler methods are Flask views: they read `flask.request` and return a
`(response, status)` pair, so they must run inside a Flask request. Register
them on your own application:

```python
from flask import Flask

from scifind.health import HealthHandler
from scifind.papers import AuthorHandler, PaperHandler
from scifind.search import SearchHandler

app = Flask(__name__)

papers = PaperHandler(paper_service)
app.add_url_rule("/v1/papers", "list_papers", papers.list_papers, methods=["GET"])
app.add_url_rule("/v1/papers/<id>", "get_stored_paper", papers.get_paper, methods=["GET"])

authors = AuthorHandler(author_service)
app.add_url_rule("/v1/authors", "list_authors", authors.list_authors, methods=["GET"])
app.add_url_rule("/v1/authors/<id>/papers", "author_papers", authors.get_author_papers, methods=["GET"])

search = SearchHandler(search_service)
app.add_url_rule("/v1/search", "search", search.search, methods=["GET"])

HealthHandler(health_service).register_routes(app)
```

### Papers and authors

`PaperHandler` and `AuthorHandler` list, look up and page through papers and
authors. `limit` (1–100, default 20) and `offset` (0 or more, default 0) are
checked; anything else is answered with `400`. A failed lookup is answered
with `404`, a failed listing with `500`. `create_paper`, `update_paper` and
`delete_paper` always answer `501`.

Expected service methods:

- paper service: `list(None, limit, offset)` returning `(papers, total)`,
  `get_by_id(id)`;
- author service: `list(None, limit, offset)` and `search(query, limit, offset)`
  returning `(authors, total)`, `get_papers(id, limit, offset)` returning
  `(papers, total)`, `get_by_id(id)`.

### Search

`SearchHandler.parse_search_request()` turns query arguments (`query`,
`limit`, `offset`, `providers`, `date_from`, `date_to`, `author`, `journal`,
`category`, `subject`) into a validated `SearchRequest`, raising
`ServiceValidationError` on bad input. `search()` answers `400` for a bad
request, and maps errors raised by the service to `400`
(`ServiceValidationError`), `408` (`ServiceTimeoutError`), `429`
(`ServiceRateLimitError`) or `500`. Error bodies are `ErrorResponse` objects.

The other endpoints are `get_paper(provider, id)`, `get_providers()`,
`get_provider_metrics()` (optionally filtered by a `provider` argument, `404`
if unknown) and `configure_provider(provider)`, which takes a JSON object
body. For lookups and configuration, a service error whose message contains
"not found" becomes `404`.

Expected service methods: `search(search_request)`, `get_paper(provider, id)`,
`get_provider_status()`, `get_provider_metrics()` and
`configure_provider(provider, settings)`.

### Health

`HealthHandler.register_routes(app)` adds `/health`, `/health/`,
`/health/live`, `/health/ready` and `/ping`. Liveness always reports
`alive`. Readiness and the full health check call the health service's
`health()` method for the database check; readiness answers `503` when that
check is unhealthy. Without a health service the database is reported
unhealthy and messaging degraded.

## What this package does not do

- It does not assemble an application: there is no ready-made Flask app, no
  URL map beyond the health routes, and no command to start a server. Run your
  own application under any WSGI server.
- It has no middleware for request IDs, CORS, security headers, API-key or
  HTTP Basic authentication, or access logging.
- It stores nothing and queries no search provider; the services passed to the
  handlers do that.

## Testing

The test suite uses pytest, installed with the `test` extra.