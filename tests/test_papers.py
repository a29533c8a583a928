import logging

import pytest
from flask import Flask

from scifind.papers import AuthorHandler, PaperHandler

LOGGER_NAME = "tests.papers"


class FakePaperService:
    def __init__(self, papers=None, fail=False):
        self.papers = papers if papers is not None else []
        self.fail = fail
        self.calls = []

    def list(self, filters, limit, offset):
        self.calls.append((filters, limit, offset))
        if self.fail:
            raise RuntimeError("database down")
        return self.papers[offset:offset + limit], len(self.papers)

    def get_by_id(self, paper_id):
        for paper in self.papers:
            if paper["id"] == paper_id:
                return paper
        raise LookupError(f"paper {paper_id} not found")


class FakeAuthorService:
    def __init__(self, authors=None, papers=None, fail=False):
        self.authors = authors if authors is not None else []
        self.papers = papers if papers is not None else {}
        self.fail = fail
        self.calls = []

    def list(self, filters, limit, offset):
        self.calls.append(("list", filters, limit, offset))
        if self.fail:
            raise RuntimeError("database down")
        return self.authors[offset:offset + limit], len(self.authors)

    def search(self, query, limit, offset):
        self.calls.append(("search", query, limit, offset))
        if self.fail:
            raise RuntimeError("database down")
        found = [a for a in self.authors if query.lower() in a["name"].lower()]
        return found[offset:offset + limit], len(found)

    def get_by_id(self, author_id):
        for author in self.authors:
            if author["id"] == author_id:
                return author
        raise LookupError(f"author {author_id} not found")

    def get_papers(self, author_id, limit, offset):
        self.calls.append(("get_papers", author_id, limit, offset))
        if self.fail:
            raise RuntimeError("database down")
        papers = self.papers.get(author_id, [])
        return papers[offset:offset + limit], len(papers)


PAPERS = [{"id": f"p{i}", "title": f"Paper {i}"} for i in range(30)]
AUTHORS = [
    {"id": "a1", "name": "Ada Lovelace"},
    {"id": "a2", "name": "Alan Turing"},
    {"id": "a3", "name": "Grace Hopper"},
]


def make_app(paper_service, author_service):
    app = Flask(__name__)
    logger = logging.getLogger(LOGGER_NAME)
    papers = PaperHandler(paper_service, logger)
    authors = AuthorHandler(author_service, logger)
    app.add_url_rule("/v1/papers", "list_papers", papers.list_papers, methods=["GET"])
    app.add_url_rule("/v1/papers", "create_paper", papers.create_paper, methods=["POST"])
    app.add_url_rule("/v1/papers/<id>", "get_paper", papers.get_paper, methods=["GET"])
    app.add_url_rule("/v1/papers/<id>", "update_paper", papers.update_paper, methods=["PUT"])
    app.add_url_rule("/v1/papers/<id>", "delete_paper", papers.delete_paper, methods=["DELETE"])
    app.add_url_rule("/v1/authors", "list_authors", authors.list_authors, methods=["GET"])
    app.add_url_rule("/v1/authors/<id>", "get_author", authors.get_author, methods=["GET"])
    app.add_url_rule(
        "/v1/authors/<id>/papers", "get_author_papers", authors.get_author_papers, methods=["GET"]
    )
    return app


@pytest.fixture
def paper_service():
    return FakePaperService(list(PAPERS))


@pytest.fixture
def author_service():
    return FakeAuthorService(list(AUTHORS), {"a1": PAPERS[:3]})


@pytest.fixture
def client(paper_service, author_service):
    return make_app(paper_service, author_service).test_client()


# -------------------------------------------------------------- papers


def test_list_papers_uses_defaults(client, paper_service):
    response = client.get("/v1/papers")
    assert response.status_code == 200
    body = response.get_json()
    assert body["limit"] == 20
    assert body["offset"] == 0
    assert body["total"] == len(PAPERS)
    assert body["papers"] == PAPERS[:20]
    assert paper_service.calls == [(None, 20, 0)]


def test_list_papers_passes_pagination(client, paper_service):
    response = client.get("/v1/papers?limit=5&offset=10")
    body = response.get_json()
    assert response.status_code == 200
    assert body["papers"] == PAPERS[10:15]
    assert (body["limit"], body["offset"]) == (5, 10)
    assert paper_service.calls == [(None, 5, 10)]


def test_list_papers_accepts_signed_limit(client, paper_service):
    response = client.get("/v1/papers?limit=%2B5")
    assert response.status_code == 200
    assert paper_service.calls == [(None, 5, 0)]


@pytest.mark.parametrize("limit", ["0", "101", "-1", "abc", "", " 5", "1_0", "2.5"])
def test_list_papers_rejects_bad_limit(client, paper_service, limit):
    response = client.get("/v1/papers", query_string={"limit": limit})
    assert response.status_code == 400
    assert response.get_json() == {"error": "invalid limit parameter"}
    assert paper_service.calls == []


@pytest.mark.parametrize("offset", ["-1", "x", "", "99999999999999999999"])
def test_list_papers_rejects_bad_offset(client, paper_service, offset):
    response = client.get("/v1/papers", query_string={"offset": offset})
    assert response.status_code == 400
    assert response.get_json() == {"error": "invalid offset parameter"}
    assert paper_service.calls == []


def test_limit_bounds_are_inclusive(client, paper_service):
    assert client.get("/v1/papers?limit=1").status_code == 200
    assert client.get("/v1/papers?limit=100").status_code == 200
    assert [call[1] for call in paper_service.calls] == [1, 100]


def test_list_papers_service_failure(author_service, caplog):
    client = make_app(FakePaperService(fail=True), author_service).test_client()
    with caplog.at_level(logging.ERROR, logger=LOGGER_NAME):
        response = client.get("/v1/papers")
    assert response.status_code == 500
    assert response.get_json() == {"error": "failed to retrieve papers"}
    messages = [r.getMessage() for r in caplog.records]
    assert "failed to list papers" in messages
    record = next(r for r in caplog.records if r.getMessage() == "failed to list papers")
    assert record.fields["error"] == "database down"


def test_get_paper_found(client):
    response = client.get("/v1/papers/p3")
    assert response.status_code == 200
    assert response.get_json() == PAPERS[3]


def test_get_paper_not_found(client):
    response = client.get("/v1/papers/missing")
    assert response.status_code == 404
    assert response.get_json() == {"error": "paper not found"}


def test_get_paper_requires_id(paper_service, author_service):
    app = make_app(paper_service, author_service)
    handler = PaperHandler(paper_service)
    with app.test_request_context("/v1/papers/"):
        response, status = handler.get_paper("")
        assert status == 400
        assert response.get_json() == {"error": "paper ID is required"}


def test_create_paper_not_implemented(client):
    response = client.post("/v1/papers", json={"title": "New"})
    assert response.status_code == 501
    assert response.get_json() == {
        "error": "paper creation not yet implemented",
        "message": "papers are currently created through search providers",
    }


def test_update_paper_not_implemented(client):
    response = client.put("/v1/papers/p1", json={"title": "Changed"})
    assert response.status_code == 501
    assert response.get_json() == {"error": "paper update not yet implemented"}


def test_delete_paper_not_implemented(client, paper_service):
    response = client.delete("/v1/papers/p1")
    assert response.status_code == 501
    assert response.get_json() == {"error": "paper deletion not yet implemented"}
    assert paper_service.get_by_id("p1") == PAPERS[1]


# -------------------------------------------------------------- authors


def test_list_authors_without_query(client, author_service):
    response = client.get("/v1/authors")
    body = response.get_json()
    assert response.status_code == 200
    assert body["authors"] == AUTHORS
    assert body["total"] == len(AUTHORS)
    assert body["query"] == ""
    assert (body["limit"], body["offset"]) == (20, 0)
    assert author_service.calls == [("list", None, 20, 0)]


def test_list_authors_with_query_searches(client, author_service):
    response = client.get("/v1/authors?q=alan&limit=10")
    body = response.get_json()
    assert response.status_code == 200
    assert body["authors"] == [AUTHORS[1]]
    assert body["query"] == "alan"
    assert author_service.calls == [("search", "alan", 10, 0)]


def test_list_authors_rejects_bad_pagination(client, author_service):
    assert client.get("/v1/authors?limit=500").get_json() == {"error": "invalid limit parameter"}
    bad_offset = client.get("/v1/authors?offset=-3")
    assert bad_offset.status_code == 400
    assert bad_offset.get_json() == {"error": "invalid offset parameter"}
    assert author_service.calls == []


def test_list_authors_service_failure(paper_service):
    client = make_app(paper_service, FakeAuthorService(fail=True)).test_client()
    for url in ("/v1/authors", "/v1/authors?q=ada"):
        response = client.get(url)
        assert response.status_code == 500
        assert response.get_json() == {"error": "failed to retrieve authors"}


def test_get_author_found_and_missing(client):
    found = client.get("/v1/authors/a3")
    assert found.status_code == 200
    assert found.get_json() == AUTHORS[2]
    missing = client.get("/v1/authors/zz")
    assert missing.status_code == 404
    assert missing.get_json() == {"error": "author not found"}


def test_get_author_requires_id(paper_service, author_service):
    app = make_app(paper_service, author_service)
    handler = AuthorHandler(author_service)
    with app.test_request_context("/v1/authors/"):
        response, status = handler.get_author("")
        assert status == 400
        assert response.get_json() == {"error": "author ID is required"}
        response, status = handler.get_author_papers("")
        assert status == 400
        assert response.get_json() == {"error": "author ID is required"}


def test_get_author_papers(client, author_service):
    response = client.get("/v1/authors/a1/papers?limit=2&offset=1")
    body = response.get_json()
    assert response.status_code == 200
    assert body == {
        "author_id": "a1",
        "papers": PAPERS[1:3],
        "total": 3,
        "limit": 2,
        "offset": 1,
    }
    assert author_service.calls == [("get_papers", "a1", 2, 1)]


def test_get_author_papers_rejects_bad_limit(client, author_service):
    response = client.get("/v1/authors/a1/papers?limit=zero")
    assert response.status_code == 400
    assert response.get_json() == {"error": "invalid limit parameter"}
    assert author_service.calls == []


def test_get_author_papers_service_failure(paper_service, caplog):
    client = make_app(paper_service, FakeAuthorService(fail=True)).test_client()
    with caplog.at_level(logging.ERROR, logger=LOGGER_NAME):
        response = client.get("/v1/authors/a1/papers")
    assert response.status_code == 500
    assert response.get_json() == {"error": "failed to retrieve author papers"}
    record = next(r for r in caplog.records if r.getMessage() == "failed to get author papers")
    assert record.fields["author_id"] == "a1"