"""Tests for the Elasticsearch adapters."""

import json
from datetime import datetime, timezone

import httpx
import pytest

from reporting.errors import ArgumentError, NotFoundError
from reporting.recurrence import Interval, Recurrence
from reporting.services.elastic import (
    ElasticClient,
    ElasticFetcher,
    ElasticInstitutionResolver,
    Institution,
    NoneFetcher,
)

PERIOD = Interval(
    start=datetime(2024, 2, 1, tzinfo=timezone.utc),
    end=datetime(2024, 2, 29, 23, 59, 59, tzinfo=timezone.utc),
)


class FakeElastic:
    """Records requests and answers with canned responses by path suffix."""

    def __init__(self, responses: dict):
        self.responses = responses
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        for suffix, body in self.responses.items():
            if request.url.path.endswith(suffix):
                return httpx.Response(200, json=body)
        return httpx.Response(404, json={"error": "not found"})

    def body(self, index: int = 0) -> dict:
        return json.loads(self.requests[index].content)


def make_client(fake: FakeElastic) -> ElasticClient:
    return ElasticClient("http://es:9200/", api_key="c2VjcmV0", transport=httpx.MockTransport(fake))


def options(**kwargs) -> dict:
    base = {
        "recurrence": Recurrence.MONTHLY.value,
        "period": PERIOD,
        "user": "jdoe",
        "index_prefix": "univ-",
    }
    base.update(kwargs)
    return base


class TestElasticClient:
    @pytest.mark.asyncio
    async def test_headers(self):
        fake = FakeElastic({"/_search": {"hits": {"hits": []}}})
        client = make_client(fake)

        await client.search("idx", {"size": 0}, run_as="jdoe")
        await client.close()

        request = fake.requests[0]
        assert request.url.path == "/idx/_search"
        assert request.headers["Authorization"] == "ApiKey c2VjcmV0"
        assert request.headers["es-security-runas-user"] == "jdoe"

    @pytest.mark.asyncio
    async def test_no_run_as_header_by_default(self):
        fake = FakeElastic({"/_count": {"count": 4}})
        client = make_client(fake)

        assert await client.count("idx", {}) == 4
        assert "es-security-runas-user" not in fake.requests[0].headers

    @pytest.mark.asyncio
    async def test_http_errors_raised(self):
        client = make_client(FakeElastic({}))
        with pytest.raises(httpx.HTTPStatusError):
            await client.ping()


class TestElasticFetcher:
    @pytest.mark.asyncio
    async def test_aggregations_and_count(self):
        fake = FakeElastic(
            {
                "/_search": {
                    "aggregations": {
                        "by_date": {"buckets": [{"key": 1, "doc_count": 3}]},
                        "agg1": {
                            "buckets": [
                                {
                                    "key": "wiley",
                                    "doc_count": 2,
                                    "top": {"hits": {"hits": [{"_source": {"title": "A"}}]}},
                                }
                            ]
                        },
                        "total": {"value": 9},
                    }
                },
                "/_count": {"count": 12},
            }
        )
        fetcher = ElasticFetcher(make_client(fake))

        data = await fetcher.fetch(
            options(
                fetch_count="count",
                aggs=[
                    {"name": "by_date", "date_histogram": {"field": "datetime"}},
                    {"terms": {"field": "platform"}, "aggs": {"top": {"top_hits": {"size": 1}}}},
                    {"name": "total", "cardinality": {"field": "user"}},
                ],
            )
        )

        assert data == {
            "by_date": [{"key": 1, "doc_count": 3}],
            "agg1": [{"key": "wiley", "doc_count": 2, "top": [{"title": "A"}]}],
            "total": {"value": 9},
            "count": 12,
        }
        assert fake.requests[0].url.path == "/univ-/_search"
        body = fake.body(0)
        assert body["size"] == 0
        assert body["aggs"]["by_date"]["date_histogram"]["calendar_interval"] == "week"
        assert body["query"]["bool"]["filter"]["range"]["datetime"]["gte"] == "2024-02-01T00:00:00+00:00"

    @pytest.mark.asyncio
    async def test_keyed_buckets(self):
        fake = FakeElastic(
            {"/_search": {"aggregations": {"agg0": {"buckets": {"a": {"doc_count": 1}}}}}}
        )
        data = await ElasticFetcher(make_client(fake)).fetch(
            options(aggs=[{"filters": {"filters": {"a": {"match_all": {}}}}}])
        )
        assert data == {"agg0": [{"key": "a", "doc_count": 1}]}

    @pytest.mark.asyncio
    async def test_missing_aggregation(self):
        fake = FakeElastic({"/_search": {"aggregations": {}}})
        fetcher = ElasticFetcher(make_client(fake))

        with pytest.raises(NotFoundError, match='Aggregation "agg0" not found'):
            await fetcher.fetch(options(aggs=[{"terms": {"field": "x"}}]))

    @pytest.mark.asyncio
    async def test_invalid_options(self):
        fetcher = ElasticFetcher(make_client(FakeElastic({})))
        with pytest.raises(ArgumentError, match="Fetch options are not valid"):
            await fetcher.fetch(options(user=""))

    @pytest.mark.asyncio
    async def test_nothing_to_fetch(self):
        fake = FakeElastic({})
        assert await ElasticFetcher(make_client(fake)).fetch(options()) == {}
        assert fake.requests == []

    @pytest.mark.asyncio
    async def test_filters_merged_in_query(self):
        fake = FakeElastic({"/_count": {"count": 1}})
        await ElasticFetcher(make_client(fake)).fetch(
            options(fetch_count="n", index_suffix="-2024", filters={"must_not": [{"term": {"x": 1}}]})
        )

        assert fake.requests[0].url.path == "/univ--2024/_count"
        assert fake.body(0)["query"]["bool"]["must_not"] == [{"term": {"x": 1}}]


@pytest.mark.asyncio
async def test_none_fetcher():
    assert await NoneFetcher().fetch({}) is None


class TestInstitutionResolver:
    @pytest.mark.asyncio
    async def test_get_institution(self):
        fake = FakeElastic(
            {
                "/_search": {
                    "hits": {
                        "hits": [
                            {
                                "_id": "inst-1",
                                "_source": {"institution": {"name": "Univ", "indexPrefix": "univ-"}},
                            }
                        ]
                    }
                }
            }
        )
        resolver = ElasticInstitutionResolver(make_client(fake), index="depositors")

        institution = await resolver.get_institution("inst-1")

        assert institution.name == "Univ"
        assert institution.index_prefix == "univ-"
        assert fake.requests[0].url.path == "/depositors/_search"
        assert fake.body(0)["query"] == {"ids": {"values": ["inst-1"]}}

    @pytest.mark.asyncio
    async def test_unknown_institution(self):
        fake = FakeElastic({"/_search": {"hits": {"hits": []}}})
        resolver = ElasticInstitutionResolver(make_client(fake))
        assert await resolver.get_institution("nope") is None

    @pytest.mark.asyncio
    async def test_get_contact(self):
        fake = FakeElastic(
            {
                "/_search": {
                    "hits": {
                        "hits": [
                            {"_source": {"username": "jdoe", "email": "j@x.org", "roles": ["doc_contact"]}}
                        ]
                    }
                }
            }
        )
        resolver = ElasticInstitutionResolver(make_client(fake))

        contact = await resolver.get_contact(Institution(id="inst-1", name="Univ"))

        assert contact.username == "jdoe"
        assert contact.roles == ["doc_contact"]
        filters = fake.body(0)["query"]["bool"]["filter"]
        assert {"term": {"institutionId": "inst-1"}} in filters

    @pytest.mark.asyncio
    async def test_no_contact(self):
        fake = FakeElastic({"/_search": {"hits": {"hits": [{"_source": {}}]}}})
        resolver = ElasticInstitutionResolver(make_client(fake))
        assert await resolver.get_contact(Institution(id="inst-1", name="Univ")) is None
