"""Elasticsearch adapters: data fetcher and institution resolver."""

import copy
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from reporting.config import Settings
from reporting.errors import ArgumentError, NotFoundError
from reporting.recurrence import Interval, Recurrence, calc_interval
from reporting.services.observer import GenerationObserver

logger = structlog.get_logger(__name__)

RUN_AS_HEADER = "es-security-runas-user"
CONTACT_ROLES = ("doc_contact", "tech_contact")


class ElasticClient:
    """Thin async client over the Elasticsearch REST API."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"ApiKey {api_key}"
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "ElasticClient":
        return cls(
            settings.elastic_url,
            api_key=settings.elastic_api_key,
            timeout=settings.elastic_timeout,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def ping(self) -> None:
        """Raises httpx.HTTPError when the cluster is unreachable."""
        response = await self._client.get("/")
        response.raise_for_status()

    async def _post(self, path: str, body: dict[str, Any], run_as: Optional[str]) -> dict[str, Any]:
        headers = {RUN_AS_HEADER: run_as} if run_as else None
        response = await self._client.post(path, json=body, headers=headers)
        response.raise_for_status()
        return response.json()

    async def search(
        self, index: str, body: dict[str, Any], run_as: Optional[str] = None
    ) -> dict[str, Any]:
        return await self._post(f"/{index}/_search", body, run_as)

    async def count(
        self, index: str, body: dict[str, Any], run_as: Optional[str] = None
    ) -> int:
        result = await self._post(f"/{index}/_count", body, run_as)
        return int(result.get("count", 0))


# ============================================================
# Data fetching
# ============================================================


class Fetcher(Protocol):
    async def fetch(
        self, options: dict[str, Any], observer: Optional[GenerationObserver] = None
    ) -> Any: ...


class FetchOptions(BaseModel):
    """Options of the elastic fetcher, merged from several sources."""

    model_config = ConfigDict(extra="ignore")

    recurrence: Recurrence
    period: Interval
    user: str = Field(..., min_length=1)
    index_prefix: str = "*"
    index_suffix: str = ""
    filters: dict[str, Any] = Field(default_factory=dict)
    fetch_count: Optional[str] = None
    aggs: list[dict[str, Any]] = Field(default_factory=list)


class ElasticFetcher:
    """Fetches the data of a layout: named aggregations and a document count."""

    def __init__(self, client: ElasticClient):
        self._client = client

    @staticmethod
    def build_query(options: FetchOptions) -> dict[str, Any]:
        return {
            "query": {
                "bool": {
                    **options.filters,
                    "filter": {
                        "range": {
                            "datetime": {
                                "gte": options.period.start.isoformat(),
                                "lte": options.period.end.isoformat(),
                            }
                        }
                    },
                }
            }
        }

    @staticmethod
    def build_aggs(options: FetchOptions) -> tuple[dict[str, Any], list[tuple[str, list[str]]]]:
        """Name aggregations (``agg<i>`` by default) and add calendar intervals."""
        interval = calc_interval(options.recurrence)
        aggs: dict[str, Any] = {}
        infos = []
        for i, raw in enumerate(options.aggs):
            agg = copy.deepcopy(raw)
            name = agg.pop("name", None) or f"agg{i}"
            if "date_histogram" in agg:
                agg["date_histogram"].setdefault("calendar_interval", interval)
            aggs[name] = agg
            infos.append((name, list((agg.get("aggs") or {}).keys())))
        return aggs, infos

    async def fetch(
        self, options: dict[str, Any], observer: Optional[GenerationObserver] = None
    ) -> dict[str, Any]:
        """Run the search of a layout.

        Raises:
            ArgumentError: If the merged options are not valid
        """
        try:
            opts = FetchOptions.model_validate(options)
        except ValidationError as e:
            raise ArgumentError(f"Fetch options are not valid: {e}") from e

        index = f"{opts.index_prefix}{opts.index_suffix}"
        query = self.build_query(opts)
        data: dict[str, Any] = {}

        if opts.aggs:
            aggs, infos = self.build_aggs(opts)
            body = {**query, "size": 0, "aggs": aggs}
            result = await self._client.search(index, body, run_as=opts.user)
            aggregations = result.get("aggregations") or {}

            for name, sub_aggs in infos:
                if name not in aggregations:
                    raise NotFoundError(f'Aggregation "{name}" not found')
                agg_result = aggregations[name]
                if "buckets" not in agg_result:
                    data[name] = agg_result
                    continue

                buckets = agg_result["buckets"]
                if isinstance(buckets, dict):
                    buckets = [{"key": key, **value} for key, value in buckets.items()]
                # Flatten top_hits sub aggregations to their sources
                for bucket in buckets:
                    for sub in sub_aggs:
                        hits = (bucket.get(sub) or {}).get("hits", {}).get("hits")
                        if isinstance(hits, list):
                            bucket[sub] = [hit.get("_source") for hit in hits]
                data[name] = buckets

        if opts.fetch_count:
            data[opts.fetch_count] = await self._client.count(index, query, run_as=opts.user)

        logger.debug("layout_data_fetched", index=index, keys=list(data))
        return data


class NoneFetcher:
    """For layouts carrying their own data."""

    async def fetch(
        self, options: dict[str, Any], observer: Optional[GenerationObserver] = None
    ) -> None:
        return None


# ============================================================
# Institutions
# ============================================================


@dataclass
class Institution:
    id: str
    name: str
    index_prefix: str = "*"
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class Contact:
    username: str
    email: Optional[str] = None
    roles: list[str] = field(default_factory=list)


class InstitutionResolver(Protocol):
    async def get_institution(self, institution_id: str) -> Optional[Institution]: ...

    async def get_contact(self, institution: Institution) -> Optional[Contact]: ...


class ElasticInstitutionResolver:
    """Looks institutions and their contacts up in Elasticsearch."""

    def __init__(self, client: ElasticClient, index: str = "depositors"):
        self._client = client
        self._index = index

    async def get_institution(self, institution_id: str) -> Optional[Institution]:
        body = {"query": {"ids": {"values": [institution_id]}}, "size": 1}
        result = await self._client.search(self._index, body)
        hits = result.get("hits", {}).get("hits", [])
        if not hits or not hits[0].get("_source"):
            return None

        hit = hits[0]
        source = hit["_source"].get("institution", {})
        return Institution(
            id=str(hit["_id"]),
            name=source.get("name", institution_id),
            index_prefix=source.get("indexPrefix") or "*",
            raw=hit["_source"],
        )

    async def get_contact(self, institution: Institution) -> Optional[Contact]:
        """First user of the institution having a doc or tech contact role."""
        body = {
            "query": {
                "bool": {
                    "filter": [
                        {"term": {"type": "contact"}},
                        {"term": {"institutionId": institution.id}},
                        {"terms": {"roles": list(CONTACT_ROLES)}},
                    ]
                }
            },
            "size": 1,
        }
        result = await self._client.search(self._index, body)
        hits = result.get("hits", {}).get("hits", [])
        if not hits or not hits[0].get("_source", {}).get("username"):
            return None

        source = hits[0]["_source"]
        return Contact(
            username=source["username"],
            email=source.get("email"),
            roles=list(source.get("roles", [])),
        )
