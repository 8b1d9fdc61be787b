"""Tools the decision step can call, and their dispatch to adapters.

Argument models double as the JSON schemas advertised to the model
(via model_json_schema()), so what we validate is what we promised.
"""

import json
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

import httpx
from pydantic import BaseModel, Field, ValidationError

from .keypool import KeyPool
from .models import AdapterResult, Reference, ToolCallRequest
from .sources import crossref, openlibrary, serper, url_check

logger = logging.getLogger(__name__)


@dataclass
class ToolContext:
    """What a tool needs besides its arguments. One per attempt."""

    http: httpx.AsyncClient
    key_pool: KeyPool
    reference: Reference
    max_retries: int = 2


class CheckDoiArgs(BaseModel):
    doi: str = Field(description="The DOI to verify")
    title: str = Field(description="The title to compare against the DOI metadata")


class SearchMetadataArgs(BaseModel):
    title: str = Field(description="Title of the cited work")
    author: Optional[str] = Field(None, description="One author name, e.g. the first author")
    journal: Optional[str] = Field(None, description="Journal or venue name")
    year: Optional[str] = Field(None, description="Publication year")


class SearchCatalogArgs(BaseModel):
    title: str = Field(description="Book or report title to look up in Open Library")


class SearchReferenceArgs(BaseModel):
    reference: str = Field(
        description="The reference text or key parts to search for. Be specific."
    )


class ScholarSearchArgs(BaseModel):
    query: str = Field(description="Scholar search query, e.g. exact title plus author")


class CheckUrlArgs(BaseModel):
    url: str = Field(description="The URL to check")
    reference: Optional[str] = Field(
        None, description="The reference text to verify against the URL content"
    )


async def _check_doi(ctx: ToolContext, args: CheckDoiArgs) -> AdapterResult:
    return await crossref.check_doi(ctx.http, args.doi, args.title, ctx.max_retries)


async def _search_metadata(ctx: ToolContext, args: SearchMetadataArgs) -> AdapterResult:
    update: dict = {"title": args.title}
    if args.author:
        update["authors"] = [args.author]
    if args.journal:
        update["journal"] = args.journal
    if args.year:
        update["year"] = args.year
    query_ref = ctx.reference.model_copy(update=update)
    return await crossref.search_metadata(ctx.http, query_ref, ctx.max_retries)


async def _search_catalog(ctx: ToolContext, args: SearchCatalogArgs) -> AdapterResult:
    return await openlibrary.search_title(ctx.http, args.title)


async def _search_reference(ctx: ToolContext, args: SearchReferenceArgs) -> AdapterResult:
    return await serper.search_web(ctx.http, args.reference, ctx.key_pool, ctx.max_retries)


async def _scholar_search(ctx: ToolContext, args: ScholarSearchArgs) -> AdapterResult:
    return await serper.search_scholar(ctx.http, args.query, ctx.key_pool, ctx.max_retries)


async def _check_url(ctx: ToolContext, args: CheckUrlArgs) -> AdapterResult:
    return await url_check.check_url(ctx.http, args.url, ctx.reference)


@dataclass(frozen=True)
class ToolSpec:
    name: str
    display_name: str
    description: str
    args_model: type[BaseModel]
    run: Callable[[ToolContext, BaseModel], Awaitable[AdapterResult]]

    def schema(self) -> dict:
        parameters = self.args_model.model_json_schema()
        parameters.pop("title", None)
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": parameters,
            },
        }


TOOLS: dict[str, ToolSpec] = {
    spec.name: spec
    for spec in [
        ToolSpec(
            "check_doi",
            "DOI Lookup",
            "Verify a reference by its DOI via the CrossRef registry. Valid when "
            "the registry title matches the cited title.",
            CheckDoiArgs,
            _check_doi,
        ),
        ToolSpec(
            "search_metadata",
            "Metadata Search",
            "Search CrossRef by title/author/journal/year and score the top 5 "
            "candidates. Returns the best match and its DOI.",
            SearchMetadataArgs,
            _search_metadata,
        ),
        ToolSpec(
            "search_catalog",
            "Catalog Search",
            "Look up a book title in the Open Library catalog.",
            SearchCatalogArgs,
            _search_catalog,
        ),
        ToolSpec(
            "search_reference",
            "Google Search",
            "Search Google for a reference. Returns up to 10 results (title, "
            "link, snippet) that can be used to verify its existence.",
            SearchReferenceArgs,
            _search_reference,
        ),
        ToolSpec(
            "scholar_search",
            "Scholar Search",
            "Search Google Scholar. Returns up to 10 scholarly results.",
            ScholarSearchArgs,
            _scholar_search,
        ),
        ToolSpec(
            "check_url",
            "URL Verification",
            "If a reference contains a URL, fetch that page to see if it "
            "confirms the reference.",
            CheckUrlArgs,
            _check_url,
        ),
    ]
}


def tool_schemas(names: Optional[list[str]] = None) -> list[dict]:
    specs = TOOLS.values() if names is None else [TOOLS[n] for n in names]
    return [spec.schema() for spec in specs]


def display_name(tool_name: str) -> str:
    spec = TOOLS.get(tool_name)
    return spec.display_name if spec else tool_name


async def dispatch_tool(call: ToolCallRequest, ctx: ToolContext) -> AdapterResult:
    """Run the adapter behind a tool call. Never raises."""
    spec = TOOLS.get(call.name)
    if spec is None:
        return AdapterResult(
            is_valid=False,
            message=f"Unknown tool '{call.name}'. Available tools: {', '.join(TOOLS)}.",
        )

    try:
        args = spec.args_model.model_validate(call.arguments)
    except ValidationError as e:
        return AdapterResult(
            is_valid=False,
            message=f"Invalid arguments for {call.name}: {e.errors(include_url=False)}",
        )

    try:
        return await spec.run(ctx, args)
    except Exception as e:
        logger.warning("ref %s: tool %s raised: %s", ctx.reference.id, call.name, e)
        return AdapterResult(
            is_valid=False,
            message=f"{spec.display_name} failed: {e}",
            source=spec.display_name,
        )


def render_tool_result(result: AdapterResult) -> str:
    """Tool message content shown to the decision step."""
    return json.dumps(result.model_dump(), default=str)
