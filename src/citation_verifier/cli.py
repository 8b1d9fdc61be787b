"""CLI entry point for the citation verifier.

Commands:
  citation-verifier verify <json>         Verify a file of parsed references
  citation-verifier check "<reference>"   Verify a single reference
  citation-verifier batch <json>...       One verification job per file
"""

import asyncio
import json
import logging
import sys
from pathlib import Path

import click

from .config import settings
from .dedup import filter_invalid_references
from .models import (
    BatchJob,
    ExtractionResult,
    ProgressEvent,
    Reference,
    ReferenceList,
    VerificationResult,
)
from .ollama_client import OllamaClient
from .scheduler import BatchScheduler
from .sources import create_http_client
from .verifier import STRATEGIES, compute_stats, create_verifier, verify_reference

logger = logging.getLogger(__name__)

STATUS_ICONS = {
    "verified": "+",
    "unverified": "X",
    "needs-human": "?",
    "error": "!",
    "pending": " ",
}


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s",
        stream=sys.stderr,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


def _load_references(path: Path) -> ExtractionResult:
    """Read either {"references": [...]} or a bare list of references."""
    data = json.loads(path.read_text())
    if isinstance(data, list):
        data = {"source": path.name, "references": data}
    extraction = ExtractionResult.model_validate(data)
    if not extraction.source:
        extraction.source = path.name
    return extraction


def _log_progress(event: ProgressEvent) -> None:
    logger.debug("[%s] %s %s", event.id, event.status, event.message)


def _echo_reference(ref: Reference) -> None:
    icon = STATUS_ICONS.get(ref.status.value, " ")
    label = (ref.title or ref.raw)[:60]
    click.echo(f"  [{icon}] {ref.id}: {label}", err=True)


def _echo_stats(stats: dict[str, int]) -> None:
    click.echo(f"  Verified: {stats.get('verified', 0)}")
    click.echo(f"  Unverified: {stats.get('unverified', 0)}")
    click.echo(f"  Needs human review: {stats.get('needs-human', 0)}")
    click.echo(f"  Errors: {stats.get('error', 0)}")


def _warn_config() -> None:
    for problem in settings.validate():
        click.echo(f"Warning: {problem}", err=True)


async def _ensure_llm(llm: OllamaClient) -> None:
    if not await llm.check_connection():
        raise click.ClickException(
            f"Ollama model '{llm.model}' is not available. "
            f"Start 'ollama serve' and run 'ollama pull {llm.model}'."
        )


def _make_llm(model: str | None) -> OllamaClient:
    return OllamaClient(
        model=model or settings.ollama_model,
        host=settings.ollama_host,
        timeout=settings.decision_timeout,
        max_retries=settings.max_retries,
    )


async def _run_batch(
    references: list[Reference],
    strategy: str,
    model: str | None,
    concurrency: int,
    max_iterations: int,
) -> list[Reference]:
    llm = _make_llm(model)
    await _ensure_llm(llm)
    async with create_http_client() as http:
        verifier = create_verifier(
            strategy, llm, http, settings.key_pool(), max_iterations, settings.max_retries
        )
        scheduler = BatchScheduler(
            verifier,
            concurrency=concurrency,
            file_concurrency=settings.file_concurrency,
            pace_delay=settings.pace_delay,
            on_progress=_log_progress,
            llm=llm,
        )
        return await scheduler.process_batch(references, on_batch_complete=_echo_reference)


async def _run_jobs(
    jobs: list[BatchJob],
    strategy: str,
    model: str | None,
    concurrency: int,
    max_iterations: int | None = None,
) -> list[BatchJob]:
    llm = _make_llm(model)
    await _ensure_llm(llm)
    async with create_http_client() as http:
        verifier = create_verifier(
            strategy,
            llm,
            http,
            settings.key_pool(),
            max_iterations or settings.max_iterations,
            settings.max_retries,
        )
        scheduler = BatchScheduler(
            verifier,
            concurrency=concurrency,
            file_concurrency=settings.file_concurrency,
            pace_delay=settings.pace_delay,
            on_progress=_log_progress,
            llm=llm,
        )
        return await scheduler.process_jobs(jobs)


async def _run_single(reference: Reference, strategy: str, model: str | None) -> Reference:
    llm = _make_llm(model)
    await _ensure_llm(llm)
    async with create_http_client() as http:
        verifier = create_verifier(
            strategy,
            llm,
            http,
            settings.key_pool(),
            settings.max_iterations,
            settings.max_retries,
        )

        def status_update(step: str, args: dict | None = None) -> None:
            click.echo(f"  ... {step}", err=True)

        return await verify_reference(reference, status_update, verifier=verifier)


strategy_option = click.option(
    "--strategy",
    type=click.Choice(STRATEGIES),
    default="agentic",
    show_default=True,
    help="agentic: LLM picks the checks; waterfall: fixed order of checks",
)
model_option = click.option("-m", "--model", default=None, help="Ollama model name")
verbose_option = click.option("-v", "--verbose", is_flag=True)


@click.group()
@click.version_option(package_name="citation-verifier")
def main():
    """Check that bibliographic references actually exist."""
    pass


@main.command()
@click.argument("json_path", type=click.Path(exists=True, path_type=Path))
@click.option("-o", "--output", type=click.Path(path_type=Path), default=None)
@strategy_option
@click.option("--concurrency", type=click.IntRange(min=1), default=None, help="References in flight")
@click.option("--max-iterations", type=click.IntRange(min=1), default=None)
@model_option
@click.option("--high-accuracy", is_flag=True, help="LLM double-checks each parsed reference first")
@click.option("--dedupe", is_flag=True, help="Drop references without title/authors and duplicates")
@verbose_option
def verify(
    json_path: Path,
    output: Path | None,
    strategy: str,
    concurrency: int | None,
    max_iterations: int | None,
    model: str | None,
    high_accuracy: bool,
    dedupe: bool,
    verbose: bool,
):
    """Verify a JSON file of parsed references."""
    _setup_logging(verbose)
    _warn_config()

    extraction = _load_references(json_path)
    references = extraction.references
    if dedupe:
        references = filter_invalid_references(references)

    if high_accuracy:
        job = BatchJob(
            id=json_path.stem,
            payload=ReferenceList(name=extraction.source, references=references),
            high_accuracy_mode=True,
        )
        (job,) = asyncio.run(
            _run_jobs(
                [job], strategy, model, concurrency or settings.concurrency, max_iterations
            )
        )
        if job.error:
            raise click.ClickException(job.error)
        results = job.results
    else:
        results = asyncio.run(
            _run_batch(
                references,
                strategy,
                model,
                concurrency or settings.concurrency,
                max_iterations or settings.max_iterations,
            )
        )

    result = VerificationResult(
        source=extraction.source, references=results, stats=compute_stats(results)
    )
    output = output or Path(f"{json_path.stem}_verified.json")
    output.write_text(result.model_dump_json(indent=2, by_alias=True))

    click.echo(f"Verification complete -> {output}")
    _echo_stats(result.stats)


@main.command()
@click.argument("raw")
@click.option("--doi", default=None)
@click.option("--title", default=None)
@click.option("--url", default=None)
@strategy_option
@model_option
@verbose_option
def check(
    raw: str,
    doi: str | None,
    title: str | None,
    url: str | None,
    strategy: str,
    model: str | None,
    verbose: bool,
):
    """Verify a single reference given as text."""
    _setup_logging(verbose)
    _warn_config()

    reference = Reference(id="1", raw=raw, doi=doi, title=title, url=url)
    result = asyncio.run(_run_single(reference, strategy, model))

    click.echo(f"Status: {result.status.value}")
    click.echo(f"Message: {result.message}")
    if result.checks_performed:
        click.echo(f"Checks: {', '.join(result.checks_performed)}")
    if result.fixed_reference:
        click.echo(f"Suggested reference: {result.fixed_reference}")


@main.command()
@click.argument("json_paths", nargs=-1, required=True, type=click.Path(exists=True, path_type=Path))
@click.option("-o", "--output-dir", type=click.Path(path_type=Path), default=Path("output"))
@strategy_option
@click.option("--concurrency", type=click.IntRange(min=1), default=None, help="References in flight per file")
@model_option
@click.option("--high-accuracy", is_flag=True, help="LLM double-checks each parsed reference first")
@verbose_option
def batch(
    json_paths: tuple[Path, ...],
    output_dir: Path,
    strategy: str,
    concurrency: int | None,
    model: str | None,
    high_accuracy: bool,
    verbose: bool,
):
    """Verify several reference files, one job per file."""
    _setup_logging(verbose)
    _warn_config()

    jobs = []
    for path in json_paths:
        extraction = _load_references(path)
        jobs.append(
            BatchJob(
                id=path.stem,
                payload=ReferenceList(name=extraction.source, references=extraction.references),
                high_accuracy_mode=high_accuracy,
            )
        )

    jobs = asyncio.run(_run_jobs(jobs, strategy, model, concurrency or settings.concurrency))

    output_dir.mkdir(parents=True, exist_ok=True)
    for job in jobs:
        if job.error:
            click.echo(f"{job.id}: failed ({job.error})")
            continue
        result = VerificationResult(
            source=job.payload.name, references=job.results, stats=compute_stats(job.results)
        )
        out_path = output_dir / f"{job.id}_verified.json"
        out_path.write_text(result.model_dump_json(indent=2, by_alias=True))
        click.echo(f"{job.id}: {len(job.results)} references -> {out_path}")
        _echo_stats(result.stats)
