import asyncio
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

import click
from rich import box
from rich.console import Console
from rich.table import Table

from .config import AnalysisConfig, ConfigFile, Settings, UserConfig, get_settings, validate_config
from .errors import ArticleDedupError, EmbeddingError, ExtractionError, LLMError, SubmissionError
from .ingest.fetcher import Fetcher
from .logging import get_logger, log_error, setup_logging
from .models.article import DedupResult, DedupStatus
from .models.embedding_client import EmbeddingProvider, create_embedding_client
from .models.llm_client import AnnotationProvider, create_llm_client
from .processing.annotate import ArticleAnnotator
from .processing.dedupe import DeduplicationCoordinator, Submission
from .processing.extractor import ContentExtractor
from .storage.store import ArticleStore, SQLiteArticleStore
from .utils import truncate_text

logger = get_logger(__name__)
console = Console()


class ArticlePipeline:
    """URL in, classification out: fetch, extract, then deduplicate."""

    def __init__(
        self,
        settings: Settings,
        analysis_config: AnalysisConfig,
        store: ArticleStore,
        fetcher: Fetcher,
        embedder: EmbeddingProvider,
        llm: AnnotationProvider | None = None,
    ):
        self.settings = settings
        self.analysis_config = analysis_config
        self.store = store
        self.fetcher = fetcher
        self.extractor = ContentExtractor(max_content_size=analysis_config.max_content_size)

        annotator = None
        if llm is not None:
            annotator = ArticleAnnotator(llm, analysis_config, settings.provider_timeout_seconds)

        self.coordinator = DeduplicationCoordinator(
            store,
            embedder,
            annotator,
            save_similar_articles=analysis_config.save_similar_articles,
            metric=settings.similarity_metric,
            timeout=settings.provider_timeout_seconds,
        )

    async def extract(self, url: str) -> Submission:
        """Download and extract a page; every extraction failure has the same outcome.

        Raises:
            SubmissionError: Stage ``extraction`` with the cause chained
        """
        try:
            raw = await self.fetcher.fetch(url)
            content = await asyncio.to_thread(self.extractor.extract, raw, url)
        except ExtractionError as e:
            logger.warning("Extraction failed", url=url, error_type=e.__class__.__name__, error=str(e))
            raise SubmissionError("extraction", f"could not extract article text from {url}") from e

        logger.info("Article extracted", url=url, method=content.method, length=len(content.body))
        return Submission(url=url, content=content.body, title=content.title, published_at=content.published_at)

    async def submit(self, url: str, user_id: int = 0) -> DedupResult:
        submission = await self.extract(url)
        user_config = await self.store.get_user_config(user_id)
        try:
            return await self.coordinator.process(submission, user_config)
        except EmbeddingError as e:
            raise SubmissionError("embedding", str(e)) from e

    async def preview(self, url: str, user_id: int = 0) -> DedupResult:
        submission = await self.extract(url)
        user_config = await self.store.get_user_config(user_id)
        try:
            return await self.coordinator.find_similar(submission, user_config)
        except EmbeddingError as e:
            raise SubmissionError("embedding", str(e)) from e


@asynccontextmanager
async def open_pipeline(
    settings: Settings,
    analysis_config: AnalysisConfig,
    db_path: Path,
) -> AsyncIterator[ArticlePipeline]:
    """Build a pipeline with live clients and release them afterwards."""
    embedder = create_embedding_client(settings)
    try:
        llm = create_llm_client(settings)
    except LLMError as e:
        logger.warning("Annotations disabled", error=str(e))
        llm = None

    try:
        async with SQLiteArticleStore(db_path) as store, Fetcher(settings) as fetcher:
            yield ArticlePipeline(settings, analysis_config, store, fetcher, embedder, llm)
    finally:
        await embedder.aclose()
        if llm is not None:
            await llm.aclose()


# ── Rendering ──────────────────────────────────────────────────────────────

STATUS_LABELS = {
    DedupStatus.ORIGINAL: "[green]original[/green]",
    DedupStatus.DUPLICATE: "[yellow]duplicate[/yellow]",
    DedupStatus.EXACT_DUPLICATE: "[red]exact duplicate[/red]",
}


def render_result(result: DedupResult) -> None:
    article = result.article
    console.print(f"Status: {STATUS_LABELS[result.status]}")
    console.print(f"Title: {article.title or '-'}")
    if result.existing is not None:
        console.print(f"Already stored as #{result.existing.id}: {result.existing.source_url}")
    if article.sentiment:
        console.print(f"Sentiment: {article.sentiment}")
        console.print(f"Justification: {truncate_text(article.justification, 300)}")
    if article.affiliation:
        console.print(f"Affiliation: {truncate_text(article.affiliation, 300)}")
    if result.stored:
        console.print(f"Stored as #{article.id}")

    if result.verified:
        table = Table(title="Similar articles", box=box.SIMPLE)
        table.add_column("ID", justify="right")
        table.add_column("URL")
        table.add_column("Composite", justify="right")
        table.add_column("Vector", justify="right")
        table.add_column("Citations", justify="right")
        for candidate in result.verified:
            table.add_row(
                str(candidate.article.id),
                candidate.article.source_url,
                f"{candidate.composite_score:.3f}",
                f"{candidate.vector_score:.3f}",
                str(candidate.article.citations),
            )
        console.print(table)

    for diagnostic in result.diagnostics:
        console.print(f"[dim]warning: {diagnostic}[/dim]")


def _run(coro):
    try:
        return asyncio.run(coro)
    except ArticleDedupError as e:
        logger.error("Command failed", **log_error(e, context="cli"))
        click.echo(f"❌ Error: {e}", err=True)
        sys.exit(1)


# ── CLI ────────────────────────────────────────────────────────────────────

@click.group()
@click.option("--config", "config_path", type=click.Path(dir_okay=False, path_type=Path),
              default="config.yaml", show_default=True, help="Analysis config file")
@click.option("--db", "db_path", type=click.Path(dir_okay=False, path_type=Path),
              help="SQLite database (default: DATA_DIR/articles.db)")
@click.option("--log-level", default="WARNING", help="Log level")
@click.option("--mock", is_flag=True, help="Use mock embedding and LLM clients")
@click.pass_context
def cli(ctx, config_path, db_path, log_level, mock):
    """Article dedup agent: detect near-duplicate news articles and track citations."""
    setup_logging(log_level=log_level, json_logging=False)

    settings = get_settings()
    if mock:
        settings.mock = True

    ctx.obj = {
        "settings": settings,
        "config_file": ConfigFile(config_path),
        "db_path": db_path or settings.database_path,
    }


def _check_settings(settings: Settings) -> None:
    if not validate_config(settings):
        click.echo("❌ Configuration validation failed. Set API keys or use --mock.", err=True)
        sys.exit(1)


@cli.command()
@click.argument("url")
@click.option("--user-id", type=int, default=0, show_default=True, help="User whose thresholds apply")
@click.pass_obj
def submit(obj, url, user_id):
    """Submit an article URL for deduplication."""
    _check_settings(obj["settings"])

    async def _submit() -> DedupResult:
        async with open_pipeline(obj["settings"], obj["config_file"].load(), obj["db_path"]) as pipeline:
            return await pipeline.submit(url, user_id)

    render_result(_run(_submit()))


@cli.command()
@click.argument("url")
@click.option("--user-id", type=int, default=0, show_default=True, help="User whose thresholds apply")
@click.pass_obj
def similar(obj, url, user_id):
    """Show stored articles similar to URL without recording anything."""
    _check_settings(obj["settings"])

    async def _similar() -> DedupResult:
        async with open_pipeline(obj["settings"], obj["config_file"].load(), obj["db_path"]) as pipeline:
            return await pipeline.preview(url, user_id)

    result = _run(_similar())
    if result.status == DedupStatus.ORIGINAL:
        console.print("No similar articles found.")
    render_result(result)


@cli.command()
@click.pass_obj
def articles(obj):
    """List stored articles."""

    async def _list():
        async with SQLiteArticleStore(obj["db_path"]) as store:
            return await store.get_all_articles()

    stored = _run(_list())
    table = Table(title=f"Articles ({len(stored)})", box=box.SIMPLE)
    for column in ("ID", "Published", "Source", "Title", "URL", "Original", "Citations", "Sentiment"):
        table.add_column(column)
    for article in stored:
        table.add_row(
            str(article.id),
            article.published_at.strftime("%Y-%m-%d %H:%M") if article.published_at else "-",
            article.domain,
            truncate_text(article.title, 60),
            article.source_url,
            "yes" if article.original else "no",
            str(article.citations),
            article.sentiment or "-",
        )
    console.print(table)


@cli.command()
@click.option("--yes", is_flag=True, help="Confirm deletion of every stored article")
@click.pass_obj
def purge(obj, yes):
    """Delete all stored articles."""
    if not yes:
        click.echo("Refusing to delete articles without --yes", err=True)
        sys.exit(1)

    async def _purge() -> int:
        async with SQLiteArticleStore(obj["db_path"]) as store:
            return await store.delete_all_articles()

    click.echo(f"Deleted {_run(_purge())} articles")


@cli.group("user-config")
def user_config():
    """Per-user similarity thresholds."""


@user_config.command("show")
@click.option("--user-id", type=int, default=0, show_default=True)
@click.pass_obj
def user_config_show(obj, user_id):
    async def _show():
        async with SQLiteArticleStore(obj["db_path"]) as store:
            return await store.get_user_config(user_id)

    config = _run(_show())
    for key, value in config.model_dump().items():
        click.echo(f"{key}: {value}")


@user_config.command("set")
@click.option("--user-id", type=int, default=0, show_default=True)
@click.option("--vector-threshold", type=float, help="Coarse vector similarity threshold")
@click.option("--days-lookback", type=int, help="Candidate window in days")
@click.option("--vector-weight", type=float, help="Vector weight in the composite score")
@click.option("--final-threshold", type=float, help="Composite score threshold")
@click.pass_obj
def user_config_set(obj, user_id, vector_threshold, days_lookback, vector_weight, final_threshold):
    """Update thresholds; unspecified values are kept."""
    updates = {
        "vector_similarity_threshold": vector_threshold,
        "days_lookback": days_lookback,
        "composite_vector_weight": vector_weight,
        "final_similarity_threshold": final_threshold,
    }
    updates = {key: value for key, value in updates.items() if value is not None}

    async def _set():
        async with SQLiteArticleStore(obj["db_path"]) as store:
            current = await store.get_user_config(user_id)
            config = UserConfig.model_validate({**current.model_dump(), **updates})
            await store.save_user_config(config)
            return config

    try:
        config = _run(_set())
    except ValueError as e:
        raise click.BadParameter(str(e)) from e
    click.echo(f"Saved settings for user {config.user_id}")


@cli.group("config")
def config_group():
    """Analysis config file."""


@config_group.command("show")
@click.pass_obj
def config_show(obj):
    config = obj["config_file"].load()
    click.echo(f"object: {config.object}")
    click.echo(f"object_metadata: {config.object_metadata}")
    click.echo(f"max_content_size: {config.max_content_size}")
    click.echo(f"save_similar_articles: {config.save_similar_articles}")
    click.echo(f"full_analysis: {config.full_analysis}")


@config_group.command("set-object")
@click.argument("name")
@click.option("--metadata", default=None, help="Extra context about the object")
@click.pass_obj
def config_set_object(obj, name, metadata):
    """Set the subject articles are analysed against."""
    config_file: ConfigFile = obj["config_file"]
    config = config_file.load()
    config.object = name
    if metadata is not None:
        config.object_metadata = metadata
    config_file.save(config)
    click.echo(f"Object set to {name}")


@config_group.command("toggle-save-similar")
@click.pass_obj
def config_toggle_save_similar(obj):
    config_file: ConfigFile = obj["config_file"]
    config = config_file.load()
    config.save_similar_articles = not config.save_similar_articles
    config_file.save(config)
    click.echo(f"save_similar_articles: {config.save_similar_articles}")


@config_group.command("set-max-content")
@click.argument("size", type=int)
@click.pass_obj
def config_set_max_content(obj, size):
    """Set the maximum article length in characters."""
    config_file: ConfigFile = obj["config_file"]
    try:
        config = AnalysisConfig.model_validate({**config_file.load().model_dump(), "max_content_size": size})
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="SIZE") from e
    config_file.save(config)
    click.echo(f"max_content_size: {size}")


if __name__ == "__main__":
    cli()
