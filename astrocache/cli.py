"""Command line interface for astrocache."""

from __future__ import annotations

import asyncio
import sys
from datetime import datetime
from difflib import get_close_matches
from enum import Enum
from typing import Awaitable, Callable, NoReturn, Sequence, TypeVar

import click
import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from typer.core import TyperGroup

from . import __version__
from .api import AstrocacheClient
from .cache import MediaItem, SearchTerm
from .config import (
    DEFAULT_API_URL,
    SUPPORTED_RECENCY_POLICIES,
    Config,
    load_config,
    normalize_api_url,
    resolve_api_url,
    set_last_query,
)
from .errors import AstrocacheError
from .providers.nasa import NasaImagesTransport
from .services.config_service import apply_config_updates, get_config_snapshot
from .services.search_service import SearchTransport
from .text import Messages, Styles
from .utils import (
    configure_logging,
    ensure_positive,
    format_file_size,
    format_timestamp,
    normalize_term,
)

T = TypeVar("T")

console = Console()


class DefaultSearchGroup(TyperGroup):
    """Treat unknown subcommands as search terms."""

    def resolve_command(
        self,
        ctx: click.Context,
        args: list[str],
    ) -> tuple[str | None, click.Command | None, list[str]]:
        if args and not args[0].startswith("-") and self.get_command(ctx, args[0]) is None:
            token = args[0]
            matches: list[str] = []
            if getattr(self, "suggest_commands", True) and self.commands:
                matches = get_close_matches(
                    token,
                    list(self.commands.keys()),
                    cutoff=0.8,
                )
            # near-misses of a real command stay usage errors
            if not matches:
                command = self.get_command(ctx, "search")
                if command is not None:
                    return "search", command, list(args)
        return super().resolve_command(ctx, args)


app = typer.Typer(
    help=Messages.APP_HELP,
    no_args_is_help=True,
    context_settings={"help_option_names": ["-h", "--help"]},
    cls=DefaultSearchGroup,
)


class SearchOutputFormat(str, Enum):
    rich = "rich"
    porcelain = "porcelain"


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"Astrocache v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-V",
        help=Messages.HELP_VERBOSE,
    ),
) -> None:
    """Global Typer callback for shared options."""
    configure_logging(verbose)


def _build_transport(config: Config) -> SearchTransport:
    return NasaImagesTransport(api_url=config.api_url, timeout=config.timeout)


def _run_with_client(
    operation: Callable[[AstrocacheClient], Awaitable[T]],
    *,
    config: Config | None = None,
) -> T:
    effective = config if config is not None else load_config()

    async def runner() -> T:
        async with AstrocacheClient(
            config=effective,
            transport=_build_transport(effective),
        ) as client:
            return await operation(client)

    return asyncio.run(runner())


def _fail(message: str, output_format: SearchOutputFormat = SearchOutputFormat.rich) -> NoReturn:
    if output_format == SearchOutputFormat.rich:
        console.print(_styled(escape(message), Styles.ERROR))
    else:
        typer.echo(message, err=True)
    raise typer.Exit(code=1)


def _notice(
    message: str,
    style: str,
    output_format: SearchOutputFormat = SearchOutputFormat.rich,
) -> None:
    if output_format == SearchOutputFormat.rich:
        console.print(_styled(escape(message), style))
    else:
        typer.echo(message, err=True)


@app.command()
def search(
    term: str = typer.Argument(..., help=Messages.HELP_TERM),
    output_format: SearchOutputFormat = typer.Option(
        SearchOutputFormat.rich,
        "--format",
        help=Messages.HELP_SEARCH_FORMAT,
    ),
) -> None:
    """Search the NASA image library and cache the results locally."""
    clean_term = normalize_term(term)
    if not clean_term:
        _fail(Messages.ERROR_EMPTY_TERM, output_format)
    config = load_config()
    set_last_query(clean_term)
    if output_format == SearchOutputFormat.rich:
        _notice(Messages.INFO_SEARCH_RUNNING.format(term=clean_term), Styles.INFO)
    try:
        response = _run_with_client(lambda client: client.search(clean_term), config=config)
    except AstrocacheError as exc:
        _fail(str(exc), output_format)

    if response.error_kind is not None:
        _fail(response.error or Messages.ERROR_EMPTY_TERM, output_format)
    if response.offline:
        _notice(
            Messages.INFO_OFFLINE_RESULTS.format(term=clean_term),
            Styles.WARNING,
            output_format,
        )
    if not response.items:
        _notice(Messages.INFO_NO_RESULTS.format(term=clean_term), Styles.WARNING, output_format)
        raise typer.Exit(code=0)
    _render_items(clean_term, response.items, output_format, offline=response.offline)


@app.command()
def cached(
    term: str | None = typer.Argument(None, help=Messages.HELP_CACHED_TERM),
    output_format: SearchOutputFormat = typer.Option(
        SearchOutputFormat.rich,
        "--format",
        help=Messages.HELP_SEARCH_FORMAT,
    ),
) -> None:
    """Show cached results for a term without contacting the network."""
    config = load_config()
    clean_term = normalize_term(term) or normalize_term(config.last_query)
    if not clean_term:
        _fail(Messages.ERROR_NO_LAST_QUERY, output_format)
    try:
        items = _run_with_client(lambda client: client.load_cached(clean_term), config=config)
    except AstrocacheError as exc:
        _fail(str(exc), output_format)
    if not items:
        _notice(Messages.INFO_NO_CACHED.format(term=clean_term), Styles.WARNING, output_format)
        raise typer.Exit(code=0)
    _render_items(clean_term, items, output_format, offline=True)


@app.command()
def recent(
    limit: int | None = typer.Option(
        None,
        "--limit",
        "-n",
        help=Messages.HELP_RECENT_LIMIT,
    ),
) -> None:
    """List recent search terms, most recently searched first."""
    config = load_config()
    effective = limit if limit is not None else config.recent_limit
    try:
        ensure_positive(effective, "limit")
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--limit") from exc
    try:
        terms = _run_with_client(lambda client: client.recent_terms(effective), config=config)
    except AstrocacheError as exc:
        _fail(str(exc))
    if not terms:
        console.print(_styled(Messages.INFO_RECENT_EMPTY, Styles.INFO))
        return
    _render_recent(terms)


@app.command()
def show(
    nasa_id: str = typer.Argument(..., help=Messages.HELP_SHOW_ID),
) -> None:
    """Show the cached details of a single item."""
    clean_id = normalize_term(nasa_id)
    try:
        item = _run_with_client(lambda client: client.find_item(clean_id))
    except AstrocacheError as exc:
        _fail(str(exc))
    if item is None:
        _fail(Messages.ERROR_ITEM_MISSING.format(nasa_id=clean_id))
    _render_detail(item)


@app.command()
def forget(
    term: str = typer.Argument(..., help=Messages.HELP_FORGET_TERM),
) -> None:
    """Remove a search term and its result links from the cache."""
    clean_term = normalize_term(term)
    if not clean_term:
        _fail(Messages.ERROR_EMPTY_TERM)
    try:
        removed = _run_with_client(lambda client: client.forget_term(clean_term))
    except AstrocacheError as exc:
        _fail(str(exc))
    if removed:
        console.print(
            _styled(escape(Messages.INFO_TERM_FORGOTTEN.format(term=clean_term)), Styles.SUCCESS)
        )
    else:
        console.print(
            _styled(escape(Messages.INFO_TERM_UNKNOWN.format(term=clean_term)), Styles.INFO)
        )


@app.command()
def config(
    set_api_url_option: str | None = typer.Option(
        None,
        "--set-api-url",
        help=Messages.HELP_SET_API_URL,
    ),
    clear_api_url: bool = typer.Option(
        False,
        "--clear-api-url",
        help=Messages.HELP_CLEAR_API_URL,
    ),
    set_timeout_option: float | None = typer.Option(
        None,
        "--set-timeout",
        help=Messages.HELP_SET_TIMEOUT,
    ),
    set_recent_limit_option: int | None = typer.Option(
        None,
        "--set-recent-limit",
        help=Messages.HELP_SET_RECENT_LIMIT,
    ),
    set_recency_policy_option: str | None = typer.Option(
        None,
        "--set-recency-policy",
        help=Messages.HELP_SET_RECENCY_POLICY,
    ),
    show: bool = typer.Option(
        False,
        "--show",
        help=Messages.HELP_SHOW_CONFIG,
    ),
    show_cache: bool = typer.Option(
        False,
        "--show-cache",
        help=Messages.HELP_SHOW_CACHE,
    ),
    clear_cache: bool = typer.Option(
        False,
        "--clear-cache",
        help=Messages.HELP_CLEAR_CACHE,
    ),
) -> None:
    """Manage astrocache configuration stored in ~/.astrocache/config.json."""
    if set_api_url_option is not None and clear_api_url:
        raise typer.BadParameter(Messages.ERROR_API_URL_CONFLICT)
    if set_api_url_option is not None:
        normalized_url = normalize_api_url(set_api_url_option)
        if not normalized_url:
            raise typer.BadParameter(Messages.ERROR_API_URL_EMPTY, param_hint="--set-api-url")
        set_api_url_option = normalized_url
    if set_timeout_option is not None and set_timeout_option <= 0:
        raise typer.BadParameter(Messages.ERROR_TIMEOUT_INVALID, param_hint="--set-timeout")
    if set_recent_limit_option is not None and set_recent_limit_option <= 0:
        raise typer.BadParameter(
            Messages.ERROR_RECENT_LIMIT_INVALID, param_hint="--set-recent-limit"
        )
    if set_recency_policy_option is not None:
        normalized_policy = set_recency_policy_option.strip().lower()
        if normalized_policy not in SUPPORTED_RECENCY_POLICIES:
            allowed = ", ".join(SUPPORTED_RECENCY_POLICIES)
            raise typer.BadParameter(
                Messages.ERROR_RECENCY_POLICY_INVALID.format(
                    value=set_recency_policy_option, allowed=allowed
                )
            )
        set_recency_policy_option = normalized_policy

    updates = apply_config_updates(
        api_url=set_api_url_option,
        clear_api_url=clear_api_url,
        timeout=set_timeout_option,
        recent_limit=set_recent_limit_option,
        recency_policy=set_recency_policy_option,
    )

    if updates.api_url_set and set_api_url_option is not None:
        console.print(
            _styled(
                escape(Messages.INFO_API_URL_SET.format(value=set_api_url_option)),
                Styles.SUCCESS,
            )
        )
    if updates.api_url_cleared:
        console.print(_styled(Messages.INFO_API_URL_CLEARED, Styles.SUCCESS))
    if updates.timeout_set and set_timeout_option is not None:
        console.print(
            _styled(Messages.INFO_TIMEOUT_SET.format(value=set_timeout_option), Styles.SUCCESS)
        )
    if updates.recent_limit_set and set_recent_limit_option is not None:
        console.print(
            _styled(
                Messages.INFO_RECENT_LIMIT_SET.format(value=set_recent_limit_option),
                Styles.SUCCESS,
            )
        )
    if updates.recency_policy_set and set_recency_policy_option is not None:
        console.print(
            _styled(
                Messages.INFO_RECENCY_POLICY_SET.format(value=set_recency_policy_option),
                Styles.SUCCESS,
            )
        )

    if clear_cache:
        try:
            removed = _run_with_client(lambda client: client.clear_cache())
        except AstrocacheError as exc:
            _fail(str(exc))
        if removed:
            plural = "" if removed == 1 else "s"
            console.print(
                _styled(
                    Messages.INFO_CACHE_CLEARED.format(count=removed, plural=plural),
                    Styles.SUCCESS,
                )
            )
        else:
            console.print(_styled(Messages.INFO_CACHE_CLEAR_NONE, Styles.INFO))

    if show_cache:
        try:
            path, counts = _run_with_client(_collect_cache_stats)
        except AstrocacheError as exc:
            _fail(str(exc))
        console.print(
            escape(
                Messages.INFO_CACHE_SUMMARY.format(
                    path=path,
                    items=counts.get("media_item", 0),
                    assets=counts.get("media_asset", 0),
                    terms=counts.get("search_term", 0),
                    associations=counts.get("search_association", 0),
                )
            )
        )

    if show or not (updates.changed or clear_cache or show_cache):
        cfg = get_config_snapshot()
        api_url = resolve_api_url(cfg.api_url)
        if api_url == DEFAULT_API_URL:
            api_url = f"{api_url} (default)"
        console.print(
            escape(
                Messages.INFO_CONFIG_SUMMARY.format(
                    api_url=api_url,
                    timeout=cfg.timeout,
                    recent_limit=cfg.recent_limit,
                    recency_policy=cfg.recency_policy,
                    last_query=cfg.last_query or "-",
                )
            )
        )


async def _collect_cache_stats(client: AstrocacheClient) -> tuple[str, dict[str, int]]:
    return str(client.store.path), await client.stats()


def _render_items(
    term: str,
    items: Sequence[MediaItem],
    output_format: SearchOutputFormat,
    *,
    offline: bool = False,
) -> None:
    if output_format == SearchOutputFormat.porcelain:
        _render_items_porcelain(items)
        return
    title = Messages.TABLE_TITLE.format(term=term)
    if offline:
        title = f"{title}{Messages.TABLE_OFFLINE_SUFFIX}"
    console.print(_styled(escape(title), Styles.TITLE))
    table = Table(show_header=True, header_style=Styles.TABLE_HEADER)
    table.add_column(Messages.TABLE_HEADER_INDEX, justify="right")
    table.add_column(Messages.TABLE_HEADER_TITLE, overflow="fold")
    table.add_column(Messages.TABLE_HEADER_ID, overflow="fold")
    table.add_column(Messages.TABLE_HEADER_CENTER)
    table.add_column(Messages.TABLE_HEADER_DATE)
    table.add_column(Messages.TABLE_HEADER_ASSETS, justify="right")
    for idx, item in enumerate(items, start=1):
        table.add_row(
            str(idx),
            escape(item.title),
            escape(item.nasa_id),
            escape(item.center or "-"),
            _format_date(item.date_created),
            str(item.asset_count),
        )
    console.print(table)


def _escape_porcelain_field(value: str) -> str:
    return (
        value.replace("\\", "\\\\")
        .replace("\t", "\\t")
        .replace("\n", "\\n")
        .replace("\r", "\\r")
    )


def _render_items_porcelain(items: Sequence[MediaItem]) -> None:
    for idx, item in enumerate(items, start=1):
        fields = (
            str(idx),
            _escape_porcelain_field(item.nasa_id),
            _escape_porcelain_field(item.title),
            _escape_porcelain_field(item.center or "-"),
            _format_date(item.date_created),
            str(item.asset_count),
            _escape_porcelain_field(item.thumbnail_url or "-"),
        )
        typer.echo("\t".join(fields))


def _render_recent(terms: Sequence[SearchTerm]) -> None:
    console.print(_styled(Messages.TABLE_RECENT_TITLE, Styles.TITLE))
    table = Table(show_header=True, header_style=Styles.TABLE_HEADER)
    table.add_column(Messages.TABLE_HEADER_INDEX, justify="right")
    table.add_column(Messages.TABLE_HEADER_TERM, overflow="fold")
    table.add_column(Messages.TABLE_HEADER_SEARCHED)
    for idx, entry in enumerate(terms, start=1):
        table.add_row(str(idx), escape(entry.term), format_timestamp(entry.last_searched_at))
    console.print(table)


def _render_detail(item: MediaItem) -> None:
    console.print(_styled(escape(item.title), Styles.TITLE))
    console.print(f"{Messages.TABLE_HEADER_ID}: {escape(item.nasa_id)}")
    console.print(f"{Messages.TABLE_HEADER_CENTER}: {escape(item.center or '-')}")
    console.print(f"{Messages.TABLE_HEADER_DATE}: {_format_date(item.date_created)}")
    if item.photographer:
        console.print(f"Photographer: {escape(item.photographer)}")
    if item.location:
        console.print(f"Location: {escape(item.location)}")
    if item.description:
        console.print(_styled(Messages.DETAIL_DESCRIPTION, Styles.TABLE_HEADER))
        console.print(escape(item.description))
    if item.keywords:
        console.print(
            f"{_styled(Messages.DETAIL_KEYWORDS, Styles.TABLE_HEADER)}: "
            f"{escape(', '.join(item.keywords))}"
        )
    if not item.assets:
        console.print(_styled(Messages.DETAIL_NO_ASSETS, Styles.INFO))
        return
    table = Table(
        title=Messages.DETAIL_ASSETS,
        show_header=True,
        header_style=Styles.TABLE_HEADER,
    )
    table.add_column("rel")
    table.add_column("render")
    table.add_column("dimensions", justify="right", no_wrap=True)
    table.add_column("size", justify="right", no_wrap=True)
    table.add_column("href", overflow="fold")
    for asset in item.assets:
        dimensions = f"{asset.width}x{asset.height}" if asset.width and asset.height else "-"
        table.add_row(
            escape(asset.rel or "-"),
            escape(asset.render or "-"),
            dimensions,
            format_file_size(asset.size),
            escape(asset.href or "-"),
        )
    console.print(table)


def _format_date(value: datetime | None) -> str:
    if value is None:
        return "-"
    return value.date().isoformat()


def _styled(text: str, style: str) -> str:
    return f"[{style}]{text}[/{style}]"


def run(argv: list[str] | None = None) -> None:
    """Entry point wrapper allowing optional argument override."""
    args = list(argv) if argv is not None else sys.argv[1:]
    if argv is None:
        app()
    else:
        app(args=args)
