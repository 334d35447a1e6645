"""Command-line interface for cloning storefront data between seller accounts."""

import asyncio
from typing import Any

import click
import httpx
from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.prompt import Confirm, Prompt
from rich.table import Table

from vitrine_clone.api.client import APIError
from vitrine_clone.config import Settings
from vitrine_clone.errors import CloneError
from vitrine_clone.models import MERGE, REPLACE, CloneOptions, CloneReport

console = Console()

VERSION = "1.0.0"


def show_clone_summary(source_id: str, target_id: str, options: CloneOptions) -> bool:
    """Show clone summary and get confirmation.

    Returns:
        True if user confirms with 'CLONE'
    """
    console.print()

    items = []
    if options.clone_categories:
        items.append("Categories")
    if options.clone_products:
        items.append("Products (with images)" if options.copy_images else "Products")
    items_str = ", ".join(items)

    if options.merge_strategy == REPLACE:
        strategy_note = "[red]Replace: existing target data will be deleted first.[/red]"
    else:
        strategy_note = "[dim]Merge: existing target data is kept; duplicate category names are skipped.[/dim]"

    summary = (
        f"[bold]Ready to clone account data[/bold]\n\n"
        f"  Source:   [cyan]{source_id}[/cyan]\n"
        f"  Target:   [cyan]{target_id}[/cyan]\n\n"
        f"  Cloning:  [cyan]{items_str}[/cyan]\n\n"
        f"  {strategy_note}"
    )
    console.print(Panel(summary, border_style="yellow"))
    console.print()
    response = Prompt.ask("Type [bold]CLONE[/bold] to start (or press Enter to cancel)", default="")
    return response.upper() == "CLONE"


def show_clone_complete(report: CloneReport, log_file: str | None = None) -> None:
    """Display clone completion summary."""
    console.print()

    has_errors = bool(report.errors)
    border_style = "yellow" if has_errors or not report.success else "green"
    if not report.success:
        status = "[bold yellow]Nothing was cloned[/bold yellow]"
    elif has_errors:
        status = "[bold yellow]Clone complete (needs review)[/bold yellow]"
    else:
        status = "[bold green]Clone complete![/bold green]"

    summary = (
        f"{status}\n\n"
        f"  Categories cloned: [cyan]{report.categories_cloned}[/cyan]\n"
        f"  Products cloned:   [cyan]{report.products_cloned}[/cyan]\n"
        f"  Images cloned:     [cyan]{report.images_cloned}[/cyan]\n"
        f"  Products skipped:  [cyan]{report.skipped}[/cyan]"
    )
    if log_file:
        summary += f"\n\n  Operation log: [cyan]{log_file}[/cyan]"
    console.print(Panel(summary, border_style=border_style))

    if has_errors:
        console.print("\n[bold red]Errors:[/bold red]")
        for error in report.errors[:10]:  # Limit to first 10
            console.print(f"  • [dim]{error}[/dim]")
        if len(report.errors) > 10:
            console.print(f"  [dim]... and {len(report.errors) - 10} more[/dim]")


def resolve_options(
    preset: str | None,
    categories: bool,
    products: bool,
    strategy: str,
    images: bool,
    max_products: int | None,
) -> CloneOptions:
    """Build clone options from flags; a preset overrides the individual flags."""
    if preset == "quick":
        options = CloneOptions.quick()
    elif preset == "full":
        options = CloneOptions.full()
    else:
        options = CloneOptions(
            clone_categories=categories,
            clone_products=products,
            merge_strategy=strategy,
            copy_images=images,
        )
    options.max_products = max_products
    return options


async def _run_clone_command(
    settings: Settings,
    source_id: str,
    target_id: str,
    options: CloneOptions,
    token: str,
    debug: bool,
) -> tuple[CloneReport, str]:
    from vitrine_clone.auth import AdminSessionAuth
    from vitrine_clone.clone import run_clone
    from vitrine_clone.output import CloneLogger

    operation_log = CloneLogger(source_id, target_id, options.to_dict(), settings.log_dir)
    console.print(f"[dim]Logging to: {operation_log.filepath}[/dim]\n")

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task("[cyan]Starting clone...", total=100)

        def on_progress(update) -> None:
            progress.update(task, completed=update.percentage, description=f"[cyan]{update.message}")

        async with settings.create_client(debug=debug) as db, httpx.AsyncClient() as fetcher:
            report = await run_clone(
                db,
                fetcher,
                source_id,
                target_id,
                options,
                authorization=AdminSessionAuth(token),
                on_progress=on_progress,
                timeout=settings.clone_timeout,
                operation_log=operation_log,
            )
    return report, str(operation_log.filepath)


@click.group()
@click.version_option(VERSION, prog_name="vitrine-clone")
@click.option("--debug", is_flag=True, help="Enable debug logging of store requests/responses")
@click.pass_context
def main(ctx: click.Context, debug: bool) -> None:
    """Clone categories, products and images between seller accounts."""
    from vitrine_clone.output import setup_logging

    ctx.ensure_object(dict)
    settings = Settings.from_env()
    ctx.obj["settings"] = settings
    ctx.obj["debug"] = debug
    log_path = setup_logging(debug=debug, label="cli", logs_dir=settings.log_dir)
    if log_path:
        console.print(f"[dim]Debug log: {log_path}[/dim]")


@main.command("clone")
@click.argument("source_id")
@click.argument("target_id")
@click.option("--categories/--no-categories", default=True, help="Clone category names")
@click.option("--products/--no-products", default=True, help="Clone products")
@click.option(
    "--strategy",
    type=click.Choice([MERGE, REPLACE]),
    default=MERGE,
    show_default=True,
    help="merge keeps target data; replace deletes it first",
)
@click.option("--images/--no-images", default=True, help="Re-host product images")
@click.option("--max-products", type=click.IntRange(min=1), default=None, help="Upper bound on products read")
@click.option("--preset", type=click.Choice(["quick", "full"]), default=None, help="quick: no images; full: with images")
@click.option("--token", envvar="VITRINE_ACCESS_TOKEN", help="Admin session access token")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompts")
@click.pass_context
def clone_command(
    ctx: click.Context,
    source_id: str,
    target_id: str,
    categories: bool,
    products: bool,
    strategy: str,
    images: bool,
    max_products: int | None,
    preset: str | None,
    token: str | None,
    yes: bool,
) -> None:
    """Clone SOURCE_ID's categories and products into TARGET_ID."""
    settings: Settings = ctx.obj["settings"]
    try:
        options = resolve_options(preset, categories, products, strategy, images, max_products)
    except CloneError as e:
        raise click.BadParameter(e.message)

    if not options.clone_categories and not options.clone_products:
        raise click.UsageError("Select at least one of --categories or --products.")

    if not token:
        token = Prompt.ask("Enter your admin access token", password=True)

    if not yes:
        if not show_clone_summary(source_id, target_id, options):
            console.print("\n[yellow]Aborted.[/yellow]")
            raise SystemExit(0)
        if options.merge_strategy == REPLACE and not Confirm.ask(
            "Replace deletes the target's existing data and cannot be undone. Continue?", default=False
        ):
            console.print("\n[yellow]Aborted.[/yellow]")
            raise SystemExit(0)

    try:
        report, log_file = asyncio.run(
            _run_clone_command(settings, source_id, target_id, options, token, ctx.obj["debug"])
        )
    except CloneError as e:
        console.print(f"\n[red]Error: {e.message}[/red]")
        if e.report is not None and e.report.total_processed:
            show_clone_complete(e.report)
        raise SystemExit(1)
    except KeyboardInterrupt:
        console.print("\n\n[yellow]Interrupted by user. Rows already written were kept.[/yellow]")
        raise SystemExit(1)

    show_clone_complete(report, log_file)
    if not report.success:
        raise SystemExit(1)


@main.command("check")
@click.argument("source_id")
@click.argument("target_id")
@click.option("--strategy", type=click.Choice([MERGE, REPLACE]), default=MERGE, show_default=True)
@click.option("--max-products", type=click.IntRange(min=1), default=None)
@click.pass_context
def check_command(ctx: click.Context, source_id: str, target_id: str, strategy: str, max_products: int | None) -> None:
    """Show what a clone from SOURCE_ID into TARGET_ID would do, without writing."""
    from vitrine_clone.clone import check_clone

    settings: Settings = ctx.obj["settings"]
    options = CloneOptions(merge_strategy=strategy, max_products=max_products)

    async def run() -> Any:
        async with settings.create_client(debug=ctx.obj["debug"]) as db:
            return await check_clone(db, source_id, target_id, options)

    try:
        result = asyncio.run(run())
    except (CloneError, APIError) as e:
        console.print(f"[red]Error: {e.message}[/red]")
        raise SystemExit(1)

    table = Table(title="Clone pre-flight check")
    table.add_column("")
    table.add_column("Categories", justify="right")
    table.add_column("Products", justify="right")
    table.add_column("Limit", justify="right")
    table.add_row("Source", str(result.source_stats["categories"]), str(result.source_stats["products"]), "")
    table.add_row(
        "Target",
        str(result.target_stats["categories"]),
        str(result.target_stats["products"]),
        str(result.target_stats["limit"]),
    )
    console.print(table)

    if result.valid:
        console.print("[green]No warnings.[/green]")
    else:
        for warning in result.warnings:
            console.print(f"[yellow]Warning: {warning}[/yellow]")
        raise SystemExit(1)


@main.command("inspect")
@click.argument("account_id")
@click.pass_context
def inspect_command(ctx: click.Context, account_id: str) -> None:
    """Print diagnostic counts for one account."""
    settings: Settings = ctx.obj["settings"]

    async def run() -> dict[str, Any] | None:
        async with settings.create_client(debug=ctx.obj["debug"]) as db:
            account = await db.select_one("users", "id, name, email, listing_limit, role, is_blocked", {"id": account_id})
            if account is None:
                return None
            products = await db.select("products", "id, featured_image_url", {"user_id": account_id})
            images = 0
            if products:
                images = await db.count("product_images", {"product_id": [p["id"] for p in products]})
            categories = await db.count("user_product_categories", {"user_id": account_id})
            return {
                **account,
                "categories": categories,
                "products": len(products),
                "images": images,
                "without_featured": sum(1 for p in products if not p.get("featured_image_url")),
            }

    try:
        info = asyncio.run(run())
    except (CloneError, APIError) as e:
        console.print(f"[red]Error: {e.message}[/red]")
        raise SystemExit(1)

    if info is None:
        console.print(f"[red]Account not found: {account_id}[/red]")
        raise SystemExit(1)

    table = Table(show_header=False)
    for key in ("id", "name", "email", "role", "is_blocked", "listing_limit", "categories", "products", "images", "without_featured"):
        table.add_row(key, str(info.get(key)))
    console.print(table)


@main.command("clone-account")
@click.argument("template_id")
@click.option("--email", required=True)
@click.option("--name", required=True)
@click.option("--slug", required=True)
@click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True)
@click.pass_context
def clone_account_command(ctx: click.Context, template_id: str, email: str, name: str, slug: str, password: str) -> None:
    """Create a new account as a full copy of TEMPLATE_ID."""
    from vitrine_clone.account import NewAccountData, clone_account

    settings: Settings = ctx.obj["settings"]
    new_account = NewAccountData(email=email, password=password, name=name, slug=slug)

    async def run():
        async with settings.create_client(debug=ctx.obj["debug"]) as db, httpx.AsyncClient() as fetcher:
            return await clone_account(db, fetcher, template_id, new_account)

    try:
        with console.status("[bold cyan]Cloning account...[/bold cyan]", spinner="dots"):
            result = asyncio.run(run())
    except (CloneError, APIError) as e:
        console.print(f"[red]Error: {e.message}[/red]")
        raise SystemExit(1)

    console.print(f"[green]Account created:[/green] [cyan]{result.new_user_id}[/cyan]")
    show_clone_complete(result.report)


@main.command("serve")
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=8000, show_default=True, type=int)
@click.pass_context
def serve_command(ctx: click.Context, host: str, port: int) -> None:
    """Run the HTTP clone service."""
    import uvicorn

    from vitrine_clone.server import create_app

    uvicorn.run(create_app(ctx.obj["settings"]), host=host, port=port)


if __name__ == "__main__":
    main()
