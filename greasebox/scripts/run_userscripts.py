"""
greasebox/scripts/run_userscripts.py

Command-line entry point: run userscripts against a page in a remote Chrome.

Start Chrome with remote debugging first, e.g.:
    google-chrome --remote-debugging-port=9222

Usage:
    greasebox-run --url https://example.com --dir ./userscripts
    greasebox-run -u https://example.com -m "Set API Key" -t 30
    greasebox-run -u https://example.com --list-plan
"""

import argparse
import asyncio
import sys

from rich import box
from rich.console import Console
from rich.table import Table

from greasebox.config import Config
from greasebox.data_models.userscript import InjectionPlan, RunAt
from greasebox.runner import RunSummary, UserscriptRunner
from greasebox.utils.exceptions import StartupError
from greasebox.utils.logger import get_logger, set_log_level

logger = get_logger(name=__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run Greasemonkey-style userscripts in Chrome over CDP")
    parser.add_argument(
        "-u", "--url",
        type=str,
        default=Config.TARGET_URL,
        help=f"Target URL to navigate to (default: {Config.TARGET_URL})",
    )
    parser.add_argument(
        "-d", "--dir",
        type=str,
        default=Config.USERSCRIPTS_DIR,
        help=f"Directory containing *.user.js files (default: {Config.USERSCRIPTS_DIR})",
    )
    parser.add_argument(
        "-p", "--polyfill",
        type=str,
        default=None,
        help="Path to an alternative GM API page runtime (default: bundled gm_api_polyfill.js)",
    )
    parser.add_argument(
        "-s", "--storage-path",
        type=str,
        default=Config.GM_STORAGE_PATH,
        help=f"JSON file for GM_setValue storage (default: {Config.GM_STORAGE_PATH})",
    )
    parser.add_argument(
        "-r", "--remote-debugging-address",
        type=str,
        default=Config.REMOTE_DEBUGGING_ADDRESS,
        help=f"Chrome remote debugging address (default: {Config.REMOTE_DEBUGGING_ADDRESS})",
    )
    parser.add_argument(
        "-t", "--timeout",
        type=float,
        default=Config.OBSERVE_SECONDS,
        help=f"Seconds to keep observing the page after load (default: {Config.OBSERVE_SECONDS:g})",
    )
    parser.add_argument(
        "-m", "--run-menu-command",
        type=str,
        default=None,
        help="Caption of a GM menu command to execute after page load",
    )
    parser.add_argument(
        "-i", "--intercept-network",
        action="store_true",
        help="Log every network request the page makes",
    )
    parser.add_argument(
        "--no-incognito",
        action="store_true",
        help="Open the tab in the default browser context instead of a fresh one",
    )
    parser.add_argument(
        "--list-plan",
        action="store_true",
        help="Print which scripts would run for the URL, then exit (no browser needed)",
    )
    parser.add_argument("--log-level", type=str, default=None, help="Override LOG_LEVEL (e.g. DEBUG)")
    return parser


def print_plan(console: Console, plan: InjectionPlan) -> None:
    table = Table(title=f"Injection plan for {plan.url}", box=box.ROUNDED)
    table.add_column("Phase", style="cyan")
    table.add_column("Script")
    table.add_column("Matched by", style="dim")
    for phase in RunAt:
        for record in plan.for_phase(phase):
            table.add_row(phase.value, record.name, ", ".join(record.match_patterns))
    if plan.is_empty:
        console.print(f"[yellow]No userscripts match {plan.url}[/yellow]")
        return
    console.print(table)


def print_summary(console: Console, summary: RunSummary) -> None:
    table = Table(title="Run summary", box=box.ROUNDED)
    table.add_column("State", style="cyan")
    table.add_column("Scripts")
    for state, names in summary.delivery.items():
        table.add_row(state, ", ".join(names) or "-")
    console.print(table)
    if summary.navigation_error:
        console.print(f"[bold red]Navigation failed:[/bold red] {summary.navigation_error}")
    if summary.menu_command_ok is False:
        console.print("[bold red]Menu command failed[/bold red]")


def main() -> None:
    """Entry point for greasebox-run."""
    args = build_parser().parse_args()
    console = Console()

    if args.log_level:
        set_log_level(args.log_level)
    logger.debug("Configuration: %s", Config.as_dict())

    runner = UserscriptRunner(
        target_url=args.url,
        scripts_dir=args.dir,
        storage_path=args.storage_path,
        remote_debugging_address=args.remote_debugging_address,
        polyfill_path=args.polyfill,
        observe_seconds=args.timeout,
        menu_command=args.run_menu_command,
        intercept_network=args.intercept_network,
        incognito=not args.no_incognito,
    )

    if args.list_plan:
        print_plan(console, runner.load_catalog().plan_for(args.url))
        return

    try:
        summary = asyncio.run(runner.run())
    except StartupError as e:
        console.print(f"[bold red]Error: {e}[/bold red]")
        console.print("[dim]Is Chrome running with --remote-debugging-port?[/dim]")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted. Storage was saved and the tab closed.[/yellow]")
        sys.exit(130)

    print_summary(console, summary)
    if summary.navigation_error:
        sys.exit(1)


if __name__ == "__main__":
    main()
