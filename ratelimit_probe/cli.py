"""
Command line entry point.

Usage:
    ratelimit-probe --base-url http://localhost:8080/api
    ratelimit-probe --stage smoke --time-scale 0.1 --no-live
    ratelimit-probe --stage rate_limit_stress --report markdown --output stress.json
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.logging import RichHandler

from . import __version__
from .config import Credentials, ProbeSettings
from .errors import ConfigError
from .report import ReportFormat, SummaryReporter
from .runner import LoadTestRunner
from .stages import STAGE_NAMES, select_stages

# Try to use uvloop for better performance on Linux
try:
    import uvloop
    UVLOOP_AVAILABLE = True
except ImportError:
    UVLOOP_AVAILABLE = False

console = Console()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ratelimit-probe",
        description="🚦 Rate limit probe: synthetic load against per-category API budgets",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--base-url", "-u", help="API base URL (PROBE_BASE_URL)")
    parser.add_argument("--phone", help="Test account phone number (PROBE_PHONE)")
    parser.add_argument("--password", help="Test account password (PROBE_PASSWORD)")
    parser.add_argument("--referral-code", help="Referral code used on register (PROBE_REFERRAL_CODE)")
    parser.add_argument("--timeout", "-t", type=float, help="Request timeout in seconds (PROBE_TIMEOUT)")
    parser.add_argument("--time-scale", type=float,
                        help="Seconds per time-unit; 0.1 runs the schedule 10x faster (PROBE_TIME_SCALE)")
    parser.add_argument("--seed", type=int, help="Seed for reproducible workloads (PROBE_SEED)")
    parser.add_argument("--stage", "-s", action="append", choices=STAGE_NAMES,
                        help="Stage to run; repeat for several (default: all)")
    parser.add_argument("--no-ssl-verify", action="store_true", help="Disable SSL verification")
    parser.add_argument("--report", choices=[f.value for f in ReportFormat], default="console")
    parser.add_argument("--output", "-o", help="JSON artifact path (PROBE_OUTPUT)")
    parser.add_argument("--no-live", action="store_true", help="Disable the live metrics table")
    parser.add_argument("--log-level", help="Logging level (PROBE_LOG_LEVEL)")
    return parser


def settings_from_args(args: argparse.Namespace, environ=None) -> ProbeSettings:
    """Environment first, then any flag that was given."""
    base = ProbeSettings.from_environment(environ)
    credentials = Credentials(
        phone=args.phone or base.credentials.phone,
        password=args.password or base.credentials.password,
        referral_code=args.referral_code or base.credentials.referral_code,
    )
    return ProbeSettings(
        base_url=args.base_url or base.base_url,
        credentials=credentials,
        timeout_seconds=args.timeout if args.timeout is not None else base.timeout_seconds,
        verify_ssl=base.verify_ssl and not args.no_ssl_verify,
        time_scale=args.time_scale if args.time_scale is not None else base.time_scale,
        seed=args.seed if args.seed is not None else base.seed,
        output_file=args.output or base.output_file,
        log_level=args.log_level or base.log_level,
        faker_locale=base.faker_locale,
        thresholds=base.thresholds,
    )


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )
    # aiohttp is chatty at DEBUG
    logging.getLogger("aiohttp").setLevel(max(logging.getLevelName(level), logging.INFO))


def write_reports(reporter: SummaryReporter, report_format: ReportFormat, output_file: str) -> None:
    json_path = reporter.write_json(output_file)

    if report_format is ReportFormat.JSON:
        console.print_json(reporter.to_json())
    else:
        reporter.render_console(console)

    if report_format is ReportFormat.MARKDOWN:
        markdown_path = reporter.write_markdown(str(Path(output_file).with_suffix(".md")))
        console.print(f"[green]Markdown report saved to: {markdown_path}[/green]")
    console.print(f"[green]Report saved to: {json_path}[/green]")


async def run(args: argparse.Namespace) -> int:
    settings = settings_from_args(args)
    configure_logging(settings.log_level)
    stages = select_stages(args.stage)

    console.print(f"\n[bold]Target:[/bold] {settings.base_url}")
    console.print(f"[bold]Stages:[/bold] {', '.join(stage.name for stage in stages)}")
    console.print(f"[dim]uvloop: {'enabled ✓' if UVLOOP_AVAILABLE else 'not available'}[/dim]\n")

    runner = LoadTestRunner(settings, stages, console=console)
    reporter = await runner.run(show_live=not args.no_live)
    write_reports(reporter, ReportFormat(args.report), settings.output_file)
    return 0 if reporter.passed() else 1


def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    if UVLOOP_AVAILABLE:
        asyncio.set_event_loop_policy(uvloop.EventLoopPolicy())
    try:
        code = asyncio.run(run(args))
    except ConfigError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        code = 2
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted[/yellow]")
        code = 130
    sys.exit(code)


if __name__ == "__main__":
    main()
