"""CLI entry point for the matching and pricing engine."""

import argparse
import logging
import sys
from pathlib import Path

from src.core.config import Settings
from src.core.db import init_db
from src.core.errors import BookingError
from src.core.notifier import LoggingNotifier
from src.core.repository import SqliteRepository
from src.core.schemas import PaymentBreakdown, QuoteBreakdown
from src.workflow.orchestrator import (
    AssignmentFailed,
    AutomationWorkflow,
    PaymentFailed,
    QuoteFailed,
    QuotedAndAssigned,
)

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Instructor matching and pricing engine",
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        default="config/settings.yaml",
        help="Path to settings YAML file (default: config/settings.yaml)",
    )
    common.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init-db", parents=[common], help="Create the database")

    quote_parser = subparsers.add_parser("quote", parents=[common], help="Quote a job")
    quote_parser.add_argument("--job", type=int, required=True, help="Job id")
    quote_parser.add_argument(
        "--no-budget-fit",
        action="store_true",
        help="Ignore the job's budget when pricing",
    )
    quote_parser.add_argument("--created-by", default="system", help="Author recorded on the quote")

    rank_parser = subparsers.add_parser("rank", parents=[common], help="Rank workers for a job")
    rank_parser.add_argument("--job", type=int, required=True, help="Job id")

    assign_parser = subparsers.add_parser("assign", parents=[common], help="Auto-assign a job")
    assign_parser.add_argument("--job", type=int, required=True, help="Job id")

    process_parser = subparsers.add_parser(
        "process", parents=[common], help="Quote and assign a new job",
    )
    process_parser.add_argument("--job", type=int, required=True, help="Job id")
    process_parser.add_argument("--no-assign", action="store_true", help="Stop after quoting")
    process_parser.add_argument(
        "--no-budget-fit",
        action="store_true",
        help="Ignore the job's budget when pricing",
    )

    pay_parser = subparsers.add_parser("pay", parents=[common], help="Pay a completed assignment")
    pay_parser.add_argument("--assignment", type=int, required=True, help="Assignment id")
    pay_parser.add_argument("--approved-by", default=None, help="Approver recorded on the payment")

    summary_parser = subparsers.add_parser(
        "summary", parents=[common], help="Monthly payment summary",
    )
    summary_parser.add_argument("--period", required=True, help="Accounting period (YYYY-MM)")

    return parser.parse_args(argv)


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def load_settings(path: str) -> Settings:
    """Load settings, falling back to defaults when the file is absent."""
    if not Path(path).exists():
        logger.info("No config at %s - using default rate tables", path)
        return Settings()
    return Settings.from_yaml(path)


def format_quote(b: QuoteBreakdown) -> str:
    lines = [
        f"  session fee    {b.session_fee:>12,}",
        f"  transport fee  {b.transport_fee:>12,}",
        f"  material cost  {b.material_cost:>12,}",
        f"  assistant fee  {b.assistant_fee:>12,}",
        f"  overhead       {b.overhead:>12,}",
        f"  subtotal       {b.subtotal:>12,}",
        f"  margin ({b.margin_rate * 100:.2f}%) {b.margin_amount:>9,}",
        f"  VAT            {b.vat:>12,}",
        f"  total          {b.total:>12,}",
        f"  discount       {b.discount:>12,}",
        f"  final total    {b.final_total:>12,}",
    ]
    return "\n".join(lines)


def format_payment(b: PaymentBreakdown) -> str:
    lines = [
        f"  sessions       {b.sessions:>12}",
        f"  session fee    {b.session_fee:>12,}",
        f"  transport fee  {b.transport_fee:>12,}",
        f"  bonus          {b.bonus:>12,}",
        f"  gross          {b.subtotal:>12,}",
        f"  withholding    {b.tax_withholding:>12,}",
        f"  deductions     {b.deductions:>12,}",
        f"  net            {b.net_amount:>12,}",
    ]
    return "\n".join(lines)


def run_command(args: argparse.Namespace, settings: Settings) -> int:
    """Execute one subcommand. Returns the process exit code."""
    conn = init_db(settings.database.path)
    try:
        if args.command == "init-db":
            print(f"Database ready at {settings.database.path}")
            return 0

        repo = SqliteRepository(conn)
        workflow = AutomationWorkflow(repo, LoggingNotifier(), settings)

        if args.command == "quote":
            quote = workflow.quotes.auto_generate(
                args.job, args.created_by, adjust_to_budget=not args.no_budget_fit,
            )
            print(f"Quote {quote.quote_number} (valid until {quote.valid_until})")
            print(format_quote(quote.breakdown))
            return 0

        if args.command == "rank":
            matches = workflow.matcher.rank_for_job(args.job)
            if not matches:
                print(f"No eligible workers for job {args.job}")
            for i, m in enumerate(matches, start=1):
                flag = "" if m.is_available else " [unavailable]"
                print(f"{i:>2}. {m.worker.name or m.worker.id} score={m.score}{flag}")
                for reason in m.reasons:
                    print(f"      - {reason}")
            return 0

        if args.command == "assign":
            result = workflow.matcher.auto_assign(args.job)
            print(
                f"Assignment {result.assignment.id}: worker {result.match.worker.id} "
                f"(score {result.match.score})"
            )
            return 0

        if args.command == "process":
            outcome = workflow.process_new_job(
                args.job,
                auto_assign=not args.no_assign,
                adjust_to_budget=not args.no_budget_fit,
            )
            if isinstance(outcome, QuoteFailed):
                print(f"Error: {outcome.error}", file=sys.stderr)
                return 1
            if isinstance(outcome, AssignmentFailed):
                print(f"Quoted {outcome.quote.quote_number}; assignment failed: {outcome.error}")
            elif isinstance(outcome, QuotedAndAssigned):
                print(
                    f"Quoted {outcome.quote.quote_number} and proposed "
                    f"assignment {outcome.assignment.id}"
                )
            else:
                print(f"Quoted {outcome.quote.quote_number}")
            return 0

        if args.command == "pay":
            result = workflow.process_completed_job(args.assignment, args.approved_by)
            if isinstance(result, PaymentFailed):
                print(f"Error: {result.error}", file=sys.stderr)
                return 1
            payment = result.payment
            print(f"Payment {payment.payment_number} ({payment.accounting_period})")
            print(format_payment(payment.breakdown))
            return 0

        if args.command == "summary":
            summary = workflow.payments.monthly_summary(args.period)
            print(
                f"{summary.accounting_period}: {summary.total_payments} payments, "
                f"gross {summary.gross_amount:,}, withheld {summary.tax_withholding:,}, "
                f"net {summary.net_amount:,}"
            )
            for w in summary.workers:
                print(f"  {w.worker_name or w.worker_id}: {w.count} x -> {w.net_amount:,}")
            return 0

        msg = f"unknown command: {args.command}"
        raise ValueError(msg)
    finally:
        conn.close()


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    setup_logging(args.verbose)

    try:
        settings = load_settings(args.config)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        code = run_command(args, settings)
    except BookingError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    if code:
        sys.exit(code)


if __name__ == "__main__":
    main()
