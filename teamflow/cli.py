import argparse
import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from .actions import ActionPipeline, Failure
from .config import close_db_connection, generate_schemas, get_settings, init_db
from .config.settings import TeamsSettings
from .models.enums import TeamType
from .models.principal import PrincipalRef
from .services.cache import build_cache
from .services.maintenance import MaintenanceService
from .services.teams import TeamsService

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

MAINTENANCE_TASKS = ["cleanup", "recount", "remove-expired-invitations", "expire-invitations", "archive-inactive"]


def principal(value: str) -> PrincipalRef:
    kind, sep, principal_id = value.partition(":")
    if not sep or not kind or not principal_id:
        raise argparse.ArgumentTypeError(f"expected KIND:ID, got '{value}'")
    return PrincipalRef(kind=kind, id=principal_id)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="teamflow", description="Team management maintenance and admin commands")
    parser.add_argument("--database-url", type=str, default=None, help="Override DATABASE_URL")
    parser.add_argument(
        "--generate-schemas", action="store_true", help="Create missing tables before running the command"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    create = subparsers.add_parser("create-team", help="Create a new team")
    create.add_argument("name", type=str, help="Team name")
    create.add_argument("--owner", type=principal, required=True, help="Owner principal as KIND:ID")
    create.add_argument("--description", type=str, default=None, help="Team description")
    create.add_argument(
        "--type", type=str, default=TeamType.PROJECT.value, choices=[t.value for t in TeamType], help="Team type"
    )
    create.add_argument("--tenant", type=str, default=None, help="Tenant id")
    create.add_argument("--activate", action="store_true", help="Activate the team right after creating it")

    maintenance = subparsers.add_parser("maintenance", help="Run a maintenance task")
    maintenance.add_argument("task", choices=MAINTENANCE_TASKS, help="Maintenance task to perform")
    maintenance.add_argument("--days", type=int, default=30, help="Number of days for time-based tasks")
    maintenance.add_argument("--dry-run", action="store_true", help="Report without making changes")

    analytics = subparsers.add_parser("analytics", help="Print team analytics")
    analytics.add_argument("--team", type=str, default=None, help="Team id; global analytics when omitted")
    analytics.add_argument("--format", type=str, default="table", choices=["table", "json"], help="Output format")
    analytics.add_argument("--export", type=str, default=None, help="Also write the output to this path")

    return parser


def format_table(data: Dict[str, Any]) -> str:
    rows: List[List[str]] = [["Metric", "Value"]]
    for key, value in data.items():
        if isinstance(value, dict):
            value = ", ".join(f"{k}={v}" for k, v in value.items()) or "-"
        rows.append([key.replace("_", " ").capitalize(), "-" if value is None else str(value)])
    width = max(len(row[0]) for row in rows)
    return "\n".join(f"{row[0].ljust(width)}  {row[1]}" for row in rows)


def print_failure(result: Failure) -> None:
    for error in result.errors:
        target = f" [{error.field}]" if error.field else ""
        print(f"error{target}: {error.message}")


async def create_team_command(args: argparse.Namespace, service: TeamsService) -> int:
    result = await service.create_team(
        args.owner, args.name, description=args.description, type=args.type, tenant_id=args.tenant
    )
    if isinstance(result, Failure):
        print_failure(result)
        return 1

    team = result.data
    print(f"{result.message} (id={team.id}, slug={team.slug})")

    if args.activate:
        activated = await service.activate(args.owner, str(team.id), notes="Activated from the command line")
        if isinstance(activated, Failure):
            print_failure(activated)
            return 1
        print(activated.message)
    return 0


async def maintenance_command(args: argparse.Namespace, maintenance: MaintenanceService) -> int:
    if args.dry_run:
        logger.warning("Running in DRY-RUN mode - no changes will be made")

    if args.task == "cleanup":
        report = await maintenance.cleanup(args.days, dry_run=args.dry_run)
    elif args.task == "recount":
        report = await maintenance.recount_members(dry_run=args.dry_run)
    elif args.task == "remove-expired-invitations":
        report = await maintenance.remove_expired_invitations(args.days, dry_run=args.dry_run)
    elif args.task == "expire-invitations":
        report = await maintenance.expire_invitations(dry_run=args.dry_run)
    else:
        report = await maintenance.archive_inactive(args.days, dry_run=args.dry_run)

    verb = "Would affect" if report.dry_run else "Affected"
    print(f"{report.task}: {verb} {report.affected} record(s)")
    for detail in report.details:
        print("  " + ", ".join(f"{k}={v}" for k, v in detail.items()))
    return 0


async def analytics_command(args: argparse.Namespace, service: TeamsService) -> int:
    data = await service.team_analytics(args.team) if args.team else await service.global_analytics()
    output = json.dumps(data, indent=2) if args.format == "json" else format_table(data)
    print(output)
    if args.export:
        Path(args.export).write_text(output + "\n", encoding="utf-8")
        logger.info(f"Analytics exported to {args.export}")
    return 0


async def handle(args: argparse.Namespace, settings: Optional[TeamsSettings] = None) -> int:
    settings = settings or get_settings()
    cache = build_cache(settings)
    pipeline = ActionPipeline(settings, cache=cache)
    service = TeamsService(pipeline)

    try:
        if args.command == "create-team":
            return await create_team_command(args, service)
        if args.command == "maintenance":
            return await maintenance_command(args, MaintenanceService(settings, pipeline.event_bus, cache))
        return await analytics_command(args, service)
    finally:
        await pipeline.drain()


async def run(args: argparse.Namespace) -> int:
    await init_db(args.database_url)
    try:
        if args.generate_schemas:
            await generate_schemas()
        return await handle(args)
    except Exception as e:
        logger.exception(f"Command {args.command} failed: {str(e)}")
        return 1
    finally:
        await close_db_connection()


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for the ``teamflow`` command."""
    args = build_parser().parse_args(argv)
    return asyncio.run(run(args))


if __name__ == "__main__":
    raise SystemExit(main())
