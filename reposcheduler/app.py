import argparse
import json
import signal
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from . import __version__
from .config import Settings
from .database import CredentialStore
from .env import load_env
from .errors import ExecutionError, SchedulerError, ValidationError
from .github import RepositoryCreator
from .logger import get_logger
from .models import DEFAULT_CREDENTIAL_REF, Job
from .scheduler import JobScheduler
from .storage import JobStore


def build_components(args: argparse.Namespace) -> Tuple[Settings, JobScheduler, CredentialStore]:
    try:
        settings = Settings.from_env()
    except ValueError as e:
        raise SystemExit(f"Configuration error: {e}")
    get_logger().set_level(settings.log_level)
    if getattr(args, "store", None):
        settings.store_path = Path(args.store)
    if getattr(args, "credentials_db", None):
        settings.credentials_db = Path(args.credentials_db)

    credentials = CredentialStore(settings.credentials_db)
    creator = RepositoryCreator(api_url=settings.api_url, timeout=settings.http_timeout)
    scheduler = JobScheduler(
        JobStore(settings.store_path),
        creator,
        credentials,
        sweep_interval=settings.sweep_interval,
        max_workers=settings.max_workers,
    )
    return settings, scheduler, credentials


def parse_when(value: Optional[str], in_minutes: Optional[float]) -> Optional[datetime]:
    """--at takes ISO-8601 (naive means local time); --in-minutes is relative to now."""
    if in_minutes is not None:
        return datetime.now().astimezone() + timedelta(minutes=in_minutes)
    if value is None:
        return None
    try:
        when = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        raise SystemExit(f"Invalid --at timestamp: {value!r} (expected e.g. 2026-05-01T09:30)")
    return when if when.tzinfo else when.astimezone()


def print_job(job: Job) -> None:
    print(f"ID: {job.id}")
    print(f"  Name: {job.name}")
    if job.description:
        print(f"  Description: {job.description}")
    print(f"  Scheduled: {job.scheduled_at.astimezone().strftime('%Y-%m-%d %H:%M:%S %Z')}")
    print(f"  Status: {job.status.value}")
    print(f"  Private: {'yes' if job.private else 'no'}  Auto-init: {'yes' if job.auto_init else 'no'}")
    if job.gitignore_template:
        print(f"  Gitignore: {job.gitignore_template}")
    if job.owner_ref:
        print(f"  Owner: {job.owner_ref}")
    if job.result_url:
        print(f"  URL: {job.result_url}")
    if job.error_message:
        print(f"  Error: {job.error_message}")
    print()


def _collect_fields(args: argparse.Namespace) -> Dict[str, Any]:
    fields: Dict[str, Any] = {}
    if args.name is not None:
        fields["name"] = args.name
    if args.description is not None:
        fields["description"] = args.description
    if args.private is not None:
        fields["private"] = args.private
    if args.auto_init is not None:
        fields["auto_init"] = args.auto_init
    if args.gitignore is not None:
        fields["gitignore_template"] = args.gitignore
    when = parse_when(args.at, args.in_minutes)
    if when is not None:
        fields["scheduled_at"] = when
    return fields


def cmd_token_set(args: argparse.Namespace) -> None:
    settings, _, credentials = build_components(args)
    login = None
    if not args.no_verify:
        creator = RepositoryCreator(api_url=settings.api_url, timeout=settings.http_timeout)
        try:
            login = creator.verify_token(args.token)
        except ExecutionError as e:
            raise SystemExit(f"Invalid GitHub token: {e}")
    credentials.set_token(args.ref, args.token, github_login=login)
    print(f"Token saved for '{args.ref}'" + (f" (GitHub user: {login})" if login else ""))


def cmd_token_remove(args: argparse.Namespace) -> None:
    _, _, credentials = build_components(args)
    if credentials.remove_token(args.ref):
        print(f"Token removed for '{args.ref}'")
    else:
        print(f"No token stored for '{args.ref}'")


def cmd_token_list(args: argparse.Namespace) -> None:
    _, _, credentials = build_components(args)
    refs = credentials.list_refs()
    if not refs:
        print("No tokens stored.")
        return
    for ref, login, updated_at in refs:
        print(f"{ref}: {login or '(unverified)'} updated {updated_at:%Y-%m-%d %H:%M}")


def cmd_schedule(args: argparse.Namespace) -> None:
    _, scheduler, _ = build_components(args)
    spec = _collect_fields(args)
    if args.owner:
        spec["owner_ref"] = args.owner
    job = scheduler.add_job(spec)
    print("Repository scheduled:")
    print_job(job)


def cmd_update(args: argparse.Namespace) -> None:
    _, scheduler, _ = build_components(args)
    changes = _collect_fields(args)
    if not changes:
        raise SystemExit("Nothing to update.")
    job = scheduler.update_job(args.id, changes)
    print("Repository updated:")
    print_job(job)


def cmd_list(args: argparse.Namespace) -> None:
    _, scheduler, _ = build_components(args)
    jobs = scheduler.list_jobs(args.owner)
    if args.json:
        print(json.dumps([job.to_dict() for job in jobs], indent=2))
        return
    if not jobs:
        print("No scheduled repositories.")
        return
    print(f"Found {len(jobs)} scheduled repositories:\n")
    for job in jobs:
        print_job(job)


def cmd_show(args: argparse.Namespace) -> None:
    _, scheduler, _ = build_components(args)
    print_job(scheduler.get_job(args.id))


def cmd_cancel(args: argparse.Namespace) -> None:
    _, scheduler, _ = build_components(args)
    scheduler.cancel_job(args.id)
    print(f"Removed {args.id}")


def cmd_create_now(args: argparse.Namespace) -> None:
    _, scheduler, _ = build_components(args)
    scheduler.trigger_now(args.id)
    print("Creating repository...")
    scheduler.shutdown(wait=True)
    print_job(scheduler.get_job(args.id))


def cmd_stats(args: argparse.Namespace) -> None:
    _, scheduler, _ = build_components(args)
    stats = scheduler.stats(args.owner)
    for key in ("total", "pending", "creating", "created", "failed"):
        print(f"{key.capitalize()}: {stats[key]}")


def cmd_run(args: argparse.Namespace) -> None:
    settings, scheduler, _ = build_components(args)
    logger = get_logger()
    stop = threading.Event()

    def _handle_signal(signum, frame):
        logger.info("Received signal, shutting down", signal=signum)
        stop.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    scheduler.start()
    stats = scheduler.stats()
    logger.info("Scheduler running", store=str(settings.store_path), **stats)
    try:
        while not stop.wait(1.0):
            pass
    finally:
        scheduler.shutdown(wait=True)
        logger.log_metrics_summary()


def _add_store_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--store", help="Path to JSON job store (default: $REPOSCHEDULER_STORE or data/jobs.json)")
    p.add_argument("--credentials-db", help="Path to credentials database (default: data/credentials.db)")


def _add_job_field_args(p: argparse.ArgumentParser, creating: bool) -> None:
    p.add_argument("--name", required=creating, help="Repository name")
    p.add_argument("--description", help="Repository description")
    when = p.add_mutually_exclusive_group(required=creating)
    when.add_argument("--at", help="When to create it, ISO-8601 (naive = local time)")
    when.add_argument("--in-minutes", type=float, help="Create it this many minutes from now")
    vis = p.add_mutually_exclusive_group()
    vis.add_argument("--private", dest="private", action="store_const", const=True, default=None)
    vis.add_argument("--public", dest="private", action="store_const", const=False)
    init = p.add_mutually_exclusive_group()
    init.add_argument("--auto-init", dest="auto_init", action="store_const", const=True, default=None,
                      help="Initialize with a README")
    init.add_argument("--no-auto-init", dest="auto_init", action="store_const", const=False)
    p.add_argument("--gitignore", help="Gitignore template name (Python, Node, ...)")


def main(argv=None):
    load_env()
    parser = argparse.ArgumentParser(prog="reposcheduler", description="Schedule GitHub repository creation")
    parser.add_argument("--version", action="store_true", help="Show version")

    subparsers = parser.add_subparsers(dest="command")

    tok = subparsers.add_parser("token", help="Manage GitHub tokens")
    tok_sub = tok.add_subparsers(dest="token_command", required=True)
    tset = tok_sub.add_parser("set", help="Verify and store a personal access token")
    tset.add_argument("--token", required=True, help="GitHub personal access token")
    tset.add_argument("--ref", default=DEFAULT_CREDENTIAL_REF, help="Credential reference / owner (default: default)")
    tset.add_argument("--no-verify", action="store_true", help="Skip the GET /user check")
    _add_store_args(tset)
    tset.set_defaults(func=cmd_token_set)
    trm = tok_sub.add_parser("remove", help="Delete a stored token")
    trm.add_argument("--ref", default=DEFAULT_CREDENTIAL_REF)
    _add_store_args(trm)
    trm.set_defaults(func=cmd_token_remove)
    tls = tok_sub.add_parser("list", help="List stored token references")
    _add_store_args(tls)
    tls.set_defaults(func=cmd_token_list)

    sch = subparsers.add_parser("schedule", help="Schedule a repository for creation")
    _add_job_field_args(sch, creating=True)
    sch.add_argument("--owner", help="Owner reference (multi-user stores)")
    _add_store_args(sch)
    sch.set_defaults(func=cmd_schedule)

    upd = subparsers.add_parser("update", help="Change a pending repository")
    upd.add_argument("--id", required=True)
    _add_job_field_args(upd, creating=False)
    _add_store_args(upd)
    upd.set_defaults(func=cmd_update)

    lst = subparsers.add_parser("list", help="List scheduled repositories")
    lst.add_argument("--owner", help="Only this owner's jobs")
    lst.add_argument("--json", action="store_true", help="Print raw JSON")
    _add_store_args(lst)
    lst.set_defaults(func=cmd_list)

    shw = subparsers.add_parser("show", help="Show one scheduled repository")
    shw.add_argument("--id", required=True)
    _add_store_args(shw)
    shw.set_defaults(func=cmd_show)

    cnl = subparsers.add_parser("cancel", help="Remove a pending or finished job")
    cnl.add_argument("--id", required=True)
    _add_store_args(cnl)
    cnl.set_defaults(func=cmd_cancel)

    now = subparsers.add_parser("create-now", help="Create a pending repository immediately")
    now.add_argument("--id", required=True)
    _add_store_args(now)
    now.set_defaults(func=cmd_create_now)

    sts = subparsers.add_parser("stats", help="Show counts per status")
    sts.add_argument("--owner")
    _add_store_args(sts)
    sts.set_defaults(func=cmd_stats)

    run = subparsers.add_parser(
        "run",
        help="Run the scheduler until interrupted (other commands must not write the same store meanwhile)",
    )
    _add_store_args(run)
    run.set_defaults(func=cmd_run)

    args = parser.parse_args(argv)

    if args.version:
        print(__version__)
        return

    if hasattr(args, "func"):
        try:
            args.func(args)
        except ValidationError as e:
            print("Invalid:")
            for err in e.errors:
                print(f" - {err}")
            raise SystemExit(2)
        except SchedulerError as e:
            raise SystemExit(str(e))
        return

    parser.print_help()


if __name__ == "__main__":
    main()
