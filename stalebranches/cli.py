import sys
from typing import List, Optional

import click

from common.logging import LoggingManager
from stalebranches.config import (
    clamp_max_workers,
    get_config,
    parse_duration,
    parse_repo_slug,
)
from stalebranches.errors import ConfigurationError, GatewayError
from stalebranches.github.client import GitHubClient
from stalebranches.github.models import RepoRef
from stalebranches.scanner import SCAN_EMPTY, SCAN_FAILED
from stalebranches.service import RunCutoffs, RunDeadline, RunSummary, StaleBranchService

logger = LoggingManager.get_logger('stalebranches.cli')


def setup_logging(verbose: bool, log_dir: Optional[str]) -> None:
    """Configures the 'stalebranches' logger: console always, timestamped file when log_dir is set."""
    log_file = LoggingManager.timestamped_log_path(log_dir, 'stalebranches') if log_dir else None
    LoggingManager(
        logger_name='stalebranches',
        log_level='DEBUG' if verbose else None,
        log_file=log_file,
        console_output=True,
        propagate=False,
    )


def target_options(func):
    """Options shared by every command that selects repositories and ages."""
    options = [
        click.option('--repo', 'repos', multiple=True,
                     help='Repository as owner/name. Repeatable. Defaults to GITHUB_REPOSITORY.'),
        click.option('--owner', default=None, help='Process every repository of this organization or user.'),
        click.option('--owner-type', type=click.Choice(['org', 'user']), default='org', show_default=True,
                     help='Whether --owner is an organization or a user.'),
        click.option('--branch-age', default=None,
                     help="How long a branch must go without commits to be stale, e.g. '30 days'."),
        click.option('--github-token', envvar='GITHUB_TOKEN', default=None, help='GitHub token (or GITHUB_TOKEN).'),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def resolve_repos(client: GitHubClient, repo_slugs, owner: Optional[str], owner_type: str,
                  default_repo: Optional[str]) -> List[RepoRef]:
    """Explicit --repo values, else every repository of --owner, else GITHUB_REPOSITORY."""
    if owner:
        return client.list_repositories(owner, owner_type)
    slugs = list(repo_slugs) or ([default_repo] if default_repo else [])
    if not slugs:
        raise ConfigurationError("No repository given. Use --repo, --owner or set GITHUB_REPOSITORY.")
    repos = []
    seen = set()
    for slug in slugs:
        repo = RepoRef(*parse_repo_slug(slug))
        # GitHub slugs are case-insensitive
        if repo.full_name.lower() not in seen:
            seen.add(repo.full_name.lower())
            repos.append(repo)
    return repos


def write_github_output(path: Optional[str], summary: RunSummary) -> None:
    if not path:
        return
    try:
        with open(path, 'a') as fh:
            for key, value in summary.outputs().items():
                fh.write(f"{key}={value}\n")
    except OSError as e:
        logger.warning(f"Could not write GitHub Actions outputs to {path}: {e}")


@click.group()
@click.option('--verbose', is_flag=True, help='Enable debug logging.')
@click.option('--log-dir', default=None, help="Directory for the log file. Defaults to STALE_LOG_DIR or 'logs'; '' disables it.")
@click.pass_context
def cli(ctx, verbose: bool, log_dir: Optional[str]):
    """Flags stale branches with tracking issues and deletes them after a grace period."""
    config = get_config()
    setup_logging(verbose, config.log_dir if log_dir is None else log_dir)
    ctx.obj = config


@cli.command('run')
@target_options
@click.option('--issue-age', default=None,
              help="How long a tracking issue stays open before the branch is deleted, e.g. '7 days'.")
@click.option('--label', default=None, help="Label carried by tracking issues. Default 'stale-branch'.")
@click.option('--max-workers', type=int, default=None, help='Repositories processed in parallel (1-32).')
@click.option('--time-limit', default=None, help="Stop starting new work after this long, e.g. '20m'.")
@click.option('--close-message', default=None,
              help='Comment posted when closing a tracking issue. Defaults to a standard notice.')
@click.pass_obj
def run(config, repos, owner, owner_type, branch_age, github_token, issue_age, label, max_workers, time_limit,
        close_message):
    """Flag stale branches, then delete those whose grace period has elapsed."""
    try:
        branch_age_td = parse_duration(branch_age) if branch_age else config.branch_age_delta()
        issue_age_td = parse_duration(issue_age) if issue_age else config.issue_age_delta()
        time_limit_td = parse_duration(time_limit) if time_limit else None
        workers = clamp_max_workers(max_workers) if max_workers is not None else config.max_workers_value()
        if not owner:
            # validate slugs before any API call
            for slug in repos:
                parse_repo_slug(slug)
        client = GitHubClient(token=github_token or config.github_token, load_env=False)
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    deadline = RunDeadline.from_time_limit(time_limit_td)
    cutoffs = RunCutoffs.compute(branch_age_td, issue_age_td)
    try:
        targets = resolve_repos(client, repos, owner, owner_type, config.github_repository)
    except ConfigurationError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except GatewayError as e:
        logger.error(f"Could not list repositories for {owner}: [{e.kind}] {e.message}")
        click.echo(f"Error: could not list repositories for {owner}: {e.message}", err=True)
        sys.exit(1)

    client.check_rate_limit()
    logger.info(f"Processing {len(targets)} repositories (branch age {branch_age_td}, issue age {issue_age_td})")
    service = StaleBranchService(client, cutoffs, label=label or config.label, max_workers=workers, deadline=deadline,
                                 close_message=close_message)
    summary = service.run(targets)

    for report in summary.reports:
        click.echo(report.summary_line())
        for failure in report.failures:
            click.echo(f"  failed {failure.action} '{failure.branch_name}': [{failure.kind}] {failure.message}", err=True)
        for inconsistency in report.inconsistencies:
            click.echo(f"  inconsistency: {inconsistency.message}", err=True)
    click.echo(f"Flagged: {summary.flagged}, created: {summary.created}, waiting: {summary.waiting}, "
               f"deleted: {summary.deleted}, failed: {summary.failed}")
    write_github_output(config.github_output, summary)

    if summary.exit_code != 0:
        click.echo("Error: no repository could be processed. Check logs for details.", err=True)
    sys.exit(summary.exit_code)


@cli.command('scan')
@target_options
@click.pass_obj
def scan(config, repos, owner, owner_type, branch_age, github_token):
    """List stale branches without creating issues or deleting anything."""
    try:
        branch_age_td = parse_duration(branch_age) if branch_age else config.branch_age_delta()
        if not owner:
            for slug in repos:
                parse_repo_slug(slug)
        client = GitHubClient(token=github_token or config.github_token, load_env=False)
        targets = resolve_repos(client, repos, owner, owner_type, config.github_repository)
    except ConfigurationError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except GatewayError as e:
        click.echo(f"Error: could not list repositories for {owner}: {e.message}", err=True)
        sys.exit(1)

    # issue age is irrelevant for a report-only scan
    cutoffs = RunCutoffs.compute(branch_age_td, branch_age_td)
    service = StaleBranchService(client, cutoffs, label=config.label)
    scanned = 0
    total = 0
    for repo in targets:
        result = service.scan(repo)
        if result.status == SCAN_FAILED:
            click.echo(f"{repo}: scan failed ({result.error.message if result.error else 'unknown error'})", err=True)
            continue
        scanned += 1
        if result.status == SCAN_EMPTY:
            click.echo(f"{repo}: empty repository")
            continue
        click.echo(f"{repo}: {len(result.flagged)} stale of {result.branch_count} branches")
        for flagged in result.flagged:
            commit = flagged.last_commit
            click.echo(f"  {flagged.branch_name}  last commit {commit.author_date:%Y-%m-%d} "
                       f"by {commit.author_name or 'Unknown'}")
        total += len(result.flagged)

    click.echo(f"Flagged: {total}")
    sys.exit(0 if scanned else 1)


if __name__ == '__main__':
    cli()
