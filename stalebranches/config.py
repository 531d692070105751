import os
import re
from datetime import datetime, timedelta, timezone
from typing import Optional

from dotenv import load_dotenv

from stalebranches.errors import ConfigurationError

DEFAULT_BRANCH_AGE = "30 days"
DEFAULT_ISSUE_AGE = "7 days"
DEFAULT_LABEL = "stale-branch"
DEFAULT_MAX_WORKERS = 4
MAX_WORKERS_LIMIT = 32

_DURATION_RE = re.compile(r'(\d+)\s*([a-z]+)')

# Months and years are fixed-length approximations.
_UNIT_SECONDS = {
    's': 1, 'sec': 1, 'secs': 1, 'second': 1, 'seconds': 1,
    'm': 60, 'min': 60, 'mins': 60, 'minute': 60, 'minutes': 60,
    'h': 3600, 'hr': 3600, 'hrs': 3600, 'hour': 3600, 'hours': 3600,
    'd': 86400, 'day': 86400, 'days': 86400,
    'w': 7 * 86400, 'week': 7 * 86400, 'weeks': 7 * 86400,
    'month': 30 * 86400, 'months': 30 * 86400,
    'y': 365 * 86400, 'year': 365 * 86400, 'years': 365 * 86400,
}


def parse_duration(duration_str: str) -> timedelta:
    """Parses a duration string like '30 days', '2 weeks' or '7d' into a timedelta.

    Raises:
        ConfigurationError: if the string is not '<positive number> <unit>'.
    """
    if duration_str is None:
        raise ConfigurationError("Duration is required.")
    match = _DURATION_RE.fullmatch(duration_str.strip().lower())
    if not match:
        raise ConfigurationError(
            f"Invalid duration format: '{duration_str}'. Use '<number> <unit>', e.g. '30 days' or '12h'.")

    value, unit = int(match.group(1)), match.group(2)
    if unit not in _UNIT_SECONDS:
        raise ConfigurationError(f"Unknown duration unit '{unit}' in '{duration_str}'.")
    if value <= 0:
        raise ConfigurationError(f"Duration must be positive: '{duration_str}'.")
    try:
        duration = timedelta(seconds=value * _UNIT_SECONDS[unit])
        # cutoffs and the delete-after date are now -/+ duration
        now = datetime.now(timezone.utc)
        _ = (now - duration, now + duration)
    except OverflowError:
        raise ConfigurationError(f"Duration is too large: '{duration_str}'.")
    return duration


def parse_repo_slug(slug: str):
    """Splits 'owner/name' into its parts."""
    parts = (slug or "").strip().split("/")
    if len(parts) != 2 or not all(parts):
        raise ConfigurationError(f"Invalid repository '{slug}'. Expected 'owner/name'.")
    return parts[0], parts[1]


def clamp_max_workers(raw_value) -> int:
    """Converts raw_value to an int within 1..MAX_WORKERS_LIMIT."""
    try:
        max_workers = int(raw_value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Invalid max workers value {raw_value!r}.")
    return min(max(max_workers, 1), MAX_WORKERS_LIMIT)


class Config:
    """Application configuration."""
    def __init__(self, load_env=True):
        if load_env:
            load_dotenv()
        self.github_token: Optional[str] = os.getenv("GITHUB_TOKEN") or None
        self.github_repository: Optional[str] = os.getenv("GITHUB_REPOSITORY") or None
        self.branch_age = os.getenv("STALE_BRANCH_AGE", DEFAULT_BRANCH_AGE)
        self.issue_age = os.getenv("STALE_ISSUE_AGE", DEFAULT_ISSUE_AGE)
        self.label = os.getenv("STALE_BRANCH_LABEL", DEFAULT_LABEL)
        self.max_workers = os.getenv("STALE_MAX_WORKERS", str(DEFAULT_MAX_WORKERS))
        self.log_dir = os.getenv("STALE_LOG_DIR", "logs")
        self.github_output: Optional[str] = os.getenv("GITHUB_OUTPUT") or None

    def branch_age_delta(self) -> timedelta:
        return parse_duration(self.branch_age)

    def issue_age_delta(self) -> timedelta:
        return parse_duration(self.issue_age)

    def max_workers_value(self) -> int:
        return clamp_max_workers(self.max_workers)


def get_config(load_env=True):
    return Config(load_env=load_env)
