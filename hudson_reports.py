#!/usr/bin/env python3
# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation

"""
Hudson Job Inventory Reporter - On-disk CI Job Repository Analysis Tool

This script walks a Hudson/Jenkins home directory and generates reports about
every job it finds:
- Team and job discovery from the teams/<team>/jobs/<job> hierarchy
- Job metadata from config.xml (owner, description, creation time, disabled)
- Last run time from the builds/_runmap.xml run history
- Running state from the latest numbered build's build.xml
- Disk usage per job directory
- Outputs in single-quoted CSV and JSON formats

Architecture:
- Single script with modular internal structure
- Configuration-driven with template + instance overrides
- Missing or malformed artifacts degrade to empty values, never abort a scan
- Optional concurrency for job construction

Schema Version: 1.0.0
"""

import abc
import argparse
import calendar
import concurrent.futures
import copy
import csv
import datetime
import hashlib
import json
import logging
import os
import subprocess
import sys
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Any, Dict, Optional, Union

try:
    import yaml  # type: ignore
except ImportError:
    print(
        "ERROR: PyYAML is required. Install with: pip install PyYAML", file=sys.stderr
    )
    sys.exit(1)

# =============================================================================
# CONSTANTS AND SCHEMA DEFINITIONS
# =============================================================================

SCRIPT_VERSION = "1.0.0"
SCHEMA_VERSION = "1.0.0"
DEFAULT_CONFIG_DIR = "configuration"
DEFAULT_OUTPUT_DIR = "reports"
LOGGER_NAME = "hudson_reporter"

# Conventional locations inside a Hudson home / job directory
TEAMS_DIR = "teams"
JOBS_DIR = "jobs"
BUILDS_DIR = "builds"
CONFIG_FILE = "config.xml"
RUNMAP_FILE = "_runmap.xml"
BUILD_FILE = "build.xml"
PUBLIC_TEAM = "public"
RUNNING_MARKER = "<duration>0</duration>"

# Outcome of reading an optional artifact (config.xml, _runmap.xml)
ARTIFACT_ABSENT = "absent"
ARTIFACT_PARSED = "parsed"
ARTIFACT_MALFORMED = "malformed"

DISK_USAGE_UNKNOWN = -1

CSV_HEADER = [
    "Team",
    "Name",
    "Owner",
    "Description",
    "Disk Size KB",
    "Creation Date",
    "Last Run Date",
    "Disabled",
    "Running",
]

REPORT_TYPES = [
    "general",
    "bigger_than_threshold",
    "disabled",
    "missing_config",
    "stale",
]

DISK_USAGE_METHODS = ["portable", "du"]

# JSON Schema structure (conceptual - used for validation and documentation)
EXPECTED_JSON_SCHEMA = {
    "schema_version": str,
    "generated_at": str,  # UTC ISO8601
    "hudson_home": str,
    "config_digest": str,  # SHA256 of resolved config
    "script_version": str,
    "report": str,  # Report type name
    "jobs": list,  # [job_dict, ...]
    "errors": list,  # [{"job": str, "error": str, "category": str}, ...]
}

# Mapping of legacy reporter.properties keys onto the YAML configuration
LEGACY_PROPERTY_KEYS = {
    "HUDSON_HOME": ("hudson", "home"),
    "GENERAL_CSV_REPORT_FILE": ("reports", "outputs", "general"),
    "JOBS_WITHOUT_CONFIG_FILE_CSV_REPORT_FILE": ("reports", "outputs", "missing_config"),
    "DISABLED_JOBS_CSV_REPORT": ("reports", "outputs", "disabled"),
    "JOBS_BIGGER_THAN_THRESHOLD_KB_CVS_REPORT": (
        "reports",
        "outputs",
        "bigger_than_threshold",
    ),
    "TRESHOLD_KILOBYTES": ("reports", "threshold_kb"),
    "JOBS_RUN_MORE_THAN_ONE_MONTH_AGO_CVS_REPORT": ("reports", "outputs", "stale"),
}

# =============================================================================
# EXCEPTIONS
# =============================================================================


class ConfigurationError(Exception):
    """Raised when the reporter configuration is missing or invalid."""

    pass


class JobDirectoryError(ValueError):
    """Raised when a Job is created for a directory that does not exist."""

    pass


# =============================================================================
# LOGGING SETUP
# =============================================================================


def setup_logging(
    level: str = "INFO", include_timestamps: bool = True
) -> logging.Logger:
    """Configure logging with structured format."""
    log_format = "[%(levelname)s]"
    if include_timestamps:
        log_format = "[%(asctime)s] " + log_format
    log_format += " %(message)s"

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format=log_format,
        datefmt="%Y-%m-%d %H:%M:%S UTC" if include_timestamps else None,
    )

    logger = logging.getLogger(LOGGER_NAME)
    return logger


# =============================================================================
# CONFIGURATION LOADING AND DEEP MERGE
# =============================================================================


def deep_merge_dicts(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge two dictionaries, with override taking precedence."""
    result = copy.deepcopy(base)

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge_dicts(result[key], value)
        else:
            result[key] = copy.deepcopy(value)

    return result


def load_yaml_config(config_path: Path) -> Dict[str, Any]:
    """Load and parse a YAML configuration file."""
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
    except FileNotFoundError:
        return {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}")


def load_configuration(config_dir: Path, instance: Optional[str] = None) -> dict[str, Any]:
    """
    Load configuration with template + instance override merge strategy.

    Args:
        config_dir: Directory containing configuration files
        instance: Hudson instance name for the override file (optional)

    Returns:
        Merged configuration dictionary
    """
    template_path = config_dir / "template.config"

    if not template_path.exists():
        raise ConfigurationError(f"Template configuration not found: {template_path}")

    print(f"📝 Loading template config: {template_path}", file=sys.stderr)
    template_config = load_yaml_config(template_path)

    instance_config: dict[str, Any] = {}
    if instance:
        instance_path = None
        instance_config_name = f"{instance}.config"

        # Exact match first, then case-insensitive
        exact_match = config_dir / instance_config_name
        if exact_match.exists():
            instance_path = exact_match
        else:
            for config_file in config_dir.glob("*.config"):
                if config_file.name.lower() == instance_config_name.lower():
                    instance_path = config_file
                    break

        if instance_path:
            print(f"📝 Loading instance config: {instance_path}", file=sys.stderr)
            instance_config = load_yaml_config(instance_path)
        else:
            print(
                f"⚠️  No instance-specific config found for '{instance}' - using template defaults only",
                file=sys.stderr,
            )

    merged_config = deep_merge_dicts(template_config, instance_config)
    merged_config["instance"] = instance or "default"

    return merged_config


def load_properties_file(properties_path: Path) -> dict[str, str]:
    """
    Read a Java-style properties file into a dictionary.

    Supports `key=value` and `key: value` lines; `#` and `!` start comments.
    """
    properties: dict[str, str] = {}

    try:
        with open(properties_path, "r", encoding="utf-8") as f:
            for raw_line in f:
                line = raw_line.strip()
                if not line or line[0] in "#!":
                    continue

                separator_positions = [
                    pos for pos in (line.find("="), line.find(":")) if pos != -1
                ]
                if not separator_positions:
                    properties[line] = ""
                    continue

                pos = min(separator_positions)
                properties[line[:pos].strip()] = line[pos + 1 :].strip()
    except OSError as e:
        raise ConfigurationError(f"Cannot read property file {properties_path}: {e}")

    return properties


def properties_to_config(properties: dict[str, str]) -> dict[str, Any]:
    """Translate legacy reporter.properties keys into configuration structure."""
    config: dict[str, Any] = {}

    for property_name, key_path in LEGACY_PROPERTY_KEYS.items():
        value = properties.get(property_name)
        if value is None or value == "":
            continue

        node = config
        for key in key_path[:-1]:
            node = node.setdefault(key, {})
        node[key_path[-1]] = value

    return config


def validate_configuration(config: dict[str, Any]) -> None:
    """
    Check that a resolved configuration can drive a report run.

    Normalises the size threshold to an integer in place.
    """
    home = config.get("hudson", {}).get("home")
    if not home:
        raise ConfigurationError(
            "Hudson home directory is not configured (hudson.home or --hudson-home)"
        )

    reports_config = config.setdefault("reports", {})
    threshold = reports_config.get("threshold_kb")
    if threshold is not None:
        try:
            reports_config["threshold_kb"] = int(threshold)
        except (TypeError, ValueError):
            raise ConfigurationError(
                f"reports.threshold_kb must be an integer, got {threshold!r}"
            )

    unknown_reports = set(reports_config.get("outputs", {}) or {}) - set(REPORT_TYPES)
    if unknown_reports:
        raise ConfigurationError(
            f"Unknown report types in reports.outputs: {', '.join(sorted(unknown_reports))}"
        )

    method = config.get("disk_usage", {}).get("method", "portable")
    if method not in DISK_USAGE_METHODS:
        raise ConfigurationError(
            f"disk_usage.method must be one of {DISK_USAGE_METHODS}, got {method!r}"
        )

    max_workers = config.get("performance", {}).get("max_workers", 1)
    if not isinstance(max_workers, int) or max_workers < 1:
        raise ConfigurationError(
            f"performance.max_workers must be a positive integer, got {max_workers!r}"
        )


def compute_config_digest(config: Dict[str, Any]) -> str:
    """Compute SHA256 digest of configuration for reproducibility tracking."""
    config_json = json.dumps(config, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(config_json.encode("utf-8")).hexdigest()


# =============================================================================
# TIME HELPERS
# =============================================================================


def timestamp_to_datetime(timestamp: Optional[str]) -> Optional[datetime.datetime]:
    """Convert a Hudson millisecond timestamp string to an aware UTC datetime."""
    if timestamp is None:
        return None

    try:
        millis = int(timestamp.strip())
        return datetime.datetime.fromtimestamp(millis / 1000, tz=datetime.timezone.utc)
    except (ValueError, OverflowError, OSError):
        return None


def subtract_months(moment: datetime.datetime, months: int) -> datetime.datetime:
    """Move a datetime back by calendar months, clamping the day to month length."""
    month_index = moment.year * 12 + (moment.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def format_datetime(value: Optional[datetime.datetime]) -> str:
    """Render a datetime the way reports show it, or an empty string."""
    if value is None:
        return ""
    return value.strftime("%Y-%m-%d %H:%M:%S UTC")


# =============================================================================
# SUBPROCESS HELPERS
# =============================================================================


def run_command(
    cmd: list[str], cwd: Path | None, logger: logging.Logger, timeout: float = 300
) -> tuple[bool, str]:
    """
    Execute an external command safely with error handling.

    Returns:
        (success: bool, output_or_error: str)
    """
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
        return (
            result.returncode == 0,
            result.stdout.strip() or result.stderr.strip(),
        )
    except subprocess.TimeoutExpired:
        logger.error(f"Command timed out in {cwd}: {' '.join(cmd)}")
        return False, "Command timed out"
    except OSError as e:
        logger.error(f"Could not run command in {cwd}: {' '.join(cmd)} - {e}")
        return False, str(e)


# =============================================================================
# JOB ARTIFACT PARSERS
# =============================================================================


def _element_text(element: ET.Element) -> str:
    """Full text content of an element, including its descendants."""
    return "".join(element.itertext())


class JobConfigParser:
    """Extracts job metadata from a job's config.xml."""

    FIELD_MAP = {
        "description": "description",
        "createdBy": "created_by",
        "creationTime": "creation_date_timestamp",
    }

    def __init__(self, logger: logging.Logger) -> None:
        self.logger = logger

    def empty_result(self) -> dict[str, Any]:
        return {
            "status": ARTIFACT_ABSENT,
            "error": None,
            "description": None,
            "created_by": None,
            "creation_date_timestamp": None,
            "disabled": None,
        }

    def parse(self, job_directory: Path) -> dict[str, Any]:
        """
        Parse the configuration document of a job.

        Returns a dict with a ``status`` of absent, parsed or malformed, an
        ``error`` message for malformed documents, and the extracted fields.
        Fields stay None unless the document was parsed successfully.
        """
        result = self.empty_result()
        config_path = job_directory / CONFIG_FILE

        if not config_path.exists():
            self.logger.debug(f"No {CONFIG_FILE} in {job_directory}")
            return result

        try:
            root = ET.parse(config_path).getroot()
        except (ET.ParseError, OSError, LookupError, ValueError) as e:
            self.logger.warning(f"Could not parse {config_path}: {e}")
            result["status"] = ARTIFACT_MALFORMED
            result["error"] = str(e)
            return result

        fields: dict[str, Any] = {}
        for child in root:
            if not isinstance(child.tag, str):
                continue

            value = _element_text(child)
            if child.tag in self.FIELD_MAP:
                fields[self.FIELD_MAP[child.tag]] = value
            elif child.tag == "disabled":
                disabled = parse_disabled_flag(value)
                if disabled is not None:
                    fields["disabled"] = disabled

        result.update(fields)
        result["status"] = ARTIFACT_PARSED
        return result


def parse_disabled_flag(value: str) -> Optional[bool]:
    """Exact "true"/"false" text maps to a boolean; anything else is unknown."""
    if value == "true":
        return True
    if value == "false":
        return False
    return None


class RunmapParser:
    """Reads the most recent run timestamp from builds/_runmap.xml."""

    def __init__(self, logger: logging.Logger) -> None:
        self.logger = logger

    def parse(self, job_directory: Path) -> dict[str, Any]:
        """
        Locate the newest build record and return its timestamp.

        The run map is append-only: the newest record is the last element
        under the root's first element child.
        """
        result: dict[str, Any] = {
            "status": ARTIFACT_ABSENT,
            "error": None,
            "last_run_date_timestamp": None,
        }
        runmap_path = job_directory / BUILDS_DIR / RUNMAP_FILE

        if not runmap_path.exists():
            self.logger.debug(f"No {RUNMAP_FILE} for {job_directory.name}")
            return result

        try:
            root = ET.parse(runmap_path).getroot()
            build_group = self._first_element(root)
            latest_build = self._last_element(build_group)
        except (ET.ParseError, OSError, LookupError) as e:
            self.logger.warning(f"Could not read run history {runmap_path}: {e}")
            result["status"] = ARTIFACT_MALFORMED
            result["error"] = str(e)
            return result

        for child in latest_build:
            if child.tag == "timestamp":
                result["last_run_date_timestamp"] = _element_text(child)
                break

        result["status"] = ARTIFACT_PARSED
        return result

    def _first_element(self, parent: ET.Element) -> ET.Element:
        for child in parent:
            if isinstance(child.tag, str):
                return child
        raise LookupError(f"<{parent.tag}> has no element children")

    def _last_element(self, parent: ET.Element) -> ET.Element:
        elements = [child for child in parent if isinstance(child.tag, str)]
        if not elements:
            raise LookupError(f"<{parent.tag}> has no build records")
        return elements[-1]


# =============================================================================
# BUILD STATUS DETECTION
# =============================================================================


def list_subdirectories(parent: Path) -> list[Path]:
    """Return the directories directly inside parent, or [] if it is missing."""
    try:
        return sorted(entry for entry in parent.iterdir() if entry.is_dir())
    except OSError:
        return []


class BuildStatusDetector:
    """Finds a job's latest numbered build and whether it is still executing."""

    def __init__(self, logger: logging.Logger) -> None:
        self.logger = logger

    def latest_build_directory(self, job_directory: Path) -> Optional[Path]:
        """
        Return the build directory with the highest numeric name.

        Hyphenated names (legacy timestamped or multi-part builds) are never
        candidates. Returns None when no numeric build directory exists.
        """
        builds_directory = job_directory / BUILDS_DIR
        latest: Optional[int] = None
        latest_directory: Optional[Path] = None

        for build_directory in list_subdirectories(builds_directory):
            name = build_directory.name
            if "-" in name:
                continue
            if not (name.isascii() and name.isdigit()):
                self.logger.debug(f"Skipping non-numeric build directory {build_directory}")
                continue

            number = int(name)
            if latest is None or number > latest:
                latest = number
                latest_directory = build_directory

        return latest_directory

    def is_job_in_execution(self, job_directory: Path) -> Optional[bool]:
        """
        True if the latest build is still running, False if finished.

        None when there is no build or its build.xml cannot be read.
        """
        latest_build = self.latest_build_directory(job_directory)
        if latest_build is None:
            return None

        build_file = latest_build / BUILD_FILE
        try:
            with open(build_file, "r", encoding="utf-8", errors="replace") as f:
                for line in f:
                    if RUNNING_MARKER in line:
                        return True
        except OSError as e:
            self.logger.debug(f"Cannot read {build_file}: {e}")
            return None

        return False


# =============================================================================
# DISK USAGE
# =============================================================================


class DiskUsageCalculator(abc.ABC):
    """Capability interface: size of a directory tree in kilobytes."""

    def __init__(self, logger: logging.Logger) -> None:
        self.logger = logger

    @abc.abstractmethod
    def size_kb(self, directory: Path) -> int:
        """Return the size in KB, or DISK_USAGE_UNKNOWN on failure."""


class PortableDiskUsage(DiskUsageCalculator):
    """Sums file sizes directly; symlinks are counted but never followed."""

    def size_kb(self, directory: Path) -> int:
        try:
            directory.stat()
        except OSError as e:
            self.logger.warning(f"Cannot compute disk usage for {directory}: {e}")
            return DISK_USAGE_UNKNOWN

        total = 0
        for root, _dirs, files in os.walk(directory, onerror=self._walk_error):
            for filename in files:
                try:
                    total += os.lstat(os.path.join(root, filename)).st_size
                except OSError as e:
                    self.logger.debug(f"Cannot stat {filename} in {root}: {e}")

        return (total + 1023) // 1024

    def _walk_error(self, error: OSError) -> None:
        self.logger.debug(f"Skipping unreadable path during disk usage: {error}")


class DuDiskUsage(DiskUsageCalculator):
    """Runs the Unix du utility, matching the figures operators see in a shell."""

    def __init__(self, logger: logging.Logger, timeout: float = 300) -> None:
        super().__init__(logger)
        self.timeout = timeout

    def size_kb(self, directory: Path) -> int:
        success, output = run_command(
            ["du", "-s", "-k", "."], directory, self.logger, timeout=self.timeout
        )
        if not success or not output:
            self.logger.warning(f"du failed for {directory}: {output}")
            return DISK_USAGE_UNKNOWN

        last_line = output.splitlines()[-1]
        try:
            return int(last_line.split("\t")[0].strip())
        except ValueError:
            self.logger.warning(f"Unexpected du output for {directory}: {last_line!r}")
            return DISK_USAGE_UNKNOWN


def create_disk_usage_calculator(
    config: dict[str, Any], logger: logging.Logger
) -> DiskUsageCalculator:
    """Build the disk usage implementation selected in configuration."""
    disk_config = config.get("disk_usage", {})
    method = disk_config.get("method", "portable")

    if method == "du":
        return DuDiskUsage(logger, timeout=disk_config.get("timeout", 300))
    return PortableDiskUsage(logger)


# =============================================================================
# JOB MODEL
# =============================================================================


class Job:
    """Metadata for one Hudson job directory."""

    def __init__(
        self,
        job_directory: Union[str, Path, None],
        logger: Optional[logging.Logger] = None,
        disk_usage: Optional[DiskUsageCalculator] = None,
    ) -> None:
        if job_directory is None:
            raise JobDirectoryError("job_directory can not be None")

        self.directory = Path(job_directory).absolute()
        if not self.directory.exists():
            raise JobDirectoryError(f"{self.directory} doesn't exist")

        self.logger = logger or logging.getLogger(LOGGER_NAME)
        self.disk_usage = disk_usage or PortableDiskUsage(self.logger)
        self.build_status = BuildStatusDetector(self.logger)

        self._team_name: Optional[str] = None
        self._disk_space_size: Optional[int] = None

        config_result = JobConfigParser(self.logger).parse(self.directory)
        self.config_status: str = config_result["status"]
        self.config_error: Optional[str] = config_result["error"]
        self.has_config_file = config_result["status"] != ARTIFACT_ABSENT
        self.description: Optional[str] = config_result["description"]
        self.created_by: Optional[str] = config_result["created_by"]
        self.creation_date_timestamp: Optional[str] = config_result[
            "creation_date_timestamp"
        ]
        self.disabled: Optional[bool] = config_result["disabled"]

        runmap_result = RunmapParser(self.logger).parse(self.directory)
        self.runmap_status: str = runmap_result["status"]
        self.runmap_error: Optional[str] = runmap_result["error"]
        self.last_run_date_timestamp: Optional[str] = runmap_result[
            "last_run_date_timestamp"
        ]

    @property
    def job_name(self) -> str:
        return self.directory.name

    @property
    def team_name(self) -> str:
        """Team the job belongs to, or "public" outside teams/<team>/jobs."""
        if self._team_name is None:
            self._team_name = self._team_name_from_directory()
        return self._team_name

    @property
    def disk_space_size(self) -> int:
        """Size of the job directory in KB, -1 if it could not be measured."""
        if self._disk_space_size is None:
            self._disk_space_size = self.disk_usage.size_kb(self.directory)
        return self._disk_space_size

    @property
    def creation_date(self) -> Optional[datetime.datetime]:
        return timestamp_to_datetime(self.creation_date_timestamp)

    @property
    def last_run_date(self) -> Optional[datetime.datetime]:
        return timestamp_to_datetime(self.last_run_date_timestamp)

    def latest_build_directory(self) -> Optional[Path]:
        return self.build_status.latest_build_directory(self.directory)

    def is_job_in_execution(self) -> Optional[bool]:
        return self.build_status.is_job_in_execution(self.directory)

    def _team_name_from_directory(self) -> str:
        jobs_directory = self.directory.parent
        team_directory = jobs_directory.parent
        if jobs_directory.name == JOBS_DIR and team_directory.parent.name == TEAMS_DIR:
            return team_directory.name
        return PUBLIC_TEAM

    def to_dict(self) -> dict[str, Any]:
        """JSON-serialisable view of the job, unknown values as None."""
        return {
            "team": self.team_name,
            "name": self.job_name,
            "directory": str(self.directory),
            "owner": self.created_by,
            "description": self.description,
            "disk_size_kb": self.disk_space_size,
            "creation_timestamp": self.creation_date_timestamp,
            "creation_date": format_datetime(self.creation_date) or None,
            "last_run_timestamp": self.last_run_date_timestamp,
            "last_run_date": format_datetime(self.last_run_date) or None,
            "disabled": self.disabled,
            "running": self.is_job_in_execution(),
            "has_config_file": self.has_config_file,
            "config_status": self.config_status,
            "runmap_status": self.runmap_status,
        }

    def __repr__(self) -> str:
        return f"Job({str(self.directory)!r})"

    def __str__(self) -> str:
        enabled = None if self.disabled is None else not self.disabled
        running = self.is_job_in_execution()
        return (
            f"Name:{self.job_name},Team:{self.team_name},"
            f"Owner: {self.created_by or ''},"
            f"Created on: {format_datetime(self.creation_date)},"
            f"Last time run: {format_datetime(self.last_run_date)},"
            f"Active:{_flag_text(enabled)},Running:{_flag_text(running)}"
        )


def _flag_text(value: Optional[bool]) -> str:
    if value is None:
        return ""
    return "true" if value else "false"


# =============================================================================
# HUDSON INSTANCE SCANNING
# =============================================================================


class HudsonInstance:
    """All jobs of a Hudson home directory, discovered once and cached."""

    def __init__(
        self,
        home_directory: Union[str, Path],
        logger: Optional[logging.Logger] = None,
        disk_usage: Optional[DiskUsageCalculator] = None,
        max_workers: int = 1,
        include_public_jobs: bool = False,
    ) -> None:
        self.home_directory = Path(home_directory)
        self.logger = logger or logging.getLogger(LOGGER_NAME)
        self.disk_usage = disk_usage or PortableDiskUsage(self.logger)
        self.max_workers = max_workers
        self.include_public_jobs = include_public_jobs
        self.errors: list[dict[str, Any]] = []
        self._jobs: Optional[list[Job]] = None

    def get_jobs(self) -> list[Job]:
        """Return every job of the instance, scanning the tree on first call."""
        if self._jobs is not None:
            return self._jobs

        job_directories = self.discover_job_directories()
        self.logger.info(
            f"Discovered {len(job_directories)} job directories under {self.home_directory}"
        )

        self._jobs = self._build_jobs(job_directories)
        return self._jobs

    def discover_job_directories(self) -> list[Path]:
        """Walk teams/*/jobs/* (and jobs/* when public jobs are included)."""
        job_directories: list[Path] = []

        for team_directory in list_subdirectories(self.home_directory / TEAMS_DIR):
            team_jobs = list_subdirectories(team_directory / JOBS_DIR)
            if not team_jobs:
                self.logger.debug(f"Team {team_directory.name} has no jobs")
            job_directories.extend(team_jobs)

        if self.include_public_jobs:
            job_directories.extend(list_subdirectories(self.home_directory / JOBS_DIR))

        return job_directories

    def _build_jobs(self, job_directories: list[Path]) -> list[Job]:
        if self.max_workers == 1:
            results = [self._build_job(directory) for directory in job_directories]
            return [job for job in results if job is not None]

        with concurrent.futures.ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = [
                executor.submit(self._build_job, directory)
                for directory in job_directories
            ]
            results = [future.result() for future in futures]

        return [job for job in results if job is not None]

    def _build_job(self, job_directory: Path) -> Optional[Job]:
        try:
            self.logger.debug(f"Reading job: {job_directory}")
            return Job(job_directory, self.logger, self.disk_usage)
        except JobDirectoryError as e:
            self.logger.error(f"Skipping job {job_directory.name}: {e}")
            self.errors.append(
                {
                    "job": str(job_directory),
                    "error": str(e),
                    "category": "job_directory",
                }
            )
            return None
        except (OSError, ValueError, LookupError) as e:
            self.logger.error(f"Failed to read job {job_directory.name}: {e}")
            self.errors.append(
                {
                    "job": str(job_directory),
                    "error": str(e),
                    "category": "job_construction",
                }
            )
            return None


# =============================================================================
# REPORT SELECTION
# =============================================================================


class ReportFilters:
    """Selects the jobs that belong in each report type."""

    def __init__(
        self, config: dict[str, Any], now: Optional[datetime.datetime] = None
    ) -> None:
        self.config = config
        self.now = now or datetime.datetime.now(datetime.timezone.utc)

    def select(self, report_type: str, jobs: list[Job]) -> Optional[list[Job]]:
        """Apply the named report filter. None means the report cannot be built."""
        if report_type == "general":
            return list(jobs)
        if report_type == "bigger_than_threshold":
            return self.jobs_bigger_than_threshold(jobs)
        if report_type == "disabled":
            return self.disabled_jobs(jobs)
        if report_type == "missing_config":
            return self.jobs_without_config_file(jobs)
        if report_type == "stale":
            return self.jobs_not_run_recently(jobs)
        raise ValueError(f"Unknown report type: {report_type}")

    def jobs_bigger_than_threshold(self, jobs: list[Job]) -> Optional[list[Job]]:
        threshold = self.config.get("reports", {}).get("threshold_kb")
        if threshold is None:
            return None
        threshold = int(threshold)
        return [job for job in jobs if job.disk_space_size > threshold]

    def disabled_jobs(self, jobs: list[Job]) -> list[Job]:
        return [job for job in jobs if job.disabled is True]

    def jobs_without_config_file(self, jobs: list[Job]) -> list[Job]:
        return [job for job in jobs if not job.has_config_file]

    def stale_cutoff(self) -> datetime.datetime:
        months = self.config.get("reports", {}).get("stale_months", 1)
        return subtract_months(self.now, months)

    def jobs_not_run_recently(self, jobs: list[Job]) -> list[Job]:
        """Jobs whose last run is more than the stale window in the past."""
        cutoff = self.stale_cutoff()
        return [
            job
            for job in jobs
            if job.last_run_date is not None and job.last_run_date < cutoff
        ]


# =============================================================================
# REPORT RENDERING
# =============================================================================


class ReportRenderer:
    """Handles rendering of job collections into CSV and JSON."""

    def __init__(self, config: dict[str, Any], logger: logging.Logger) -> None:
        self.config = config
        self.logger = logger

    def job_to_csv_row(self, job: Job) -> list[str]:
        """Convert a job to CSV fields; unknown values become empty strings."""
        description = (job.description or "").replace("'", "")
        return [
            job.team_name,
            job.job_name,
            (job.created_by or "").replace("'", ""),
            description,
            str(job.disk_space_size),
            format_datetime(job.creation_date),
            format_datetime(job.last_run_date),
            _flag_text(job.disabled),
            _flag_text(job.is_job_in_execution()),
        ]

    def render_csv_report(self, jobs: list[Job], output_path: Path) -> None:
        """Write jobs to a single-quoted CSV file, one job per line."""
        self.logger.info(f"Generating report file: {output_path}")
        output_path.parent.mkdir(parents=True, exist_ok=True)

        with open(output_path, "w", encoding="utf-8", newline="") as f:
            writer = csv.writer(
                f, quotechar="'", quoting=csv.QUOTE_ALL, lineterminator="\n"
            )
            writer.writerow(CSV_HEADER)
            for job in jobs:
                writer.writerow(self.job_to_csv_row(job))

    def render_json_report(self, data: dict[str, Any], output_path: Path) -> None:
        """Write the canonical JSON report."""
        self.logger.info(f"Writing JSON report to {output_path}")
        output_path.parent.mkdir(parents=True, exist_ok=True)

        with open(output_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False, default=str)


def save_resolved_config(config: Dict[str, Any], output_path: Path) -> None:
    """Save the resolved configuration to a JSON file."""
    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(config, f, indent=2, default=str)


# =============================================================================
# MAIN ORCHESTRATION AND CLI ENTRY POINT
# =============================================================================


class HudsonReporter:
    """Main orchestrator for Hudson job reporting."""

    def __init__(self, config: dict[str, Any], logger: logging.Logger) -> None:
        self.config = config
        self.logger = logger
        hudson_config = config.get("hudson", {})
        self.hudson = HudsonInstance(
            hudson_config["home"],
            logger,
            disk_usage=create_disk_usage_calculator(config, logger),
            max_workers=config.get("performance", {}).get("max_workers", 1),
            include_public_jobs=hudson_config.get("include_public_jobs", False),
        )
        self.filters = ReportFilters(config)
        self.renderer = ReportRenderer(config, logger)

    def resolve_output_path(self, configured: str, output_dir: Optional[Path]) -> Path:
        path = Path(configured)
        if output_dir is not None and not path.is_absolute():
            return output_dir / path
        return path

    def generate_reports(self, output_dir: Optional[Path] = None) -> dict[str, Path]:
        """
        Generate every report with a configured output path.

        Returns a mapping of report type to the CSV file written.
        """
        jobs = self.hudson.get_jobs()
        outputs = self.config.get("reports", {}).get("outputs", {}) or {}
        write_json = self.config.get("output", {}).get("json", False)
        digest = compute_config_digest(self.config)

        generated_files: dict[str, Path] = {}

        for report_type in REPORT_TYPES:
            configured_path = outputs.get(report_type)
            if not configured_path:
                self.logger.info(f"No output configured for '{report_type}' report, skipping")
                continue

            selected = self.filters.select(report_type, jobs)
            if selected is None:
                self.logger.warning(
                    f"Report '{report_type}' needs reports.threshold_kb, skipping"
                )
                continue

            csv_path = self.resolve_output_path(configured_path, output_dir)
            self.renderer.render_csv_report(selected, csv_path)
            generated_files[report_type] = csv_path

            if write_json:
                self.renderer.render_json_report(
                    self.build_report_data(report_type, selected, digest),
                    csv_path.with_suffix(".json"),
                )

            self.logger.info(f"Report '{report_type}': {len(selected)} jobs")

        return generated_files

    def build_report_data(
        self, report_type: str, jobs: list[Job], digest: str
    ) -> dict[str, Any]:
        return {
            "schema_version": SCHEMA_VERSION,
            "generated_at": self.filters.now.isoformat(),
            "hudson_home": str(self.hudson.home_directory),
            "config_digest": digest,
            "script_version": SCRIPT_VERSION,
            "report": report_type,
            "jobs": [job.to_dict() for job in jobs],
            "errors": list(self.hudson.errors),
        }


def parse_arguments(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Generate inventory reports for a Hudson job repository",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --hudson-home /var/lib/hudson
  %(prog)s --instance build-farm --config-dir ./configuration --output-dir ./reports
  %(prog)s --properties reporter.properties --verbose
        """,
    )

    parser.add_argument(
        "--instance",
        help="Hudson instance name (selects <instance>.config override)",
    )
    parser.add_argument(
        "--config-dir",
        type=Path,
        default=DEFAULT_CONFIG_DIR,
        help=f"Configuration directory (default: {DEFAULT_CONFIG_DIR})",
    )
    parser.add_argument(
        "--hudson-home",
        type=Path,
        help="Hudson home directory (overrides hudson.home)",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=DEFAULT_OUTPUT_DIR,
        help=f"Directory for relative report paths (default: {DEFAULT_OUTPUT_DIR})",
    )
    parser.add_argument(
        "--properties",
        type=Path,
        help="Legacy reporter.properties file to import",
    )

    parser.add_argument(
        "--no-json", action="store_true", help="Skip JSON report generation"
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable verbose logging"
    )
    parser.add_argument(
        "--validate-only", action="store_true", help="Validate configuration and exit"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override log level from configuration",
    )

    return parser.parse_args(argv)


def resolve_configuration(args: argparse.Namespace) -> dict[str, Any]:
    """Load, override and validate configuration from CLI arguments."""
    config = load_configuration(args.config_dir, args.instance)

    if args.properties:
        legacy = properties_to_config(load_properties_file(args.properties))
        config = deep_merge_dicts(config, legacy)

    if args.hudson_home:
        config.setdefault("hudson", {})["home"] = str(args.hudson_home)
    if args.no_json:
        config.setdefault("output", {})["json"] = False

    if args.log_level:
        config.setdefault("logging", {})["level"] = args.log_level
    elif args.verbose:
        config.setdefault("logging", {})["level"] = "DEBUG"

    validate_configuration(config)
    return config


def write_summary_to_step_summary(
    generated_files: dict[str, Path], job_count: int, error_count: int
) -> None:
    """Append a run summary to the GitHub Step Summary, when available."""
    step_summary_file = os.environ.get("GITHUB_STEP_SUMMARY")
    if not step_summary_file:
        return

    with open(step_summary_file, "a", encoding="utf-8") as f:
        f.write("\n## 📊 Hudson Job Inventory\n\n")
        f.write(f"- **Jobs:** {job_count}\n")
        f.write(f"- **Errors:** {error_count}\n\n")
        if generated_files:
            f.write("| Report | File |\n|--------|------|\n")
            for report_type, path in generated_files.items():
                f.write(f"| {report_type} | `{path}` |\n")


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    try:
        args = parse_arguments(argv)

        try:
            config = resolve_configuration(args)
        except ConfigurationError as e:
            print(f"ERROR: Failed to load configuration: {e}", file=sys.stderr)
            return 1

        log_config = config.get("logging", {})
        logger = setup_logging(
            level=log_config.get("level", "INFO"),
            include_timestamps=log_config.get("include_timestamps", True),
        )

        logger.info(f"Hudson Job Inventory Reporter v{SCRIPT_VERSION}")
        logger.info(f"Hudson home: {config['hudson']['home']}")
        logger.info(f"Configuration digest: {compute_config_digest(config)[:12]}...")

        if args.validate_only:
            logger.info("Configuration validation successful")
            print(f"✅ Configuration valid for instance '{config['instance']}'")
            print(f"   - Hudson home: {config['hudson']['home']}")
            outputs = config.get("reports", {}).get("outputs", {}) or {}
            print(f"   - Reports configured: {[name for name, path in outputs.items() if path]}")
            return 0

        args.output_dir.mkdir(parents=True, exist_ok=True)

        reporter = HudsonReporter(config, logger)
        generated_files = reporter.generate_reports(args.output_dir)
        save_resolved_config(config, args.output_dir / "config_resolved.json")

        job_count = len(reporter.hudson.get_jobs())
        error_count = len(reporter.hudson.errors)

        print("\n✅ Report generation completed successfully!")
        print(f"   - Jobs inventoried: {job_count}")
        print(f"   - Errors: {error_count}")
        for report_type, path in generated_files.items():
            print(f"   - {report_type}: {path}")

        write_summary_to_step_summary(generated_files, job_count, error_count)

        return 0

    except KeyboardInterrupt:
        print("\n❌ Operation cancelled by user", file=sys.stderr)
        return 130
    except Exception as e:
        print(f"❌ Unexpected error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
