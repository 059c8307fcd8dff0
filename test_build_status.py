#!/usr/bin/env python3
# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation

"""
Test script for build history and disk usage in the Hudson Job Inventory Reporter.

This script validates:
- Latest build selection among numbered build directories
- Exclusion of hyphenated and non-numeric build directories
- Running state detection from build.xml
- Portable and du-based disk usage calculation
- Disk usage memoization on Job
"""

import logging
import shutil
import subprocess
import sys
import tempfile
from pathlib import Path
from typing import Dict, List
from unittest.mock import patch

# Add the project root to Python path to import our module
sys.path.insert(0, str(Path(__file__).parent))

try:
    from hudson_reports import (
        DISK_USAGE_UNKNOWN,
        BuildStatusDetector,
        DiskUsageCalculator,
        DuDiskUsage,
        Job,
        PortableDiskUsage,
        create_disk_usage_calculator,
        setup_logging,
    )
except ImportError as e:
    print(f"ERROR: Failed to import from hudson_reports.py: {e}")
    print("Make sure hudson_reports.py is in the same directory as this test script.")
    sys.exit(1)

FINISHED_BUILD_XML = """<?xml version='1.0' encoding='UTF-8'?>
<build>
  <result>SUCCESS</result>
  <duration>1500</duration>
</build>
"""

RUNNING_BUILD_XML = """<?xml version='1.0' encoding='UTF-8'?>
<build>
  <duration>0</duration>
</build>
"""


def create_job_with_builds(build_names: List[str], files_to_create: Dict[str, str] = None) -> Path:
    """Create a temporary job directory with the given build directories and files."""
    temp_dir = Path(tempfile.mkdtemp())
    job_dir = temp_dir / "teams" / "QA" / "jobs" / "smoke-test"
    (job_dir / "builds").mkdir(parents=True)

    for name in build_names:
        (job_dir / "builds" / name).mkdir()

    for file_path, content in (files_to_create or {}).items():
        full_path = job_dir / file_path
        full_path.parent.mkdir(parents=True, exist_ok=True)

        with open(full_path, 'w', encoding='utf-8') as f:
            f.write(content)

    return temp_dir


def job_dir_of(temp_dir: Path) -> Path:
    return temp_dir / "teams" / "QA" / "jobs" / "smoke-test"


class CountingDiskUsage(DiskUsageCalculator):
    """Disk usage stub that records how often it is asked."""

    def __init__(self, logger: logging.Logger, size: int = 42) -> None:
        super().__init__(logger)
        self.size = size
        self.calls = 0

    def size_kb(self, directory: Path) -> int:
        self.calls += 1
        return self.size


def test_latest_build_selection():
    """Test that the highest numeric, non-hyphenated build wins."""
    print("Testing latest build selection...")

    logger = setup_logging("DEBUG", False)
    detector = BuildStatusDetector(logger)
    temp_dir = create_job_with_builds(
        ["3", "7", "2-rc", "10"],
        {"builds/lastSuccessfulBuild.txt": "not a directory"},
    )

    try:
        latest = detector.latest_build_directory(job_dir_of(temp_dir))
        assert latest is not None, "A latest build should be found"
        assert latest.name == "10", f"Expected build 10, got {latest.name}"
        assert latest == job_dir_of(temp_dir) / "builds" / "10"
    finally:
        shutil.rmtree(temp_dir)

    print("  ✅ Latest build selection works correctly")


def test_latest_build_edge_cases():
    """Test builds that are missing, hyphenated only, non-numeric or zero."""
    print("Testing latest build edge cases...")

    logger = setup_logging("DEBUG", False)
    detector = BuildStatusDetector(logger)

    no_builds_dir = Path(tempfile.mkdtemp())
    hyphen_only = create_job_with_builds(["2015-01-01_10-00-00", "1-2"])
    symlink_names = create_job_with_builds(["lastSuccessfulBuild", "5", "legacy"])
    zero_only = create_job_with_builds(["0"])
    empty_builds = create_job_with_builds([])
    unicode_digits = create_job_with_builds(["3", "²", "٤"])

    try:
        assert detector.latest_build_directory(no_builds_dir) is None, "No builds folder means no build"
        assert detector.latest_build_directory(job_dir_of(empty_builds)) is None
        assert detector.latest_build_directory(job_dir_of(hyphen_only)) is None, (
            "Only hyphenated builds should not yield a synthetic build 0"
        )

        latest = detector.latest_build_directory(job_dir_of(symlink_names))
        assert latest is not None and latest.name == "5", "Non-numeric names are skipped"

        latest = detector.latest_build_directory(job_dir_of(zero_only))
        assert latest is not None and latest.name == "0", "A real build 0 is still a build"

        latest = detector.latest_build_directory(job_dir_of(unicode_digits))
        assert latest is not None and latest.name == "3", "Only ASCII digit names are build numbers"
    finally:
        for path in (no_builds_dir, hyphen_only, symlink_names, zero_only, empty_builds, unicode_digits):
            shutil.rmtree(path)

    print("  ✅ Latest build edge cases handled correctly")


def test_running_detection():
    """Test tri-state execution detection from build.xml."""
    print("Testing running state detection...")

    logger = setup_logging("DEBUG", False)
    detector = BuildStatusDetector(logger)

    running = create_job_with_builds(["1", "2"], {
        "builds/1/build.xml": FINISHED_BUILD_XML,
        "builds/2/build.xml": RUNNING_BUILD_XML,
    })
    finished = create_job_with_builds(["1", "2"], {
        "builds/1/build.xml": RUNNING_BUILD_XML,
        "builds/2/build.xml": FINISHED_BUILD_XML,
    })
    no_builds = create_job_with_builds([])
    missing_build_xml = create_job_with_builds(["4"])

    try:
        assert detector.is_job_in_execution(job_dir_of(running)) is True, "Zero duration means running"
        assert detector.is_job_in_execution(job_dir_of(finished)) is False, (
            "Only the latest build is inspected"
        )
        assert detector.is_job_in_execution(job_dir_of(no_builds)) is None, "No builds is unknown"
        assert detector.is_job_in_execution(job_dir_of(missing_build_xml)) is None, (
            "Unreadable build.xml is unknown"
        )

        job = Job(job_dir_of(running), logger)
        assert job.is_job_in_execution() is True
        assert job.latest_build_directory().name == "2"
    finally:
        for path in (running, finished, no_builds, missing_build_xml):
            shutil.rmtree(path)

    print("  ✅ Running state detection works correctly")


def test_portable_disk_usage():
    """Test recursive size summation in kilobytes."""
    print("Testing portable disk usage...")

    logger = setup_logging("DEBUG", False)
    calculator = PortableDiskUsage(logger)
    temp_dir = create_job_with_builds(["1"], {
        "config.xml": "x" * 1024,
        "builds/1/log": "y" * 2048,
        "builds/1/build.xml": "z",
    })

    try:
        size = calculator.size_kb(job_dir_of(temp_dir))
        assert size == 4, f"1024 + 2048 + 1 bytes should round up to 4 KB, got {size}"

        empty = temp_dir / "empty"
        empty.mkdir()
        assert calculator.size_kb(empty) == 0, "An empty directory is 0 KB"

        assert calculator.size_kb(temp_dir / "missing") == DISK_USAGE_UNKNOWN, (
            "A missing directory should give the sentinel"
        )
    finally:
        shutil.rmtree(temp_dir)

    print("  ✅ Portable disk usage works correctly")


def test_du_disk_usage():
    """Test du output parsing and failure sentinel."""
    print("Testing du disk usage...")

    logger = setup_logging("DEBUG", False)
    calculator = DuDiskUsage(logger, timeout=5)
    temp_dir = Path(tempfile.mkdtemp())

    def completed(returncode: int, stdout: str) -> subprocess.CompletedProcess:
        return subprocess.CompletedProcess(["du"], returncode, stdout=stdout, stderr="")

    try:
        with patch("hudson_reports.subprocess.run", return_value=completed(0, "128\t.\n")) as run:
            assert calculator.size_kb(temp_dir) == 128
            args, kwargs = run.call_args
            assert args[0] == ["du", "-s", "-k", "."]
            assert kwargs["cwd"] == temp_dir
            assert kwargs["timeout"] == 5

        with patch("hudson_reports.subprocess.run", return_value=completed(1, "")):
            assert calculator.size_kb(temp_dir) == DISK_USAGE_UNKNOWN, "Failed du gives sentinel"

        with patch("hudson_reports.subprocess.run", return_value=completed(0, "lots\t.\n")):
            assert calculator.size_kb(temp_dir) == DISK_USAGE_UNKNOWN, "Unparsable output gives sentinel"

        with patch(
            "hudson_reports.subprocess.run",
            side_effect=subprocess.TimeoutExpired(["du"], 5),
        ):
            assert calculator.size_kb(temp_dir) == DISK_USAGE_UNKNOWN, "Timeout gives sentinel"

        with patch("hudson_reports.subprocess.run", side_effect=FileNotFoundError("du")):
            assert calculator.size_kb(temp_dir) == DISK_USAGE_UNKNOWN, "Missing du gives sentinel"
    finally:
        shutil.rmtree(temp_dir)

    print("  ✅ du disk usage works correctly")


def test_disk_usage_selection():
    """Test choosing the disk usage implementation from configuration."""
    print("Testing disk usage selection...")

    logger = setup_logging("DEBUG", False)

    assert isinstance(create_disk_usage_calculator({}, logger), PortableDiskUsage)
    calculator = create_disk_usage_calculator(
        {"disk_usage": {"method": "du", "timeout": 12}}, logger
    )
    assert isinstance(calculator, DuDiskUsage)
    assert calculator.timeout == 12

    try:
        DiskUsageCalculator(logger)
        assert False, "The base calculator should not be instantiable"
    except TypeError:
        pass

    class Incomplete(DiskUsageCalculator):
        pass

    try:
        Incomplete(logger)
        assert False, "A calculator without size_kb should not be instantiable"
    except TypeError:
        pass

    print("  ✅ Disk usage selection works correctly")


def test_disk_usage_memoized():
    """Test that a job measures its directory at most once."""
    print("Testing disk usage memoization...")

    logger = setup_logging("DEBUG", False)
    temp_dir = create_job_with_builds(["1"])
    counter = CountingDiskUsage(logger, size=42)

    try:
        job = Job(job_dir_of(temp_dir), logger, disk_usage=counter)
        assert counter.calls == 0, "Disk usage is computed lazily"
        assert job.disk_space_size == 42
        assert job.disk_space_size == 42
        assert counter.calls == 1, f"Expected one measurement, got {counter.calls}"
    finally:
        shutil.rmtree(temp_dir)

    print("  ✅ Disk usage memoization works correctly")


def run_all_tests():
    """Run all build status tests."""
    print("🧪 Running Build Status Tests for Hudson Job Inventory Reporter")
    print("-" * 60)

    tests = [
        test_latest_build_selection,
        test_latest_build_edge_cases,
        test_running_detection,
        test_portable_disk_usage,
        test_du_disk_usage,
        test_disk_usage_selection,
        test_disk_usage_memoized,
    ]

    passed = 0
    failed = 0

    for test_func in tests:
        try:
            test_func()
            passed += 1
        except Exception as e:
            print(f"  ❌ {test_func.__name__} failed: {e}")
            failed += 1
            import traceback
            traceback.print_exc()

    print("-" * 60)
    print(f"📊 Test Results: {passed} passed, {failed} failed")

    if failed == 0:
        print("🎉 All build status tests passed!")
        return True
    else:
        print("💥 Some tests failed.")
        return False


if __name__ == "__main__":
    success = run_all_tests()
    sys.exit(0 if success else 1)
