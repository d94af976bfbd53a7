#!/usr/bin/env python3
"""
Poll and checkout script for hgsync.

Runs one poll or one checkout for a configured job:
- poll: compares the remote branch head with the last built revision
- checkout: updates or clones the job workspace and writes the changelog

Designed to be called by a build agent (cron, CI runner, or a wrapper job).

Usage:
    python scripts/hg_sync.py poll --job JOB [--config CONFIG_PATH]
    python scripts/hg_sync.py checkout --job JOB [--build-number N] [--changelog PATH]
"""

import argparse
import os
import sys
from pathlib import Path

import structlog

from hgsync.models.config import AppConfig, JobConfig
from hgsync.models.revision import Change
from hgsync.models.source import ExecutionContext
from hgsync.scm.errors import HgSyncError
from hgsync.sync.sync_coordinator import SyncCoordinator
from hgsync.utils.config_loader import ConfigLoader, ConfigurationError
from hgsync.utils.logging_config import configure_logging, run_context

log = structlog.stdlib.get_logger()

EXIT_OK = 0
EXIT_FAILED = 1
# poll only: the head moved but nothing the job depends on changed
EXIT_NO_BUILD_NEEDED = 3


def _find_job(config: AppConfig, name: str) -> JobConfig:
    job = config.find_job(name)
    if job is None:
        known = ", ".join(j.name for j in config.jobs) or "none"
        raise ConfigurationError(f"Unknown job '{name}' (configured jobs: {known})")
    return job


def run_poll(coordinator: SyncCoordinator, job: JobConfig) -> int:
    with run_context(job.name) as run_log:
        context = ExecutionContext(env=dict(os.environ), log=run_log)
        result = coordinator.poll(job.name, job.source, job.node, job.workspace, context)

    print("\n" + "=" * 60)
    print("POLL SUMMARY")
    print("=" * 60)
    print(f"Job: {job.name}")
    if result is None:
        print("Baseline: none (build required)")
        print("=" * 60)
        return EXIT_OK

    print(f"Baseline: {result.baseline.rev}:{result.baseline.short_id}")
    print(f"Head: {result.current.rev}:{result.current.short_id}")
    print(f"Change: {result.change.value}")
    print("=" * 60)
    return EXIT_OK if result.change is Change.SIGNIFICANT else EXIT_NO_BUILD_NEEDED


def run_checkout(
    coordinator: SyncCoordinator,
    job: JobConfig,
    build_number: int | None,
    changelog: Path | None,
) -> int:
    if build_number is None:
        build_number = coordinator.tracker.next_build_number(job.name)
    if changelog is None:
        changelog = job.workspace.parent / f"{job.name}-{build_number}-changelog.xml"

    with run_context(job.name, build_number=build_number) as run_log:
        context = ExecutionContext(env=dict(os.environ), log=run_log)
        report = coordinator.checkout(
            job.name, job.source, build_number, job.node, job.workspace, context, changelog
        )

    env = coordinator.build_env_vars(
        coordinator.tracker.load_build(job.name, build_number), job.source, {}
    )

    print("\n" + "=" * 60)
    print("CHECKOUT SUMMARY")
    print("=" * 60)
    print(f"Job: {report.job} #{report.build_number}")
    print(f"Workspace: {report.state.value}")
    for name, value in env.items():
        print(f"{name}={value}")
    print(f"Changelog: {report.changelog_path}")
    print(f"Duration: {report.duration_seconds:.2f} seconds")
    print("=" * 60)
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the sync script."""
    parser = argparse.ArgumentParser(description="Mercurial workspace synchronization")
    parser.add_argument("--config", type=str, default=None, help="Path to configuration file")
    subparsers = parser.add_subparsers(dest="command", required=True)

    poll_parser = subparsers.add_parser("poll", help="Check the remote for relevant changes")
    poll_parser.add_argument("--job", required=True, help="Configured job name")

    checkout_parser = subparsers.add_parser("checkout", help="Synchronize the job workspace")
    checkout_parser.add_argument("--job", required=True, help="Configured job name")
    checkout_parser.add_argument(
        "--build-number", type=int, default=None, help="Build number (default: next)"
    )
    checkout_parser.add_argument(
        "--changelog", type=Path, default=None, help="Where to write the changelog"
    )

    args = parser.parse_args(argv)

    try:
        config = ConfigLoader().load_config(args.config)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_FAILED

    configure_logging(config.logging)

    try:
        job = _find_job(config, args.job)
        coordinator = SyncCoordinator(config.sync)
        if args.command == "poll":
            return run_poll(coordinator, job)
        return run_checkout(coordinator, job, args.build_number, args.changelog)
    except (ConfigurationError, HgSyncError) as e:
        log.error("sync_failed", command=args.command, job=args.job, error=str(e))
        print(f"\nFAILED: {e}", file=sys.stderr)
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
