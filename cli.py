#!/usr/bin/env python3
"""
clusteval Repository CLI

Command-line interface for scanning a clusteval repository.

Usage:
    python cli.py scan [--root DIR]               # Scan every category once and report
    python cli.py watch [--root DIR]              # Keep scanning until interrupted
    python cli.py categories                      # List categories, paths and dependencies
    python cli.py errors [--root DIR]             # Scan once and list finder errors
    python cli.py conversions [--root DIR]        # Scan once and list format conversions
    python cli.py init-layout [--root DIR]        # Create missing category directories
"""

import sys
import json
import time
import argparse
from typing import Optional

from clusteval.config.settings_loader import ConfigManager, Settings
from clusteval.core.categories import CATEGORY_SPECS, ExtensionCategory
from clusteval.core.repository import Repository
from clusteval.scheduling.supervisor import RepositorySupervisor
from clusteval.schemas.data_models import RegistrySnapshot
from clusteval.utils.advanced_logging import configure_logging
from clusteval.utils.error_handling import ClusEvalError


class ClusEvalCLI:
    """CLI for a clusteval repository."""

    def __init__(self, config_path: Optional[str] = None, root: Optional[str] = None):
        """
        Initialize CLI.

        Args:
            config_path: Path to settings YAML (defaults apply if None and none is found)
            root: Repository root overriding the configured one
        """
        self.settings = self._load_settings(config_path)
        if root:
            self.settings.repository.root = root

        configure_logging(
            log_level=self.settings.logging.level,
            log_format=self.settings.logging.format,
            log_file=self.settings.logging.file,
            service_name=self.settings.service.name,
        )

        self.repository = Repository(
            self.settings.repository.root,
            paths=self.settings.repository.get_path_overrides(),
        )
        if self.settings.repository.create_missing_dirs:
            self.repository.ensure_layout()

    def _load_settings(self, config_path: Optional[str]) -> Settings:
        try:
            return ConfigManager.load_config(config_path)
        except FileNotFoundError:
            if config_path is not None:
                print(f"❌ Configuration file not found: {config_path}", file=sys.stderr)
                sys.exit(1)
            return Settings()
        except ValueError as e:
            print(f"❌ {e}", file=sys.stderr)
            sys.exit(1)

    def scan(self, timeout: Optional[float] = None) -> RegistrySnapshot:
        """Run every finder once and return what was registered."""
        supervisor = RepositorySupervisor(self.repository, self.settings, check_once=True)
        supervisor.start()
        try:
            if not supervisor.wait_until_initialized(timeout):
                print("⚠️  Not all categories were initialized in time", file=sys.stderr)
        finally:
            supervisor.stop()
            supervisor.join(timeout=5)
        return self.repository.snapshot()

    def watch(self, interval: float) -> None:
        """Keep all finders running, printing a summary every ``interval`` seconds."""
        supervisor = RepositorySupervisor(self.repository, self.settings, check_once=False)
        supervisor.start()
        try:
            while True:
                time.sleep(interval)
                print_summary(self.repository.snapshot())
        except KeyboardInterrupt:
            print("\n🛑 Stopping finders")
        finally:
            supervisor.stop()
            supervisor.join(timeout=5)


def print_json(data: dict, indent: int = 2):
    """Pretty print JSON."""
    print(json.dumps(data, indent=indent, default=str))


def print_summary(snapshot: RegistrySnapshot):
    """Print registered classes and objects per category."""
    print(f"📦 Repository: {snapshot.root} ({snapshot.count()} entries)\n")
    for category in snapshot.categories:
        icon = "✅" if category.initialized else "⏳"
        entries = category.classes + category.objects
        print(f"{icon} {category.category}: {len(entries)}")
        for name in entries:
            version = category.versions.get(name.rsplit(".", 1)[-1])
            suffix = f" (v{version})" if version is not None else ""
            print(f"   {name}{suffix}")

    if snapshot.known_errors:
        print(f"\n❌ Files with errors: {len(snapshot.known_errors)}")


def print_errors(snapshot: RegistrySnapshot):
    """Print finder errors per file."""
    if not snapshot.known_errors:
        print("✅ No finder errors")
        return
    print(f"❌ Finder errors ({len(snapshot.known_errors)} files)\n")
    for path, errors in sorted(snapshot.known_errors.items()):
        print(f"{path}")
        for error in errors:
            print(f"   {error}")


def print_conversions(snapshot: RegistrySnapshot):
    """Print available dataset format conversions."""
    print(f"🔁 Format Conversions (Total: {len(snapshot.conversions)})\n")
    for conversion in snapshot.conversions:
        print(
            f"   {conversion.source_format} -> {conversion.target_format}"
            f"  [{conversion.parser}.{conversion.method}]"
        )


def print_categories(repository: Repository):
    """Print categories, base paths and dependencies."""
    print("🗂️  Categories\n")
    for category in ExtensionCategory:
        spec = CATEGORY_SPECS[category]
        depends_on = ", ".join(str(c) for c in spec.depends_on) or "-"
        print(f"{category} ({spec.kind})")
        print(f"   Path: {repository.get_base_path(category)}")
        print(f"   Files: *{spec.file_suffix or ''}")
        print(f"   Depends on: {depends_on}")


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="clusteval Repository CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "command",
        help="Command to execute",
        choices=[
            "scan",
            "watch",
            "categories",
            "errors",
            "conversions",
            "init-layout",
        ],
    )

    parser.add_argument("--config", "-c", help="Settings YAML file")
    parser.add_argument("--root", "-r", help="Repository root directory")
    parser.add_argument("--timeout", type=float, help="Seconds to wait for the initial scan")
    parser.add_argument("--interval", type=float, default=30.0, help="Summary interval of watch")
    parser.add_argument("--json", action="store_true", help="Print the registry snapshot as JSON")

    args = parser.parse_args()

    cli = ClusEvalCLI(config_path=args.config, root=args.root)

    try:
        if args.command == "scan":
            snapshot = cli.scan(args.timeout)
            if args.json:
                print_json(snapshot.model_dump())
            else:
                print_summary(snapshot)

        elif args.command == "watch":
            cli.watch(args.interval)

        elif args.command == "categories":
            print_categories(cli.repository)

        elif args.command == "errors":
            print_errors(cli.scan(args.timeout))

        elif args.command == "conversions":
            print_conversions(cli.scan(args.timeout))

        elif args.command == "init-layout":
            cli.repository.ensure_layout()
            print(f"✅ Layout created under {cli.repository.root}")

        else:
            parser.print_help()
            sys.exit(1)

    except ClusEvalError as e:
        print(f"❌ {e.message}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
