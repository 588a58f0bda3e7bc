#!/usr/bin/env python3
"""
Delete outdated images from a Docker registry under a retention policy.

For every repository matching --repo, the tags matching --tag (and not --ntag)
are ordered by image creation time. The --latest newest matching tags and
every tag younger than the configured age are kept; older tags are deleted by
digest, unless another kept tag still references the same digest.

Usage examples:
  # Show what would be deleted: tags older than 3 months, keep the newest 2
  python prune_registry.py --registry https://registry.example.com --month 3 --latest 2 --dry

  # Only release tags of the "team/" repositories, never touch "stable"
  python prune_registry.py --repo '^team/' --tag '^release-' --ntag 'stable' --day 30

  # Authenticate (prompts for the password) and keep a JSON audit report
  python prune_registry.py --user ci --year 1 --output reports/retention.json

  # Use a config file instead of flags
  python prune_registry.py --config config.yaml
"""

import argparse
import logging
import sys

from retention import __version__
from retention.auth import resolve_credentials
from retention.config_manager import ConfigManager
from retention.error_utils import ConfigurationError, ConnectivityError
from retention.logging_utils import get_logger, setup_logging
from retention.pruner import RegistryPruner
from retention.registry_client import RegistryClient, check_connectivity
from retention.report_utils import log_summary, save_json

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Delete outdated images from a Docker registry",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Dry run against a local registry, tags older than 30 days
  python prune_registry.py --registry http://localhost:5000 --day 30 --dry

  # Keep the 5 newest matching tags of every repository regardless of age
  python prune_registry.py --latest 5 --month 1
        """
    )

    parser.add_argument('--registry', help='URL of registry (default: http://localhost:5000)')
    parser.add_argument('--repos', type=int, help='number of repositories to garbage collect (default: 5)')
    parser.add_argument('--repo', help='matching repositories (allows regexp, default: .*)')
    parser.add_argument('--tag', help='matching tags (allows regexp, default: .*)')
    parser.add_argument('--ntag', help='non matching tags (allows regexp, default: none)')
    parser.add_argument('--day', type=int, help='max age in days')
    parser.add_argument('--month', type=int, help='max age in months')
    parser.add_argument('--year', type=int, help='max age in years')
    parser.add_argument(
        '--latest',
        type=int,
        help="number of the latest matching images of a repository that won't be deleted (default: 1)"
    )
    parser.add_argument('--dry', action='store_true', default=None, help="does not actually delete")
    parser.add_argument('--debug', action='store_true', help='run in debug mode')
    parser.add_argument('--insecure', action='store_true', default=None, help='Skip insecure TLS verification')
    parser.add_argument('--user', help='Username for basic authentication')
    parser.add_argument('--password', help='Password for basic authentication (prompted if --user is given alone)')
    parser.add_argument('--config', help='Path to config YAML (default: CONFIG_FILE env var or config.yaml)')
    parser.add_argument('--max-workers', type=int, help='Repositories processed in parallel (default: from config)')
    parser.add_argument('--output', help='Write the full decision report as JSON to this path')
    parser.add_argument('--timestamp', action='store_true', help='Add the run time to the --output file name')
    parser.add_argument('-v', '--version', action='version', version=f"Version: {__version__}",
                        help='shows version and quits')

    return parser


def config_overrides(args: argparse.Namespace) -> dict:
    """Map command-line flags onto dotted config keys"""
    return {
        "registry.url": args.registry,
        "registry.username": args.user,
        "registry.password": args.password,
        "registry.insecure": args.insecure,
        "retention.repositories": args.repos,
        "retention.repository_pattern": args.repo,
        "retention.tag_pattern": args.tag,
        "retention.exclude_tag_pattern": args.ntag,
        "retention.days": args.day,
        "retention.months": args.month,
        "retention.years": args.year,
        "retention.latest": args.latest,
        "retention.dry_run": args.dry,
        "analysis.max_workers": args.max_workers,
    }


def main(argv=None):
    """Main function"""
    argv = sys.argv[1:] if argv is None else argv
    parser = build_parser()

    if not argv:
        parser.print_usage()
        sys.exit(0)

    args = parser.parse_args(argv)
    setup_logging(logging.DEBUG if args.debug else logging.INFO)

    try:
        cm = ConfigManager(config_file=args.config, overrides=config_overrides(args))
        policy = cm.build_policy()
        cm.log_config(logger)
        logger.info(f"Deadline: images created before {policy.deadline.isoformat()} are outdated")

        username, password = resolve_credentials(cm)
        client = RegistryClient.from_config(cm, username, password)
        check_connectivity(client)

        summary = RegistryPruner(client, policy).run(registry_url=cm.get_registry_url())
        log_summary(summary)

        if args.output:
            save_json(args.output, summary.to_dict(), timestamp=args.timestamp)

    except ConfigurationError as e:
        logger.error(f"Invalid configuration:\n{e}")
        sys.exit(1)
    except ConnectivityError as e:
        logger.error(f"Registry not reachable:\n{e}")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.warning("Operation interrupted by user")
        sys.exit(1)

    sys.exit(0)


if __name__ == "__main__":
    main()
