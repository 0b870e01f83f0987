"""
Command-line interface for aws-rekey.
"""

import argparse
import logging
import sys

from . import __version__
from .core import get_aws_credentials_path, load_credentials
from .errors import StoreLoadError, StoreLocateError
from .rotation import DEFAULT_PROFILE, KeyRotator, find_duplicates, resolve_profiles

logger = logging.getLogger("awsrekey")


def build_parser():
    parser = argparse.ArgumentParser(
        prog="aws-rekey",
        description="Rotate the long-lived AWS access keys stored in a shared credentials file",
        epilog="Examples:\n"
        "  aws-rekey                                    # Rotate the 'default' profile\n"
        "  aws-rekey --profile dev,prod                 # Rotate 'dev' then 'prod'\n"
        "  aws-rekey -c ~/work/credentials -p ci        # Use another credentials file",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "-c",
        "--credentials-file",
        default=None,
        help="AWS credentials file path (defaults to AWS_SHARED_CREDENTIALS_FILE, "
        "then ~/.aws/credentials)",
    )
    parser.add_argument(
        "-p",
        "--profile",
        default=DEFAULT_PROFILE,
        help="Comma separated list of profiles to rotate, in order (default: %(default)s)",
    )
    parser.add_argument(
        "--all-profiles",
        action="store_true",
        help="Rotate every profile in the credentials file (not supported yet)",
    )
    parser.add_argument(
        "--ssh-key",
        default=None,
        help="SSH private key used to open and re-seal encrypted profiles "
        "(defaults to AWS_REKEY_SSH_KEY, then ~/.ssh/id_ed25519)",
    )
    parser.add_argument(
        "--region",
        default=None,
        help="AWS region for the STS and IAM clients (default: us-east-1)",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Show debug output"
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    return parser


def configure_logging(verbose=False):
    """Send aws-rekey log records to stderr."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    logger.handlers[:] = [handler]
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.propagate = False
    return logger


def print_summary(results, out=None):
    out = out or sys.stdout
    print(file=out)
    print("Rotation summary:", file=out)
    for result in results:
        if result.succeeded:
            status = "✓ rotated"
        elif result.degraded:
            status = "⚠ new key created, old key still active"
        else:
            status = f"✗ failed ({result.error})"
        print(f"  {result.profile}: {status}", file=out)


def main(argv=None):
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.all_profiles:
        parser.error("--all-profiles is not supported yet; use --profile a,b,c")

    log = configure_logging(args.verbose)

    try:
        creds_file = args.credentials_file or get_aws_credentials_path()
        config = load_credentials(creds_file)
    except (StoreLocateError, StoreLoadError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    profiles = resolve_profiles(args.profile)
    duplicates = find_duplicates(profiles)
    if duplicates:
        log.warning(
            "Profile(s) listed more than once will be rotated again each time: %s",
            ", ".join(duplicates),
        )

    rotator = KeyRotator(
        creds_file,
        config,
        logger=log,
        ssh_key_path=args.ssh_key,
        region=args.region,
    )
    results = rotator.rotate_many(profiles)
    print_summary(results)

    failures = sum(1 for result in results if not result.succeeded)
    if failures:
        log.warning("%d of %d profile(s) not fully rotated", failures, len(results))
    return 0


if __name__ == "__main__":
    sys.exit(main())
