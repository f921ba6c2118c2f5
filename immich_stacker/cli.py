"""
Command-line entry point for immich-stacker.

Loads settings, checks the server version, lists every unstacked asset and
stacks the groups found by the configured patterns. Exits 0 once the run has
completed (individual stacking failures are reported in the summary), and 1
when the run cannot start or the asset listing cannot be trusted.
"""

import argparse
import logging
import sys
from typing import Any, Dict, List, Optional

from immich_stacker import __version__
from immich_stacker.core import config
from immich_stacker.core.asset_source import make_source
from immich_stacker.core.immich_api import ImmichAPI, ImmichAPIError
from immich_stacker.core.models import StackStats
from immich_stacker.core.settings import ConfigError, StackerConfig, load_settings
from immich_stacker.core.stacker import StackAssembler, choose_mode
from immich_stacker.utils.logger import log_config, setup_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="immich-stacker",
        description="Group Immich assets into stacks by matching file names.",
        epilog="Every option can also be set as an IMMICH_<NAME> environment variable, "
               "e.g. IMMICH_API_KEY or IMMICH_READ_ONLY=true.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", dest="config_file", help="JSON configuration file")

    parser.add_argument("--api-key", help="Immich API key")
    parser.add_argument("--endpoint", help="Immich server URL, e.g. https://photos.example.com")
    parser.add_argument("--match", help="regex selecting assets to stack; the match is removed to form the group key")
    parser.add_argument("--parent", help="regex selecting the primary asset of each group")

    parser.add_argument("--source", choices=config.SUPPORTED_SOURCES, help="asset listing style")
    parser.add_argument("--mode", choices=config.SUPPORTED_MODES, help="stacking call to use")
    parser.add_argument("--page-size", type=int, help="assets per search page")
    parser.add_argument("--workers", type=int, help="concurrent stacking calls")
    parser.add_argument("--timeout", type=float, help="request timeout in seconds")

    parser.add_argument("--log-level", choices=config.LOG_LEVELS, help="logging verbosity")
    parser.add_argument("--log-file", help="also write the log to this file")

    # None (not False) when absent so environment and file values survive
    for flag, help_text in (
        ("--compare-created", "include the creation timestamp in the group key"),
        ("--read-only", "report what would be stacked without changing anything"),
        ("--strict-parents", "skip groups where several assets match the parent pattern"),
        ("--insecure-tls", "do not verify TLS certificates"),
        ("--debug-http", "log every HTTP request and response"),
    ):
        parser.add_argument(flag, action="store_const", const=True, default=None, help=help_text)

    return parser


def _overrides(args: argparse.Namespace) -> Dict[str, Any]:
    names = set(StackerConfig.setting_names())
    return {k: v for k, v in vars(args).items() if k in names and v is not None}


def run(settings: StackerConfig, api: Optional[ImmichAPI] = None) -> StackStats:
    """
    Execute one stacking run.

    Raises:
        ImmichAPIError: The version check or the asset listing failed
    """
    own_api = api is None
    if own_api:
        api = ImmichAPI(
            settings.endpoint,
            settings.api_key,
            timeout=settings.timeout,
            verify_tls=not settings.insecure_tls,
            debug_http=settings.debug_http,
        )

    try:
        logger.info(f"Connecting to Immich at {settings.endpoint}")
        version = api.server.get_version()
        logger.info(f"Server version {version['major']}.{version['minor']}.{version['patch']}")

        mode = choose_mode(settings.mode, version)
        if settings.read_only:
            logger.info("Read-only run: no stacks will be created")

        source = make_source(settings.source, api)
        assembler = StackAssembler(api, settings, mode=mode)

        # Listing completes before any stack is created
        candidates = assembler.build_candidates(source.fetch_all(settings.page_size))
        return assembler.classify_and_apply(candidates)
    finally:
        if own_api:
            api.close()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings(config_file=args.config_file, overrides=_overrides(args))
    except ConfigError as e:
        setup_logging()
        logger.critical(f"Error loading config: {e}")
        return 1

    setup_logging(settings.log_level, log_file=settings.log_file or None)
    logger.info(f"Starting immich-stacker {__version__}")
    log_config("immich-stacker", settings.describe(), logger)

    try:
        stats = run(settings)
    except ImmichAPIError as e:
        logger.critical(f"Run aborted: {e}")
        return 1

    logger.info(
        f"Finished - stackable: {stats.stackable}, succeeded: {stats.succeeded}, "
        f"failed: {stats.failed}, not stackable: {stats.not_stackable}"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
