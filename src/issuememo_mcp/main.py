#!/usr/bin/env python
"""Main entry point for the Issue Memo MCP server."""
import argparse
import atexit
import logging
import os
import sys

from issuememo_mcp.config import TrackerConfig
from issuememo_mcp.exceptions import ConfigurationError
from issuememo_mcp.observability import configure_logging, metrics
from issuememo_mcp.server.mcp_server import IssueMemoMcpServer


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Issue Memo MCP Server")
    parser.add_argument(
        "--owner",
        help="Owner of the GitHub repository holding the memos",
        type=str,
        default=os.environ.get("ISSUEMEMO_GITHUB_OWNER")
    )
    parser.add_argument(
        "--repo",
        help="Name of the GitHub repository holding the memos",
        type=str,
        default=os.environ.get("ISSUEMEMO_GITHUB_REPO")
    )
    parser.add_argument(
        "--log-level",
        help="Logging level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=os.environ.get("ISSUEMEMO_LOG_LEVEL", "INFO")
    )
    return parser.parse_args(argv)


def build_config(args) -> TrackerConfig:
    """Environment config, with owner/repo overridden from the command line."""
    config = TrackerConfig.from_env()
    if args.owner or args.repo:
        config = config.with_credentials(
            config.token, args.owner or config.owner, args.repo or config.repo
        )
    return config


def _save_metrics_on_exit():
    """Save metrics to disk on server shutdown."""
    try:
        if metrics.save_metrics():
            logging.getLogger(__name__).info("Metrics saved to disk on shutdown")
    except Exception as e:
        logging.getLogger(__name__).warning(f"Failed to save metrics on shutdown: {e}")


def main():
    """Run the Issue Memo MCP server."""
    args = parse_args()
    config = build_config(args)

    # Configure logging (console + persistent file logging with rotation)
    log_level = getattr(logging, args.log_level.upper(), logging.INFO)
    try:
        log_dir = configure_logging(log_dir=config.get_log_dir(), level=log_level, console=True)
    except OSError as e:
        # Fall back to basic console logging if file logging fails
        logging.basicConfig(level=log_level)
        logging.getLogger(__name__).warning(f"Failed to configure file logging: {e}")
        log_dir = None

    logger = logging.getLogger(__name__)
    if log_dir:
        logger.info(f"Persistent logging enabled: {log_dir}")

    # Register metrics save on shutdown
    atexit.register(_save_metrics_on_exit)

    try:
        config.require_configured()
    except ConfigurationError as e:
        logger.error(f"{e.message}; set {e.config_key}")
        sys.exit(1)

    try:
        logger.info(f"Starting Issue Memo MCP server for {config.owner}/{config.repo}")
        server = IssueMemoMcpServer(config)
        server.run()
    except Exception as e:
        logger.error(f"Error running server: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
