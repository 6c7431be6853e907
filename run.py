#!/usr/bin/env python3
"""
ClusterLimit Controller - Entry Point

A CRD-based Kubernetes controller that watches a cluster-scoped ClusterLimit
and keeps a managed LimitRange in every namespace it targets.

Usage:
    python run.py [--policy NAME] [--interval SECONDS] [--dry-run] [--in-cluster] [--once]
"""

import argparse
import logging
import sys

from kubernetes import config

from clusterlimit.config import (
    DEFAULT_POLICY_NAME,
    MAX_WORKERS,
    PASS_TIMEOUT_SECONDS,
    RECONCILE_INTERVAL_SECONDS,
    REQUEST_TIMEOUT_SECONDS,
)
from clusterlimit.controller import ClusterLimitController

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="ClusterLimit Controller - Project a ClusterLimit into per-namespace LimitRanges"
    )
    parser.add_argument(
        "--policy", "-p",
        default=DEFAULT_POLICY_NAME,
        help=f"Name of the ClusterLimit to enforce (default: {DEFAULT_POLICY_NAME})"
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=RECONCILE_INTERVAL_SECONDS,
        help=f"Seconds between periodic reconciliations (default: {RECONCILE_INTERVAL_SECONDS})"
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=MAX_WORKERS,
        help=f"Namespaces processed concurrently (default: {MAX_WORKERS})"
    )
    parser.add_argument(
        "--pass-timeout",
        type=float,
        default=PASS_TIMEOUT_SECONDS,
        help=f"Seconds a reconciliation pass may take (default: {PASS_TIMEOUT_SECONDS})"
    )
    parser.add_argument(
        "--request-timeout",
        type=float,
        default=REQUEST_TIMEOUT_SECONDS,
        help=f"Seconds allowed for each API call (default: {REQUEST_TIMEOUT_SECONDS})"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Run in dry-run mode (no changes made)"
    )
    parser.add_argument(
        "--in-cluster",
        action="store_true",
        help="Use in-cluster config (for running inside Kubernetes)"
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single reconciliation pass and exit"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose/debug logging"
    )
    return parser.parse_args(argv)


def main(argv=None):
    """Main entry point."""
    args = parse_args(argv)

    # Configure logging
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    # Load Kubernetes configuration
    try:
        if args.in_cluster:
            config.load_incluster_config()
            logger.info("Loaded in-cluster configuration")
        else:
            config.load_kube_config()
            logger.info("Loaded kubeconfig from default location")
    except Exception as e:
        logger.error(f"Failed to load Kubernetes config: {e}")
        sys.exit(1)

    controller = ClusterLimitController(
        policy_name=args.policy,
        dry_run=args.dry_run,
        interval=args.interval,
        max_workers=args.workers,
        pass_timeout=args.pass_timeout,
        request_timeout=args.request_timeout
    )

    if args.once:
        result = controller.reconcile()
        logger.info(result.summary())
        sys.exit(0 if result.ok else 1)

    try:
        controller.run()
    except KeyboardInterrupt:
        controller.stop()
        logger.info("Controller stopped")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Controller error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
