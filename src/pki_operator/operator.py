#!/usr/bin/env python3
"""
PKI Operator - Main entry point for the Kopf-based PKI operator.

This operator maintains a self-signed PKI for every watched cluster resource:
- A root CA and named leaf certificates stored in a ``<cluster>-pki`` Secret
- Incremental issuance and removal when the requested certificate set changes
- Full rotation before the CA or any certificate expires

Usage:
    python -m pki_operator.operator
    # Or with kopf directly:
    kopf run -m pki_operator.operator --all-namespaces

Environment Variables:
    PKI_OPERATOR_NAMESPACES: Comma-separated list of namespaces to watch
    LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR)
    METRICS_PORT: Port of the Prometheus metrics endpoint
"""

import logging
import sys

import kopf
from kubernetes import config
from prometheus_client import start_http_server

# Importing the handler module registers its decorators with kopf
from pki_operator.handlers import pki  # noqa: F401
from pki_operator.observability.logging import setup_structured_logging
from pki_operator.observability.metrics import get_metrics_registry
from pki_operator.settings import settings as operator_settings


def configure_logging() -> None:
    """Configure structured logging for the operator based on operator_settings."""
    setup_structured_logging(
        log_level=operator_settings.log_level.upper(),
        enable_json_formatting=operator_settings.json_logs,
        correlation_id_enabled=operator_settings.correlation_ids,
    )


@kopf.on.startup()
async def startup_handler(settings: kopf.OperatorSettings, **_) -> None:
    """
    Operator startup configuration.

    Loads the Kubernetes configuration and starts the metrics endpoint.
    """
    logging.info("Starting PKI Operator...")
    settings.watching.reconnect_backoff = 1.0
    settings.peering.standalone = True

    try:
        config.load_incluster_config()
        logging.info("Loaded in-cluster Kubernetes configuration")
    except config.ConfigException:
        try:
            config.load_kube_config()
            logging.info("Loaded kubeconfig configuration")
        except config.ConfigException:
            logging.error("Failed to load Kubernetes configuration")
            raise

    try:
        start_http_server(
            operator_settings.metrics_port,
            addr=operator_settings.metrics_host,
            registry=get_metrics_registry(),
        )
        logging.info(
            "Metrics endpoint available on "
            f"{operator_settings.metrics_host}:{operator_settings.metrics_port}"
        )
    except OSError as e:
        logging.error(f"Failed to start metrics server: {e}")
        # Don't fail operator startup if metrics server fails
        logging.warning("Continuing without metrics server")


@kopf.on.cleanup()
async def cleanup_handler(**_) -> None:
    logging.info("Shutting down PKI Operator...")


def main() -> None:
    """
    Main entry point for the operator.

    Configures logging, then runs kopf on the configured namespaces or
    cluster-wide.
    """
    configure_logging()
    watched_namespaces = operator_settings.watched_namespaces

    try:
        if watched_namespaces:
            logging.info(f"Watching namespaces: {', '.join(watched_namespaces)}")
            kopf.run(namespaces=watched_namespaces)
        else:
            logging.info("Watching all namespaces (cluster-wide mode)")
            kopf.run(clusterwide=True)
    except KeyboardInterrupt:
        logging.info("Received shutdown signal")
        sys.exit(0)
    except Exception as e:
        logging.error(f"Operator failed with error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
