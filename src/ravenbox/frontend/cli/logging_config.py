"""Logging setup for the ravenbox command line."""

import logging
import sys

# boto3 logs every request at DEBUG, including signed headers
_NOISY_LOGGERS = ("boto3", "botocore", "s3transfer", "urllib3")


def configure_logging(verbose: bool = False) -> None:
    # Configure root logger once; diagnostics go to stderr.
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
