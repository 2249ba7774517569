"""
Harrier - Crawl and Discovery Core for Web Application Scanning

Builds auditable Page snapshots from HTTP responses and trains on
every audit response to feed newly revealed attack surface back into
the scan.
"""

import logging

__version__ = '1.0.0'

LOG_FORMAT = '%(asctime)s %(levelname)s [%(name)s] %(message)s'


def configure_logging(level='INFO'):
    """
    Configure root logging for the scanner.

    SECURITY: Don't log sensitive data (cookies, auth headers) above DEBUG.
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(level=level, format=LOG_FORMAT)
    # aiohttp is chatty on DEBUG
    logging.getLogger('aiohttp').setLevel(max(level, logging.WARNING))
