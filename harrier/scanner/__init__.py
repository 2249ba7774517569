"""
Harrier Scanner

Crawl-and-discovery core: pages, training, auditing.
"""

from harrier.scanner.core.engine import ScannerEngine, ScanConfig
from harrier.scanner.core.page import Page
from harrier.scanner.core.trainer import Trainer

__all__ = ['ScannerEngine', 'ScanConfig', 'Page', 'Trainer']
