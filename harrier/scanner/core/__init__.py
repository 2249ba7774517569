"""
Harrier Scanner Core Components

Contains the page model, trainer, crawler, HTTP requester and scan engine.
"""

from harrier.scanner.core.engine import ScannerEngine, ScanConfig
from harrier.scanner.core.crawler import AsyncCrawler
from harrier.scanner.core.requester import AsyncRequester, Request, Response
from harrier.scanner.core.parser import Parser
from harrier.scanner.core.page import Page, ConfigurationError
from harrier.scanner.core.trainer import Trainer, TrainingResult, TrainingStatus

__all__ = [
    'ScannerEngine', 'ScanConfig', 'AsyncCrawler', 'AsyncRequester', 'Request', 'Response',
    'Parser', 'Page', 'ConfigurationError', 'Trainer', 'TrainingResult', 'TrainingStatus'
]
