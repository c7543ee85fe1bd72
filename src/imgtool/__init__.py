"""Batch image compression and conversion toolkit."""

from .config import AppConfig, load_config
from .core import ConversionService
from .models import BatchConversionResult, ConversionOptions, ConversionTask, TaskResult
from .paths import plan_tasks

__all__ = [
    "AppConfig",
    "load_config",
    "BatchConversionResult",
    "ConversionOptions",
    "ConversionService",
    "ConversionTask",
    "TaskResult",
    "plan_tasks",
]
