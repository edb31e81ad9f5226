"""
taskscope - screen capture with AI task inference
"""

__version__ = "0.1.0"

from .services.database import DatabaseManager
from .services.image import ImageManager
from .services.controller import PipelineController
from .services.orchestrator import AnalysisOrchestrator
from .services.scheduler import CaptureScheduler
from .models.task import Task, TaskAnalysis
from .models.session import CaptureSession

__all__ = [
    'DatabaseManager',
    'ImageManager',
    'PipelineController',
    'AnalysisOrchestrator',
    'CaptureScheduler',
    'Task',
    'TaskAnalysis',
    'CaptureSession',
]
