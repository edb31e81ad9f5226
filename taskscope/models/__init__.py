from .capture import TIMESTAMP_FORMAT, FILE_TIMESTAMP_FORMAT, Screenshot, MonitorInfo, CapturedMonitor, MonitorState, CaptureStatus, TickResult
from .task import Task, TaskUpdate, TaskAnalysis, AnalysisStatus, TASK_CATEGORIES
from .session import CaptureSession

__all__ = [
    'TIMESTAMP_FORMAT',
    'FILE_TIMESTAMP_FORMAT',
    'Screenshot',
    'MonitorInfo',
    'CapturedMonitor',
    'MonitorState',
    'CaptureStatus',
    'TickResult',
    'Task',
    'TaskUpdate',
    'TaskAnalysis',
    'AnalysisStatus',
    'TASK_CATEGORIES',
    'CaptureSession',
]
