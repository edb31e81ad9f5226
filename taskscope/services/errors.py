"""Common error handling for all services"""

class ServiceError(Exception):
    """Base exception for all service errors"""
    pass

class CaptureError(ServiceError):
    """Base exception for screen capture errors"""
    pass

class NoMonitorsError(CaptureError):
    """Raised when the OS reports no monitors"""
    pass

class MonitorNotFoundError(CaptureError):
    """Raised when a specific monitor is requested but unavailable"""
    pass

class SaveError(CaptureError):
    """Raised when a captured image cannot be written to disk"""
    pass

class DatabaseError(ServiceError):
    """Base exception for database-related errors"""
    pass

class AnalyzerError(ServiceError):
    """Base exception for analyzer-related errors"""
    pass

class ProviderUnavailableError(AnalyzerError):
    """Raised when an analysis backend cannot be reached"""
    pass

class ProviderStatusError(AnalyzerError):
    """Raised when an analysis backend answers with a non-success status"""

    def __init__(self, status: int, body: str = ""):
        self.status = status
        self.body = body
        super().__init__(f"Provider returned status {status}: {body}")

class EmptyResponseError(AnalyzerError):
    """Raised when an analysis backend returns no content"""
    pass

class ResponseParseError(AnalyzerError):
    """Raised when an analysis result does not match the expected schema"""
    pass

class ConfigError(ServiceError):
    """Base exception for configuration errors"""
    pass

class SessionError(ServiceError):
    """Base exception for capture session errors"""
    pass

class RunnerError(ServiceError):
    """Base exception for service runner errors"""
    pass

class NotFoundError(ServiceError):
    """Raised when a requested task or session does not exist"""
    pass
