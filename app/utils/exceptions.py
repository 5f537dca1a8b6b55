"""
Custom Exception Classes for the Resume Match Pipeline
"""
import asyncio
import time
from random import uniform
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Type, TypeVar

from fastapi import HTTPException

T = TypeVar("T")


class PipelineBaseException(Exception):
    """Base exception for the resume match pipeline"""

    def __init__(
        self,
        message: str,
        error_code: str = None,
        details: Dict[str, Any] = None,
        cause: Exception = None
    ):
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        self.cause = cause
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/response"""
        result = {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details
        }
        if self.cause:
            result["cause"] = str(self.cause)
        return result


class ExtractionError(PipelineBaseException):
    """Raised when a document cannot be opened or parsed at all"""

    def __init__(self, message: str, filename: str = None, media_type: str = None, **kwargs):
        details = kwargs.pop('details', {})
        if filename:
            details['filename'] = filename
        if media_type:
            details['media_type'] = media_type
        super().__init__(message, error_code="EXTRACTION_ERROR", details=details, **kwargs)


class AnalysisError(PipelineBaseException):
    """Raised when the structured analyzer returns malformed or missing fields"""

    def __init__(self, message: str, operation: str = None, errors: Any = None, **kwargs):
        details = kwargs.pop('details', {})
        if operation:
            details['operation'] = operation
        if errors is not None:
            details['validation_errors'] = errors
        super().__init__(message, error_code="ANALYSIS_ERROR", details=details, **kwargs)


class EmbeddingUnavailableError(PipelineBaseException):
    """Raised when no embedding provider can produce a vector"""

    def __init__(self, message: str, provider: str = None, **kwargs):
        details = kwargs.pop('details', {})
        if provider:
            details['provider'] = provider
        super().__init__(message, error_code="EMBEDDING_UNAVAILABLE", details=details, **kwargs)


class ScoringDegraded(PipelineBaseException):
    """Explanation generator failed; the score itself is still valid"""

    def __init__(self, message: str, subject_id: str = None, target_id: str = None, **kwargs):
        details = kwargs.pop('details', {})
        if subject_id:
            details['subject_id'] = subject_id
        if target_id:
            details['target_id'] = target_id
        super().__init__(message, error_code="SCORING_DEGRADED", details=details, **kwargs)


class ValidationError(PipelineBaseException):
    """Raised when request data validation fails"""

    def __init__(self, message: str, field: str = None, value: Any = None, **kwargs):
        details = kwargs.pop('details', {})
        if field:
            details['field'] = field
        if value is not None:
            details['invalid_value'] = str(value)
        super().__init__(message, error_code="VALIDATION_ERROR", details=details, **kwargs)


class NotFoundError(PipelineBaseException):
    """Raised when a stored resource does not exist"""

    def __init__(self, message: str, resource: str = None, resource_id: str = None, **kwargs):
        details = kwargs.pop('details', {})
        if resource:
            details['resource'] = resource
        if resource_id:
            details['resource_id'] = resource_id
        super().__init__(message, error_code="NOT_FOUND", details=details, **kwargs)


class DatabaseError(PipelineBaseException):
    """Raised when database operations fail"""

    def __init__(self, message: str, operation: str = None, collection: str = None, **kwargs):
        details = kwargs.pop('details', {})
        if operation:
            details['operation'] = operation
        if collection:
            details['collection'] = collection
        super().__init__(message, error_code="DATABASE_ERROR", details=details, **kwargs)


class ConfigurationError(PipelineBaseException):
    """Raised when configuration is invalid or missing"""

    def __init__(self, message: str, config_key: str = None, config_value: Any = None, **kwargs):
        details = kwargs.pop('details', {})
        if config_key:
            details['config_key'] = config_key
        if config_value is not None:
            details['config_value'] = str(config_value)
        super().__init__(message, error_code="CONFIGURATION_ERROR", details=details, **kwargs)


def map_to_http_exception(exc: PipelineBaseException) -> HTTPException:
    """Map custom exceptions to HTTP exceptions"""

    status_code_mapping = {
        ValidationError: 400,
        ExtractionError: 400,
        NotFoundError: 404,
        AnalysisError: 502,
        EmbeddingUnavailableError: 503,
        DatabaseError: 500,
        ConfigurationError: 500,
    }

    status_code = status_code_mapping.get(type(exc), 500)

    detail = {
        "error": exc.to_dict(),
        "message": exc.message
    }

    return HTTPException(status_code=status_code, detail=detail)


class ExceptionContext:
    """Context manager that wraps foreign exceptions raised inside a pipeline stage"""

    def __init__(self, operation: str, logger=None, **context):
        self.operation = operation
        self.logger = logger
        self.context = context

    def __enter__(self):
        if self.logger:
            self.logger.debug(f"Starting operation: {self.operation}", extra={"context": self.context})
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            if self.logger:
                self.logger.debug(f"Operation completed: {self.operation}", extra={"context": self.context})
            return False

        if self.logger:
            self.logger.error(
                f"Operation failed: {self.operation} - {exc_val}",
                extra={"context": self.context, "exception_type": exc_type.__name__}
            )

        if isinstance(exc_val, PipelineBaseException) or not isinstance(exc_val, Exception):
            return False

        if "mongo" in str(exc_val).lower() or exc_type.__module__.startswith("pymongo"):
            raise DatabaseError(
                f"Database error in {self.operation}: {str(exc_val)}",
                operation=self.operation,
                details=dict(self.context),
                cause=exc_val
            ) from exc_val
        return False


def _backoff_delay(attempt: int, backoff_factor: float, jitter: float) -> float:
    return backoff_factor * (2 ** attempt) + (uniform(0, jitter) if jitter else 0.0)


async def retry_async(
    func: Callable[..., Awaitable[T]],
    *args,
    max_attempts: int = 3,
    backoff_factor: float = 1.0,
    jitter: float = 1.0,
    exceptions: Tuple[Type[BaseException], ...] = (Exception,),
    logger=None,
    **kwargs
) -> T:
    """Await ``func`` until it succeeds or ``max_attempts`` is reached, backing off exponentially"""
    name = getattr(func, "__qualname__", repr(func))
    for attempt in range(max_attempts):
        try:
            return await func(*args, **kwargs)
        except exceptions as e:
            if logger:
                logger.warning(f"Attempt {attempt + 1}/{max_attempts} failed for {name}: {str(e)}")
            if attempt >= max_attempts - 1:
                if logger:
                    logger.error(f"All {max_attempts} attempts failed for {name}")
                raise
            await asyncio.sleep(_backoff_delay(attempt, backoff_factor, jitter))
    raise RuntimeError("retry_async called with max_attempts < 1")


def retry_sync(
    func: Callable[..., T],
    *args,
    max_attempts: int = 3,
    backoff_factor: float = 1.0,
    jitter: float = 1.0,
    exceptions: Tuple[Type[BaseException], ...] = (Exception,),
    logger=None,
    sleep: Optional[Callable[[float], None]] = None,
    **kwargs
) -> T:
    """Blocking counterpart of :func:`retry_async` for calls made from executor threads"""
    name = getattr(func, "__qualname__", repr(func))
    sleeper = sleep or time.sleep
    for attempt in range(max_attempts):
        try:
            return func(*args, **kwargs)
        except exceptions as e:
            if logger:
                logger.warning(f"Attempt {attempt + 1}/{max_attempts} failed for {name}: {str(e)}")
            if attempt >= max_attempts - 1:
                if logger:
                    logger.error(f"All {max_attempts} attempts failed for {name}")
                raise
            sleeper(_backoff_delay(attempt, backoff_factor, jitter))
    raise RuntimeError("retry_sync called with max_attempts < 1")

