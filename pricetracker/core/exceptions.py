"""
Custom exceptions and error handling for the application.
"""

from typing import Any, Dict, Optional


class APIException(Exception):
    """Base exception for all API errors."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        """
        Initialize API exception.

        Args:
            message: Human-readable error message
            status_code: HTTP status code
            error_code: Machine-readable error code
            details: Additional error details
        """
        self.message = message
        self.status_code = status_code
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)


class InvalidInputError(APIException):
    """Raised when input fails schema or domain validation."""

    def __init__(self, message: str = "Invalid input", field: Optional[str] = None):
        super().__init__(
            message=message,
            status_code=400,
            error_code="INVALID_INPUT",
            details={"field": field} if field else {},
        )


class ResourceNotFoundError(APIException):
    """Raised when requested resource is not found."""

    def __init__(self, resource_type: str, resource_id: Optional[str] = None):
        message = f"{resource_type} not found"
        if resource_id:
            message += f": {resource_id}"
        super().__init__(
            message=message,
            status_code=404,
            error_code="RESOURCE_NOT_FOUND",
            details={"resource_type": resource_type, "resource_id": resource_id},
        )


class UnknownSourceError(ResourceNotFoundError):
    """Raised when a source id or URL does not resolve."""

    def __init__(self, source_id: Optional[str] = None):
        super().__init__("Source", source_id)
        self.error_code = "UNKNOWN_SOURCE"


class UnknownProductError(ResourceNotFoundError):
    """Raised when a product id does not resolve."""

    def __init__(self, product_id: Optional[str] = None):
        super().__init__("Product", product_id)
        self.error_code = "UNKNOWN_PRODUCT"


class UnknownJobError(ResourceNotFoundError):
    """Raised when a job id does not resolve."""

    def __init__(self, job_id: Optional[str] = None):
        super().__init__("Job", job_id)
        self.error_code = "UNKNOWN_JOB"


class DuplicateSourceError(APIException):
    """Raised when registering a URL that is already a source."""

    def __init__(self, url: str):
        super().__init__(
            message=f"Source already registered: {url}",
            status_code=409,
            error_code="DUPLICATE_SOURCE",
            details={"url": url},
        )


class SourceBusyError(APIException):
    """Raised when another worker holds the lock for a source."""

    def __init__(self, lock_key: str):
        super().__init__(
            message=f"Source busy: {lock_key}",
            status_code=409,
            error_code="SOURCE_BUSY",
            details={"lock_key": lock_key},
        )


class InvalidJobTransitionError(APIException):
    """Raised when a job status change would move the state machine backwards."""

    def __init__(self, job_id: str, current: str, target: str):
        super().__init__(
            message=f"Job {job_id} cannot move from {current} to {target}",
            status_code=409,
            error_code="INVALID_JOB_TRANSITION",
            details={"job_id": job_id, "current": current, "target": target},
        )


class ExtractionError(APIException):
    """Raised inside extractors; converted into a failed ScrapingResult."""

    def __init__(
        self,
        failure_type: str,
        message: str = "Extraction failed",
        url: Optional[str] = None,
        selector: Optional[str] = None,
    ):
        details: Dict[str, Any] = {"failure_type": failure_type}
        if url:
            details["url"] = url
        if selector:
            details["selector"] = selector
        super().__init__(
            message=message,
            status_code=502,
            error_code="EXTRACTION_FAILURE",
            details=details,
        )
        self.failure_type = failure_type
        self.selector = selector


class RecipeGenerationError(APIException):
    """Raised when a fresh extraction recipe cannot be produced."""

    def __init__(self, message: str = "Recipe generation failed", url: Optional[str] = None):
        super().__init__(
            message=message,
            status_code=502,
            error_code="RECIPE_GENERATION_ERROR",
            details={"url": url} if url else {},
        )


class ExternalServiceError(APIException):
    """Raised when external service call fails."""

    def __init__(
        self,
        message: str = "External service unavailable",
        service_name: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        details = {}
        if service_name:
            details["service_name"] = service_name
        if original_error:
            details["original_error"] = str(original_error)
        super().__init__(
            message=message,
            status_code=503,
            error_code="EXTERNAL_SERVICE_ERROR",
            details=details,
        )


class SearchProviderError(ExternalServiceError):
    """Raised when the web search collaborator fails."""

    def __init__(self, message: str = "Search provider failed", original_error: Optional[Exception] = None):
        super().__init__(message=message, service_name="search", original_error=original_error)


class InngestError(APIException):
    """Raised when Inngest operation fails."""

    def __init__(self, message: str = "Background task operation failed", function_name: Optional[str] = None):
        super().__init__(
            message=message,
            status_code=500,
            error_code="INNGEST_ERROR",
            details={"function_name": function_name} if function_name else {},
        )
