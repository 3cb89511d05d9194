from fastapi import HTTPException, status
from typing import Optional, Dict, Any

class BaseAPIException(HTTPException):
    """Base exception for API errors"""
    def __init__(
        self,
        status_code: int,
        error_code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ):
        self.error_code = error_code
        self.message = message
        self.details = details or {}

        super().__init__(
            status_code=status_code,
            detail={
                "success": False,
                "error": {
                    "code": error_code,
                    "message": message,
                    "details": self.details
                }
            }
        )

    def __str__(self) -> str:  # Ensure str(e) returns the human message
        return self.message

class AuthenticationError(BaseAPIException):
    """Authentication related errors"""
    def __init__(self, message: str = "Authentication failed", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            error_code="AUTH_001",
            message=message,
            details=details
        )

class AuthorizationError(BaseAPIException):
    """Authorization related errors"""
    def __init__(self, message: str = "Access forbidden", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            error_code="AUTH_002",
            message=message,
            details=details
        )

class ValidationError(BaseAPIException):
    """Validation errors"""
    def __init__(self, message: str = "Validation failed", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code="VALIDATION_001",
            message=message,
            details=details
        )

class NotFoundError(BaseAPIException):
    """Resource not found errors"""
    def __init__(self, message: str = "Resource not found", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="NOT_FOUND_001",
            message=message,
            details=details
        )

class ConflictError(BaseAPIException):
    """Resource conflict errors"""
    def __init__(self, message: str = "Resource conflict", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            error_code="CONFLICT_001",
            message=message,
            details=details
        )

class InternalServerError(BaseAPIException):
    """Internal server errors"""
    def __init__(self, message: str = "Internal server error", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            error_code="INTERNAL_001",
            message=message,
            details=details
        )

class ServiceException(Exception):
    """Base exception for service layer errors"""
    pass

class ConfigurationError(Exception):
    """Raised at startup when currency/price configuration is incomplete"""
    pass

class PriceSourceError(ServiceException):
    """가격 제공자 호출 실패 (네트워크, 응답 형식 등)"""

    def __init__(self, symbol: str, message: str):
        self.symbol = symbol
        self.message = message
        super().__init__(f"{symbol}: {message}")

class PriceUnavailableError(ServiceException):
    """No live, cached or fallback price exists for a symbol"""
    pass

class ChainClientError(ServiceException):
    """Chain data API call failed"""
    pass

class TransactionRevertedError(ChainClientError):
    """트랜잭션이 체인에 포함됐지만 실행이 실패함 (receipt status 0)"""

    def __init__(self, tx_hash: str, chain: str):
        self.tx_hash = tx_hash
        self.chain = chain
        super().__init__(f"Transaction {tx_hash} reverted on {chain}")
