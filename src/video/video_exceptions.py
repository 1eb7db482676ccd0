"""
Video-specific exceptions and error handling

Provides a hierarchy of custom exceptions for the adaptive encoder,
enabling precise error handling and readable error events.
"""

from typing import Optional


class VideoError(Exception):
    """Base exception for all adaptive video errors"""
    
    def __init__(self, message: str, details: Optional[str] = None):
        self.message = message
        self.details = details
        super().__init__(self.message)
    
    def __str__(self):
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class ConfigurationError(VideoError):
    """Raised when the adaptive video configuration is invalid"""
    
    def __init__(self, message: str = "Invalid video configuration", details: Optional[str] = None):
        super().__init__(message, details)


class EncoderError(VideoError):
    """Base class for encoder subprocess failures"""
    
    def __init__(self, message: str = "Encoder operation failed", details: Optional[str] = None):
        super().__init__(message, details)


class EncoderSpawnError(EncoderError):
    """Raised when the encoder subprocess cannot be created"""
    
    def __init__(self, message: str = "Failed to spawn encoder", details: Optional[str] = None):
        super().__init__(message, details)


class EncoderStateError(EncoderError):
    """Raised when an operation is not valid in the supervisor's current state"""
    
    def __init__(self, message: str = "Invalid encoder state", details: Optional[str] = None):
        super().__init__(message, details)


class EncoderCrashedError(EncoderError):
    """Reported when a running encoder exits without being asked to"""
    
    def __init__(self, returncode: Optional[int], details: Optional[str] = None):
        self.returncode = returncode
        super().__init__(f"Encoder exited unexpectedly (code {returncode})", details)


class LinkProbeError(VideoError):
    """Raised when a link quality probe fails"""
    
    def __init__(self, message: str = "Link probe failed", details: Optional[str] = None):
        super().__init__(message, details)


