from .sandbox_error_code import ClassifiedFailure, SandboxErrorCode, classify_failure, format_error

__all__ = ["ClassifiedFailure", "SandboxErrorCode", "classify_failure", "format_error"]
