"""Error taxonomy shared by the catalog scanner and the merge orchestrator.

Each error knows the HTTP status it maps to so the web layer can translate it
into an ``HTTPException`` without inspecting the failure any further.
"""
from typing import Any, Dict, Optional, Union


class SegmergeError(Exception):
    status_code = 500
    error = "internal_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def detail(self) -> Union[str, Dict[str, Any]]:
        return self.message


class InvalidMergeRequest(SegmergeError):
    status_code = 400
    error = "invalid_request"


class ForbiddenPathError(SegmergeError):
    status_code = 403
    error = "forbidden_path"

    def __init__(self, path: str) -> None:
        super().__init__(f"Forbidden path: {path}")
        self.path = path


class ResourceBusyError(SegmergeError):
    status_code = 429
    error = "merge_in_progress"

    def __init__(self, message: str = "A merge is already in progress, retry later") -> None:
        super().__init__(message)


class ToolExecutionError(SegmergeError):
    status_code = 500
    error = "ffmpeg_failed"

    def __init__(self, message: str, output: str = "", returncode: Optional[int] = None) -> None:
        super().__init__(message)
        self.output = output
        self.returncode = returncode

    def detail(self) -> Dict[str, Any]:
        return {
            "error": self.error,
            "message": self.message,
            "returncode": self.returncode,
            "output": self.output,
        }


class ToolTimeoutError(ToolExecutionError):
    status_code = 504
    error = "processing_timeout"


class InfrastructureError(SegmergeError):
    status_code = 500
    error = "infrastructure_error"


class CatalogScanError(InfrastructureError):
    error = "scan_failed"


class InsufficientStorageError(InfrastructureError):
    status_code = 507
    error = "insufficient_storage"
