"""Errors returned to API callers.

Each error knows its status code and renders the JSON body
``{"message": ...}``. Store faults are converted to one of these at the
handler boundary so their causes never reach the caller.
"""
from typing import Any, Dict, Optional


class ContentStoreError(Exception):
    status_code = 500
    message = "Internal server error"

    def __init__(self, message: Optional[str] = None, headers: Optional[Dict[str, str]] = None):
        self.message = message or self.message
        self.headers = dict(headers or {})
        super().__init__(self.message)

    def to_body(self) -> Dict[str, Any]:
        return {"message": self.message}


class MethodNotAllowed(ContentStoreError):
    status_code = 405
    message = "Method not allowed"


class ContentNotFound(ContentStoreError):
    status_code = 404
    message = "Could not find the file."


class PayloadTooLarge(ContentStoreError):
    status_code = 413

    def __init__(self, max_limit: int, headers: Optional[Dict[str, str]] = None):
        self.max_limit = max_limit
        super().__init__(f"File too large. Maximum size is {max_limit} bytes", headers=headers)

    def to_body(self) -> Dict[str, Any]:
        return {"message": self.message, "max_limit": self.max_limit}


class UploadTimedOut(ContentStoreError):
    status_code = 408
    message = "Upload did not complete in time"


class UploadFailed(ContentStoreError):
    message = "Could not save the file."


class DownloadFailed(ContentStoreError):
    message = "Could not read the file."
