"""Exceptions raised by the service layer."""


class ClassifierError(Exception):
    """Base class for service-layer errors."""


class StorageError(ClassifierError):
    """Raised when an object cannot be stored or found."""


class WorkbookError(ClassifierError):
    """Raised when a workbook cannot be read or written."""


class ClassificationError(ClassifierError):
    """Raised when the classification provider fails or returns garbage."""


class OCRError(ClassifierError):
    """Raised when text cannot be extracted from a PDF."""


class FileNotFound(ClassifierError):
    """Raised when a file record does not exist for the requesting user."""


class InvalidFileError(ClassifierError):
    """Raised when an upload or file operation is not allowed."""


class FileTooLargeError(InvalidFileError):
    """Raised when an upload exceeds the configured size limit."""
