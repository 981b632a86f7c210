"""
Custom exceptions for sheetloader
"""


class SheetLoaderError(Exception):
    """Base exception for all sheetloader errors"""
    pass


class ConfigurationError(SheetLoaderError):
    """Invalid configuration"""
    pass


class DatasetError(SheetLoaderError):
    """Dataset shape or addressing error"""
    pass


class ReadError(SheetLoaderError):
    """Error reading from a source file"""
    pass


class WriteError(SheetLoaderError):
    """Error writing to a destination file"""
    pass


class MissingInputError(SheetLoaderError):
    """Referenced dataset is not in the working set"""
    pass


class TransformError(SheetLoaderError):
    """Error during transformation"""
    pass


class InvalidExpressionError(TransformError):
    """Malformed or unevaluable field expression"""
    pass


class AuthenticationError(SheetLoaderError):
    """Token acquisition failed"""
    pass


class RemoteJobError(SheetLoaderError):
    """Bulk job error"""
    pass


class RemoteRequestError(RemoteJobError):
    """HTTP request to the bulk API failed"""
    pass


class RemoteJobTimeoutError(RemoteJobError):
    """Job did not reach a terminal state within max wait"""
    pass


class RemoteJobFailedError(RemoteJobError):
    """Remote system reported the job as Failed"""
    pass


class RemoteJobAbortedError(RemoteJobError):
    """Remote system reported the job as Aborted"""
    pass


class PartialImportError(RemoteJobError):
    """Job completed but some rows were rejected"""
    pass


class CorrelationMissError(SheetLoaderError):
    """A result row could not be matched to a dataset row"""
    pass


class PipelineError(SheetLoaderError):
    """Pipeline execution error"""
    pass
