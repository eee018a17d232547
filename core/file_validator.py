"""
Centralized file access utilities for configuration and stores.

Reads and writes go through these helpers so that a missing, unreadable or
unwritable file is reported as a typed error instead of a raw OSError.
"""

import os
from typing import List, Optional, Tuple
from enum import Enum
from dataclasses import dataclass


class FileErrorType(Enum):
    """Types of file operation errors."""
    FILE_NOT_FOUND = "file_not_found"
    PERMISSION_DENIED = "permission_denied"
    IS_DIRECTORY = "is_directory"
    SYSTEM_ERROR = "system_error"
    ENCODING_ERROR = "encoding_error"


@dataclass
class FileValidationError:
    """Represents a file validation error."""
    error_type: FileErrorType
    file_path: str
    message: str
    details: Optional[str] = None


class FileValidator:
    """File checks and guarded read/write."""

    @staticmethod
    def validate_readable_file(file_path: str) -> List[FileValidationError]:
        """The file must exist, be a regular file and be readable."""
        if not file_path:
            return [FileValidationError(FileErrorType.FILE_NOT_FOUND, "", "File path not specified")]

        if not os.path.exists(file_path):
            return [FileValidationError(
                FileErrorType.FILE_NOT_FOUND,
                file_path,
                f"File not found: {file_path}"
            )]

        if not os.path.isfile(file_path):
            return [FileValidationError(
                FileErrorType.IS_DIRECTORY,
                file_path,
                f"Path is a directory, not a file: {file_path}"
            )]

        if not os.access(file_path, os.R_OK):
            return [FileValidationError(
                FileErrorType.PERMISSION_DENIED,
                file_path,
                f"File is not readable: {file_path}"
            )]

        return []

    @staticmethod
    def validate_writable_file(file_path: str) -> List[FileValidationError]:
        """The file, or the directory it would be created in, must be writable."""
        if not file_path:
            return [FileValidationError(FileErrorType.FILE_NOT_FOUND, "", "File path not specified")]

        if os.path.exists(file_path):
            if not os.path.isfile(file_path):
                return [FileValidationError(
                    FileErrorType.IS_DIRECTORY,
                    file_path,
                    f"Path is a directory, not a file: {file_path}"
                )]
            if not os.access(file_path, os.W_OK):
                return [FileValidationError(
                    FileErrorType.PERMISSION_DENIED,
                    file_path,
                    f"File is not writable: {file_path}"
                )]
            return []

        parent_dir = os.path.dirname(file_path) or '.'
        if os.path.exists(parent_dir) and not os.access(parent_dir, os.W_OK):
            return [FileValidationError(
                FileErrorType.PERMISSION_DENIED,
                file_path,
                f"Directory is not writable: {parent_dir}"
            )]
        return []

    @staticmethod
    def safe_file_read(file_path: str, encoding: str = 'utf-8') -> Tuple[Optional[str], List[FileValidationError]]:
        """Safely read file content with comprehensive error handling."""
        errors = FileValidator.validate_readable_file(file_path)
        if errors:
            return None, errors

        try:
            with open(file_path, 'r', encoding=encoding) as f:
                return f.read(), []
        except PermissionError:
            return None, [FileValidationError(
                FileErrorType.PERMISSION_DENIED,
                file_path,
                f"Permission denied reading file: {file_path}"
            )]
        except UnicodeDecodeError as e:
            return None, [FileValidationError(
                FileErrorType.ENCODING_ERROR,
                file_path,
                f"File encoding error in {file_path}: {e}",
                str(e)
            )]
        except OSError as e:
            return None, [FileValidationError(
                FileErrorType.SYSTEM_ERROR,
                file_path,
                f"System error reading {file_path}: {e}",
                str(e)
            )]

    @staticmethod
    def safe_file_write(file_path: str, content: str, encoding: str = 'utf-8') -> List[FileValidationError]:
        """Write content, creating parent directories; the previous file is replaced atomically."""
        errors = FileValidator.validate_writable_file(file_path)
        if errors:
            return errors

        parent_dir = os.path.dirname(file_path)
        if parent_dir and not os.path.exists(parent_dir):
            try:
                os.makedirs(parent_dir, exist_ok=True)
            except OSError as e:
                return [FileValidationError(
                    FileErrorType.SYSTEM_ERROR,
                    file_path,
                    f"Cannot create directory {parent_dir}: {e}",
                    str(e)
                )]

        tmp_path = f"{file_path}.tmp"
        try:
            with open(tmp_path, 'w', encoding=encoding) as f:
                f.write(content)
            os.replace(tmp_path, file_path)
            return []
        except PermissionError:
            return [FileValidationError(
                FileErrorType.PERMISSION_DENIED,
                file_path,
                f"Permission denied writing to file: {file_path}"
            )]
        except OSError as e:
            return [FileValidationError(
                FileErrorType.SYSTEM_ERROR,
                file_path,
                f"System error writing to {file_path}: {e}",
                str(e)
            )]
