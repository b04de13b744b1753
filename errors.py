import enum


class ErrorKind(enum.Enum):
    NAME_CONFLICT = "name_conflict"
    NOT_FOUND = "not_found"
    NOT_A_DIRECTORY = "not_a_directory"
    NOT_A_FILE = "not_a_file"
    OUT_OF_SPACE = "out_of_space"
    CORRUPT_DATA = "corrupt_data"
    INVALID_NAME = "invalid_name"
    IO_ERROR = "io_error"


class FSError(OSError):
    """Base class for recoverable file tree failures"""
    kind = None

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class NameConflictError(FSError, FileExistsError):
    kind = ErrorKind.NAME_CONFLICT


class NotFoundError(FSError, FileNotFoundError):
    kind = ErrorKind.NOT_FOUND


class NotADirectoryFSError(FSError, NotADirectoryError):
    kind = ErrorKind.NOT_A_DIRECTORY


class NotAFileError(FSError, IsADirectoryError):
    kind = ErrorKind.NOT_A_FILE


class OutOfSpaceError(FSError):
    kind = ErrorKind.OUT_OF_SPACE


class CorruptDataError(FSError):
    kind = ErrorKind.CORRUPT_DATA


class InvalidNameError(FSError):
    kind = ErrorKind.INVALID_NAME


class ImageIOError(FSError):
    kind = ErrorKind.IO_ERROR
