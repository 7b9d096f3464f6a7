from __future__ import annotations


class KeepmarksError(Exception):
    """Base class for errors surfaced to callers."""


class ImportFormatError(KeepmarksError):
    """The input file is structurally unusable; nothing was written."""


class MissingSectionError(ImportFormatError):
    def __init__(self, section: str):
        self.section = section
        super().__init__(f"Missing {section} section.")


class InvalidRowError(ImportFormatError):
    def __init__(self, row: str):
        self.row = row
        super().__init__(f"Invalid row: {row}")


class NotUTF8Error(ImportFormatError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"{name}: file is not valid UTF-8.")


class FileTooLargeError(KeepmarksError):
    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(
            f"File is too large to import ({size / (1024 * 1024):.1f} MB, limit {limit // (1024 * 1024)} MB)."
        )


class StoreError(KeepmarksError):
    pass


class StoreIntegrityError(StoreError):
    pass


class FolderCycleError(StoreError):
    pass


class ReadingListFullError(KeepmarksError):
    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"Reading list is full ({limit} items).")
