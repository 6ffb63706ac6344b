"""Exceptions raised by the pathway clustering pipeline."""


class PathclustError(Exception):
    """Base class for pipeline errors."""


class AnnotationStructureError(PathclustError):
    """The finalised annotation workbook does not match the exported cluster structure.

    Raised when the manual annotation step was skipped or the workbook was edited
    in a way that would shift cluster boundaries (missing or extra
    ``Pathway #<ClusterID>`` header rows, orphan rows, empty blocks).
    """

    def __init__(self, message: str, sheet: str = None):
        self.sheet = sheet
        if sheet is not None:
            message = f"Sheet '{sheet}': {message}"
        super().__init__(message)
