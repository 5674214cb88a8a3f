"""
Import pipeline exceptions
"""
from typing import List


class ImportPipelineError(Exception):
    """Base class for errors that stop an import before or during a run."""


class UnknownTargetSchemaError(ImportPipelineError):
    def __init__(self, target: str):
        super().__init__(f"Unknown import target '{target}'")
        self.target = target


class MissingRequiredFieldsError(ImportPipelineError):
    """Raised before a run starts when required target fields are unmapped."""

    def __init__(self, target: str, missing: List[str]):
        super().__init__(
            f"{target} import requires mapped fields: {', '.join(missing)}"
        )
        self.target = target
        self.missing = list(missing)


class ImportRunNotFoundError(ImportPipelineError):
    def __init__(self, import_id: str):
        super().__init__(f"Import run {import_id} not found")
        self.import_id = import_id
