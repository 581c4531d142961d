"""
Pipeline Errors
===============

Every stage of the pipeline raises a subclass of PipelineError. The stage
name travels with the exception so the entry point can report where the
run stopped.
"""


class PipelineError(Exception):
    """Base class for all fatal pipeline errors."""

    stage = "pipeline"

    def __init__(self, message: str, stage: str = None):
        super().__init__(message)
        if stage is not None:
            self.stage = stage

    def __str__(self) -> str:
        return f"[{self.stage}] {super().__str__()}"


class RetrievalError(PipelineError):
    """Dataset source could not be reached or read."""

    stage = "load"


class SchemaError(PipelineError):
    """Dataset columns are missing, mismatched or not parseable."""

    stage = "load"


class PartitionError(PipelineError):
    """Invalid split fraction or empty dataset."""

    stage = "split"


class SelectionError(PipelineError):
    """Predictor selection is undefined for the given data."""

    stage = "select"


class FitError(PipelineError):
    """A model could not be trained or used for prediction."""

    stage = "train"


class EvaluationError(PipelineError):
    """Trained models could not be scored on the testing set."""

    stage = "evaluate"
