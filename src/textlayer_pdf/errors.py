from __future__ import annotations


class TextLayerError(Exception):
    """Base class for every failure surfaced by textlayer-pdf.

    ``stage`` names the pipeline step that failed when the error was raised
    inside the codec orchestrator, otherwise it is ``None``.
    """

    def __init__(self, message: str, *, stage: str | None = None) -> None:
        super().__init__(message)
        self.stage = stage

    def __str__(self) -> str:
        message = super().__str__()
        if self.stage:
            return f"[{self.stage}] {message}"
        return message


class SourceLoadError(TextLayerError):
    pass


class PageOutOfRange(TextLayerError):
    def __init__(self, page_index: int, page_count: int) -> None:
        super().__init__(
            f"Page index {page_index} is out of range for a document with {page_count} page(s)"
        )
        self.page_index = page_index
        self.page_count = page_count


class RasterAllocationError(TextLayerError):
    pass


class AllocationError(TextLayerError):
    pass


class OutputWriteError(TextLayerError):
    pass


class RecognitionEngineError(TextLayerError):
    pass


class ExternalToolFailure(TextLayerError):
    def __init__(
        self,
        tool: str,
        exit_code: int | None,
        *,
        stage: str | None = None,
        detail: str = "",
    ) -> None:
        if exit_code is None:
            message = f"{tool} could not be run"
        else:
            message = f"{tool} failed with exit code {exit_code}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message, stage=stage)
        self.tool = tool
        self.exit_code = exit_code
        self.detail = detail


class PipelineError(TextLayerError):
    """Unexpected exception raised inside an orchestrator stage."""

    def __init__(self, stage: str, cause: BaseException) -> None:
        super().__init__(f"{type(cause).__name__}: {cause}", stage=stage)
        self.cause = cause
