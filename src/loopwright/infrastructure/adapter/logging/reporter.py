import logging

from loopwright.application.port import Reporter
from loopwright.domain.entity import IterationResult, RunSummary

HEADERS = ["Iteration", "Passed", "Failed", "Skipped", "Unexecuted"]


def format_table(rows: list[list[int]]) -> str:
    """
    Render summary rows as a plain text table.

    :param rows: ``[iteration, passed, failed, skipped, unexecuted]`` rows
    :type rows: list[list[int]]
    :returns: The table, one line per row below a header line
    :rtype: str
    """
    cells = [HEADERS, *[[str(value) for value in row] for row in rows]]
    widths = [max(len(line[column]) for line in cells) for column in range(len(HEADERS))]
    return "\n".join(
        "  ".join(value.rjust(width) for value, width in zip(line, widths)) for line in cells
    )


class LoggingReporter(Reporter):
    """Writes iteration results and the final summary table through a logger."""

    def __init__(self, logger: logging.Logger | None = None):
        self.logger = logger if logger is not None else logging.getLogger("loopwright.report")

    def report_iteration(self, result: IterationResult) -> None:
        self.logger.info(
            "iteration=%d passed=%d failed=%d skipped=%d unexecuted=%d duration=%dms",
            result.iteration,
            result.passed,
            result.failed,
            result.skipped,
            result.unexecuted,
            result.duration,
        )
        for step in result.steps:
            if step.error:
                self.logger.debug("iteration=%d step=%r error=%s", result.iteration, step.name, step.error)

    def report_summary(self, summary: RunSummary) -> None:
        if not summary.iterations:
            self.logger.info("No iterations completed")
            return
        self.logger.info("Test summary\n%s", format_table(summary.rows()))

    def flush(self) -> None:
        for handler in self.logger.handlers:
            handler.flush()
