from loopwright.application.port import Reporter
from loopwright.domain.entity import IterationResult, RunSummary


class InMemoryReporter(Reporter):
    def __init__(self):
        self.iterations: list[IterationResult] = []
        self.summaries: list[RunSummary] = []
        self.flushes = 0

    def report_iteration(self, result: IterationResult) -> None:
        """
        Store an iteration summary.

        :param result: The iteration summary
        :type result: IterationResult
        """
        self.iterations.append(result)

    def report_summary(self, summary: RunSummary) -> None:
        """
        Store a run summary.

        :param summary: The run summary
        :type summary: RunSummary
        """
        self.summaries.append(summary)

    def flush(self) -> None:
        self.flushes += 1

    @property
    def last_summary(self) -> RunSummary | None:
        return self.summaries[-1] if self.summaries else None
