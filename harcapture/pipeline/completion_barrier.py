import asyncio
import logging

from harcapture.core.errors import CollectorStateError
from harcapture.models.models import BarrierReport, CollectorState, EnrichmentResult
from harcapture.pipeline.event_collector import EventCollector

logger = logging.getLogger(__name__)

class CompletionBarrier:
    """
    Runs every queued body fetch of a closed collector and waits for all of them.

    Tasks run concurrently and independently: a task that fails is reported as a
    failure and never cancels its siblings.
    """

    async def drain(self, collector: EventCollector) -> BarrierReport:
        if collector.state is not CollectorState.CLOSED:
            raise CollectorStateError("Stop the collector before draining its fetch queue.")

        tasks = list(collector.tasks)
        report = BarrierReport()
        if not tasks:
            logger.info("No response bodies to fetch.")
            collector.freeze()
            return report

        logger.info(f"Fetching {len(tasks)} response bodies...")
        outcomes = await asyncio.gather(*(task() for task in tasks), return_exceptions=True)

        for task, outcome in zip(tasks, outcomes):
            if isinstance(outcome, BaseException):
                outcome = EnrichmentResult.failed(task.event, task.response, outcome)
            outcome.merged = collector.apply(outcome)
            report.results.append(outcome)

        collector.freeze()
        logger.info(f"Fetched {len(report.enriched)} bodies, {len(report.failures)} failed.")
        return report
