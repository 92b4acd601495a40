import structlog
from shared.observability import saga_compensation_total

log = structlog.get_logger(__name__)


class SagaStep:
    def __init__(self, name, action, compensation=None):
        self.name = name
        self.action = action
        self.compensation = compensation


class SagaOrchestrator:
    def __init__(self, name: str = "saga"):
        self.name = name
        self.steps = []

    def add_step(self, name: str, action, compensation=None):
        """Builder pattern to add a step and its rollback compensation."""
        self.steps.append(SagaStep(name, action, compensation))
        return self

    async def execute(self, ctx: dict):
        """Executes steps sequentially. Triggers rollback on any exception, cancellation included."""
        executed_steps = []
        step = None
        try:
            for step in self.steps:
                await step.action(ctx)
                executed_steps.append(step)
            return True
        except BaseException as e:
            log.error(
                "saga_step_failed",
                saga=self.name,
                step=step.name if step else None,
                error=str(e) or type(e).__name__,
            )
            await self._rollback(executed_steps, ctx)
            raise

    async def _rollback(self, executed_steps: list, ctx: dict):
        """Executes compensations in reverse order. Wraps each in a try/except."""
        if executed_steps:
            log.info("saga_rollback_started", saga=self.name, steps=[s.name for s in executed_steps])
        for step in reversed(executed_steps):
            if step.compensation:
                try:
                    await step.compensation(ctx)
                    log.info("saga_compensation_succeeded", saga=self.name, step=step.name)
                    saga_compensation_total.labels(step_name=step.name).inc()
                except Exception as ce:
                    # A failing compensation MUST NOT block other compensations
                    log.critical("saga_compensation_failed", saga=self.name, step=step.name, error=str(ce))
