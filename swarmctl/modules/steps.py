"""Ordered, idempotent provisioning steps.

A step is skipped when its ``check`` already holds. Otherwise ``apply``
runs and ``check`` is evaluated again to decide whether the step passed.
A failed fatal step aborts the run; a failed best-effort step is logged and
the run continues.
"""
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Sequence

from .shell import CommandError

logger = logging.getLogger("swarmctl.steps")


class StepStatus(str, Enum):
    SKIPPED = 'skipped'
    APPLIED = 'applied'
    FAILED = 'failed'


class StepFailed(RuntimeError):
    """Raised by a step's apply action to report a failure.

    Args:
        message: What went wrong, phrased for the operator
        exit_code: Exit status to propagate if the step is fatal
        logs: Diagnostic lines (e.g. journal output) to show the operator
    """

    def __init__(self, message: str, exit_code: int = 1, logs: Optional[List[str]] = None):
        super().__init__(message)
        self.exit_code = exit_code
        self.logs = logs or []


class ProvisioningAborted(RuntimeError):
    """Raised when a fatal step fails."""

    def __init__(self, index: int, total: int, step: str, message: str, exit_code: int = 1):
        self.index = index
        self.total = total
        self.step = step
        self.exit_code = exit_code or 1
        super().__init__(f"Error at step {index}/{total} ({step}): {message} (exit code: {self.exit_code})")


@dataclass
class ProvisioningStep:
    """A named unit of provisioning work."""
    name: str
    apply: Callable[[], None]
    check: Optional[Callable[[], bool]] = None
    fatal: bool = True
    description: str = ""


@dataclass
class StepOutcome:
    name: str
    status: StepStatus
    message: str = ""
    duration: float = 0.0


@dataclass
class RunReport:
    """Outcome of every step in a run."""
    outcomes: List[StepOutcome] = field(default_factory=list)

    def add(self, outcome: StepOutcome) -> None:
        self.outcomes.append(outcome)

    def count(self, status: StepStatus) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    @property
    def failed(self) -> List[StepOutcome]:
        return [o for o in self.outcomes if o.status == StepStatus.FAILED]

    def summary(self) -> str:
        return (f"APPLIED={self.count(StepStatus.APPLIED)} "
                f"SKIPPED={self.count(StepStatus.SKIPPED)} "
                f"FAILED={self.count(StepStatus.FAILED)}")


class StepRunner:
    """Run provisioning steps strictly in order."""

    def __init__(self, steps: Sequence[ProvisioningStep]):
        self.steps = list(steps)

    def _apply(self, step: ProvisioningStep) -> None:
        try:
            step.apply()
        except StepFailed:
            raise
        except CommandError as e:
            raise StepFailed(str(e), exit_code=e.returncode) from e
        except OSError as e:
            raise StepFailed(f"{type(e).__name__}: {e}") from e

        if step.check is not None and not step.check():
            raise StepFailed("state is still not as expected after applying")

    def run(self) -> RunReport:
        """Run every step.

        Returns:
            RunReport for all steps

        Raises:
            ProvisioningAborted: If a fatal step fails
        """
        report = RunReport()
        total = len(self.steps)

        for index, step in enumerate(self.steps, start=1):
            label = f"[{index}/{total}] {step.name}"
            started = time.monotonic()

            if step.check is not None and step.check():
                logger.info(f"⏭️  {label}: already configured, skipping")
                report.add(StepOutcome(step.name, StepStatus.SKIPPED, "already satisfied"))
                continue

            logger.info(f"🔧 {label}: {step.description or 'applying'}...")
            try:
                self._apply(step)
            except StepFailed as e:
                duration = time.monotonic() - started
                report.add(StepOutcome(step.name, StepStatus.FAILED, str(e), duration))
                for line in e.logs:
                    logger.error(f"    {line}")
                if step.fatal:
                    logger.error(f"❌ {label} failed: {e}")
                    raise ProvisioningAborted(index, total, step.name, str(e), e.exit_code) from e
                logger.warning(f"⚠️  {label} failed, continuing: {e}")
                continue

            duration = time.monotonic() - started
            report.add(StepOutcome(step.name, StepStatus.APPLIED, "applied", duration))
            logger.info(f"✅ {label}: done ({duration:.1f}s)")

        logger.info(f"📊 Provisioning summary: {report.summary()}")
        return report
