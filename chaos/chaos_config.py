import logging
import random
import time
from collections import defaultdict
from typing import Optional

from .exceptions.chaos_exception import ChaosException

logger = logging.getLogger(__name__)


class ChaosConfig:
    """
    Configuration for injecting faults into transactional test bodies.

    Failures model a test body that throws partway through its mutations;
    delays model simulated I/O, which widens the window in which concurrent
    bodies interleave. Runtime metrics are collected for observability.

    Args:
        enabled (bool): Whether to inject anything. Defaults to False.
        failure_rate (float): Probability of a failure per operation. Defaults to 0.1.
        delay_chance (float): Probability of a delay per operation. Defaults to 0.2.
        max_delay (float): Maximum delay in seconds. Defaults to 0.05.
        seed (int): Optional seed for a reproducible fault sequence.
    """

    def __init__(
        self,
        enabled: bool = False,
        failure_rate: float = 0.1,
        delay_chance: float = 0.2,
        max_delay: float = 0.05,
        seed: Optional[int] = None,
    ):
        self.enabled = enabled
        self.failure_rate = failure_rate
        self.delay_chance = delay_chance
        self.max_delay = max_delay
        self.random = random.Random(seed)

        # Chaos metrics
        self.total_operations = 0
        self.failures_injected = 0
        self.delays_injected = 0
        self.total_delay_time = 0.0
        self.failures_by_context = defaultdict(int)
        self.delays_by_context = defaultdict(int)

    def maybe_fail(self, context: str) -> None:
        """Raise ChaosException with probability ``failure_rate``."""
        self.total_operations += 1
        if self.enabled and self.random.random() < self.failure_rate:
            self.failures_injected += 1
            self.failures_by_context[context] += 1
            logger.info("[CHAOS] Injected failure in %s", context)
            raise ChaosException(f"Chaos failure occurred during {context}.", context)

    def maybe_delay(self, context: str) -> None:
        """Sleep up to ``max_delay`` seconds with probability ``delay_chance``."""
        if self.enabled and self.random.random() < self.delay_chance:
            delay = self.random.uniform(0, self.max_delay)
            self.delays_injected += 1
            self.delays_by_context[context] += 1
            self.total_delay_time += delay
            logger.debug("[CHAOS] Injected delay of %.3f seconds in %s", delay, context)
            time.sleep(delay)

    def get_metrics(self):
        return {
            "Summary": {
                "total_operations": self.total_operations,
                "failures_injected": self.failures_injected,
                "delays_injected": self.delays_injected,
                "total_delay_time": round(self.total_delay_time, 2),
            },
            "Failures by Context": dict(self.failures_by_context),
            "Delays by Context": dict(self.delays_by_context),
        }

    def format_metrics(self) -> str:
        metrics = self.get_metrics()

        lines = ["=== Chaos Metrics Summary ==="]
        for key, value in metrics["Summary"].items():
            lines.append(f"{key.replace('_', ' ').capitalize()}: {value}")

        lines.append("--- Failures by Context ---")
        if metrics["Failures by Context"]:
            for context, count in metrics["Failures by Context"].items():
                lines.append(f"{context}: {count}")
        else:
            lines.append("No failures recorded.")

        lines.append("--- Delays by Context ---")
        if metrics["Delays by Context"]:
            for context, count in metrics["Delays by Context"].items():
                lines.append(f"{context}: {count}")
        else:
            lines.append("No delays recorded.")
        return "\n".join(lines)
