"""External classifier boundary.

The engine treats the classifier as a black box returning a typed
verdict. Every call goes through BoundedClassifier, which enforces the
configured timeout and turns timeouts, exceptions and malformed answers
into ClassifierError so the evaluator can fall back deterministically.
"""

from __future__ import annotations

import logging
from concurrent.futures import Executor, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from typing import Optional, Protocol

from warden.concurrency import call_with_timeout
from warden.errors import ClassifierError
from warden.models.classification import ClassificationResult
from warden.models.watch import ConditionType

logger = logging.getLogger(__name__)


class Classifier(Protocol):
    """Classifies content for one condition category.

    For SENTIMENT_TREND, ``ClassificationResult.score`` carries the
    message sentiment in [-1, 1].
    """

    def classify(self, content: str, condition_type: ConditionType) -> ClassificationResult:
        ...


class BoundedClassifier:
    """Wraps a Classifier with a timeout and output validation.

    Usage:
        bounded = BoundedClassifier(my_classifier, timeout=5.0)
        result = bounded.classify("text", ConditionType.TOXICITY)  # may raise ClassifierError
    """

    def __init__(
        self,
        classifier: Classifier,
        timeout: float,
        executor: Optional[Executor] = None,
        max_workers: int = 4,
    ) -> None:
        self._classifier = classifier
        self._timeout = timeout
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="classifier",
        )

    def classify(self, content: str, condition_type: ConditionType) -> ClassificationResult:
        try:
            result = call_with_timeout(
                self._executor, self._timeout,
                self._classifier.classify, content, condition_type,
            )
        except FuturesTimeout as exc:
            raise ClassifierError(
                f"classifier timed out after {self._timeout}s ({condition_type.value})"
            ) from exc
        except ClassifierError:
            raise
        except Exception as exc:
            raise ClassifierError(f"classifier failed ({condition_type.value}): {exc}") from exc

        if not isinstance(result, ClassificationResult):
            raise ClassifierError(f"malformed classifier response: {result!r}")
        if not (0.0 <= result.confidence <= 1.0):
            raise ClassifierError(f"classifier confidence out of range: {result.confidence}")
        if result.score is not None and not (-1.0 <= result.score <= 1.0):
            raise ClassifierError(f"classifier score out of range: {result.score}")
        return result

    def close(self) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=False)
