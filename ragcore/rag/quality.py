"""Pass/fail gate on the quality score of enhanced prompts."""

import logging
import threading
from datetime import datetime, timezone
from typing import Optional

from ..exceptions import InvalidConfigError
from .rag_service import EnhancedPrompt

logger = logging.getLogger(__name__)


class RAGQualityVerifier:
    """
    Decide whether retrieved evidence is good enough to use.

    Usage:
        verifier = RAGQualityVerifier(min_quality_score=0.5)
        if not verifier.verify(enhanced):
            prompt = enhanced.original_query
    """

    def __init__(self, min_quality_score: float = 0.5):
        if not 0.0 <= min_quality_score <= 1.0:
            raise InvalidConfigError(
                f"min_quality_score must be in [0, 1], got {min_quality_score}"
            )
        self.min_quality_score = min_quality_score
        self._lock = threading.Lock()
        self._passed = 0
        self._failed = 0
        self._last_verified: Optional[datetime] = None

    def verify(self, enhanced: EnhancedPrompt) -> bool:
        passed = enhanced.quality_score >= self.min_quality_score
        with self._lock:
            if passed:
                self._passed += 1
            else:
                self._failed += 1
            self._last_verified = datetime.now(timezone.utc)

        if not passed:
            logger.debug(
                f"Quality {enhanced.quality_score:.2f} below {self.min_quality_score:.2f} "
                f"for query: {enhanced.original_query[:50]}"
            )
        return passed

    def get_stats(self) -> dict:
        with self._lock:
            total = self._passed + self._failed
            return {
                "passed_count": self._passed,
                "failed_count": self._failed,
                "pass_rate": self._passed / total if total else 0.0,
                "min_quality_score": self.min_quality_score,
                "last_verified": self._last_verified.isoformat() if self._last_verified else None,
            }
