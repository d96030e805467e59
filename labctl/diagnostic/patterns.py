"""
Pattern Matcher
===============
Scores a catalog of named failure signatures against raw tool output and
returns the best diagnosis (or the full ranked set).

Scoring (per entry, raw text R and its lowercase form L):
    1. Match expression set → must match R (+10) or L (+8), else excluded
    2. Required substrings set → all present in L adds 2 per substring;
       any missing excludes the entry only when it has no match expression
    3. Confidence bonus → high +5, medium +3, low +1

Selection:
    - match()     → entry with the strictly highest score; on ties the
                    earliest registered entry wins (registration order is
                    part of the contract)
    - match_all() → every entry scoring > 0, stable-sorted by confidence

Contract:
    - DETERMINISTIC: same catalog + same input → same diagnosis.
    - The matcher is immutable once built and safe to share across threads.
    - Catalog assembly happens once, through PatternCatalogBuilder.
"""
import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Tuple, Union

from labctl.core.errors import InvalidPatternError
from labctl.models.step_result import Phase, StepResult


# ---------------------------------------------------------------------------
# Confidence
# ---------------------------------------------------------------------------
class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Ordinal position: high=3, medium=2, low=1."""
        if self is Confidence.HIGH:
            return 3
        if self is Confidence.MEDIUM:
            return 2
        return 1

    @property
    def score_bonus(self) -> int:
        return 2 * self.rank - 1


# ---------------------------------------------------------------------------
# Catalog entry & diagnosis
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class ErrorPattern:
    """One named failure signature. Immutable once registered."""
    name: str
    hint: str
    suggestion: str
    confidence: Confidence = Confidence.MEDIUM
    match_expression: Optional[re.Pattern] = None
    required_substrings: Tuple[str, ...] = ()
    service: Optional[str] = None
    phase: Optional[Phase] = None

    @classmethod
    def create(
        cls,
        name: str,
        *,
        hint: str,
        suggestion: str = "",
        confidence: Confidence = Confidence.MEDIUM,
        pattern: Union[str, re.Pattern, None] = None,
        contains: Iterable[str] = (),
        service: Optional[str] = None,
        phase: Optional[Phase] = None,
    ) -> "ErrorPattern":
        """Build an entry, compiling ``pattern`` when given as a string."""
        compiled = re.compile(pattern) if isinstance(pattern, str) else pattern
        return cls(
            name=name,
            hint=hint,
            suggestion=suggestion,
            confidence=Confidence(confidence),
            match_expression=compiled,
            required_substrings=tuple(contains),
            service=service,
            phase=Phase(phase) if phase is not None else None,
        )

    @property
    def is_discriminating(self) -> bool:
        return self.match_expression is not None or bool(self.required_substrings)

    def applies_to(self, service: Optional[str], phase: Optional[Phase]) -> bool:
        if self.service is not None and self.service != service:
            return False
        if self.phase is not None and self.phase != phase:
            return False
        return True


@dataclass(frozen=True)
class Diagnosis:
    """Hint / suggestion / confidence produced by one successful match."""
    pattern_name: str
    hint: str
    suggestion: str
    confidence: Confidence
    matched: bool = True

    @classmethod
    def from_pattern(cls, pattern: ErrorPattern) -> "Diagnosis":
        return cls(
            pattern_name=pattern.name,
            hint=pattern.hint,
            suggestion=pattern.suggestion,
            confidence=pattern.confidence,
        )

    def to_dict(self) -> dict:
        return {
            "pattern_name": self.pattern_name,
            "matched": self.matched,
            "hint": self.hint,
            "suggestion": self.suggestion,
            "confidence": self.confidence.value,
        }


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------
def score_pattern(pattern: ErrorPattern, raw: str, lowered: str) -> int:
    """
    Score one entry against tool output.

    Parameters
    ----------
    pattern : ErrorPattern
        Catalog entry to score.
    raw : str
        Output text as captured.
    lowered : str
        ``raw.lower()``, precomputed once per match call.

    Returns
    -------
    int
        0 when the entry is excluded, otherwise the positive score.
    """
    score = 0

    if pattern.match_expression is not None:
        if pattern.match_expression.search(raw):
            score += 10
        elif pattern.match_expression.search(lowered):
            score += 8
        else:
            return 0

    if pattern.required_substrings:
        if all(s.lower() in lowered for s in pattern.required_substrings):
            score += 2 * len(pattern.required_substrings)
        elif pattern.match_expression is None:
            return 0

    return score + pattern.confidence.score_bonus


# ---------------------------------------------------------------------------
# Matcher
# ---------------------------------------------------------------------------
class PatternMatcher:
    """Immutable, stateless matcher over an assembled catalog."""

    def __init__(self, patterns: Iterable[ErrorPattern] = ()) -> None:
        self._patterns: Tuple[ErrorPattern, ...] = tuple(patterns)

    @property
    def patterns(self) -> Tuple[ErrorPattern, ...]:
        return self._patterns

    def __len__(self) -> int:
        return len(self._patterns)

    def _scored(
        self, output: str, service: Optional[str], phase: Optional[Phase]
    ) -> List[Tuple[int, ErrorPattern]]:
        """(score, entry) pairs scoring above zero, in registration order."""
        if not output or not output.strip():
            return []
        lowered = output.lower()
        scored: List[Tuple[int, ErrorPattern]] = []
        for pattern in self._patterns:
            if not pattern.applies_to(service, phase):
                continue
            score = score_pattern(pattern, output, lowered)
            if score > 0:
                scored.append((score, pattern))
        return scored

    def match(
        self, output: str, service: Optional[str] = None, phase: Optional[Phase] = None
    ) -> Optional[Diagnosis]:
        """Best diagnosis for ``output``, or None when nothing scores."""
        best: Optional[ErrorPattern] = None
        best_score = 0
        for score, pattern in self._scored(output, service, phase):
            if score > best_score:
                best, best_score = pattern, score
        return Diagnosis.from_pattern(best) if best is not None else None

    def match_all(
        self, output: str, service: Optional[str] = None, phase: Optional[Phase] = None
    ) -> List[Diagnosis]:
        """All matching diagnoses, high confidence first, registration order within a tier."""
        diagnoses = [Diagnosis.from_pattern(p) for _, p in self._scored(output, service, phase)]
        return sorted(diagnoses, key=lambda d: d.confidence.rank, reverse=True)

    def match_result(self, result: StepResult) -> Optional[Diagnosis]:
        return self.match(result.combined_output, result.service, result.phase)

    def match_all_result(self, result: StepResult) -> List[Diagnosis]:
        return self.match_all(result.combined_output, result.service, result.phase)


# ---------------------------------------------------------------------------
# Catalog assembly
# ---------------------------------------------------------------------------
class PatternCatalogBuilder:
    """
    Collects catalog entries during setup and freezes them into a matcher.

    Rejected at registration:
        - empty or duplicate names
        - entries with neither a match expression nor required substrings
          (they would match every non-empty output)
    """

    def __init__(self) -> None:
        self._patterns: List[ErrorPattern] = []
        self._names: set[str] = set()

    def add_pattern(self, pattern: ErrorPattern) -> "PatternCatalogBuilder":
        if not pattern.name:
            raise InvalidPatternError("pattern name must not be empty")
        if pattern.name in self._names:
            raise InvalidPatternError(f"duplicate pattern name: {pattern.name}")
        if not pattern.is_discriminating:
            raise InvalidPatternError(
                f"pattern {pattern.name} needs a match expression or required substrings"
            )
        self._patterns.append(pattern)
        self._names.add(pattern.name)
        return self

    def add_patterns(self, patterns: Iterable[ErrorPattern]) -> "PatternCatalogBuilder":
        for pattern in patterns:
            self.add_pattern(pattern)
        return self

    def build(self) -> PatternMatcher:
        return PatternMatcher(self._patterns)
