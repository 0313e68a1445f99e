"""
Prompt Injection Detection
==========================

Pattern and heuristic scoring of raw user questions before anything is
sent to the text-generation oracle.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Pattern

from query_guard.models import ConfidenceLevel


class InjectionType(str, Enum):
    """Classes of prompt-injection technique."""

    INSTRUCTION_OVERRIDE = "instruction_override"
    PROMPT_REVELATION = "prompt_revelation"
    ROLE_MANIPULATION = "role_manipulation"
    CODE_EXECUTION = "code_execution"
    SCHEMA_DISCOVERY = "schema_discovery"
    CONTEXT_ESCAPE = "context_escape"
    HYPOTHETICAL_BYPASS = "hypothetical_bypass"
    PERMISSION_ESCALATION = "permission_escalation"
    RESTRICTION_BYPASS = "restriction_bypass"


@dataclass
class InjectionMatch:
    """A single matched injection pattern."""

    injection_type: InjectionType
    severity: ConfidenceLevel
    risk_score: int
    matched_text: str


@dataclass
class InjectionCheckResult:
    """Combined verdict over pattern matches and surface characteristics."""

    is_injection: bool
    confidence: ConfidenceLevel
    matched_patterns: list[InjectionMatch] = field(default_factory=list)
    should_block: bool = False
    risk_score: int = 0
    characteristic_score: int = 0
    characteristics: list[str] = field(default_factory=list)

    @property
    def matched_types(self) -> list[str]:
        return list(dict.fromkeys(m.injection_type.value for m in self.matched_patterns))


_I = re.IGNORECASE

# "tables" or "columns" ending the request, or tied to a database word
_DB_OBJECTS = (
    r"(tables|columns)\s*([.?!]|$|\s+(in|of|from)\s+(the\s+)?(database|schema|db)\b)"
    r"|(database|db)\s+(tables|columns)\b"
)

# (pattern, type, severity, risk score)
INJECTION_PATTERNS: list[tuple[Pattern, InjectionType, ConfidenceLevel, int]] = [
    # Instruction override
    (re.compile(r"ignore\s+(all\s+)?(previous|prior|above|your)\s+(instructions|rules|directives|prompts)", _I),
     InjectionType.INSTRUCTION_OVERRIDE, ConfidenceLevel.CRITICAL, 95),
    (re.compile(r"forget\s+(all\s+)?(previous|prior|your|everything)\s*(instructions|rules|you were told)?", _I),
     InjectionType.INSTRUCTION_OVERRIDE, ConfidenceLevel.CRITICAL, 95),
    (re.compile(r"disregard\s+(all\s+)?(previous|prior|above|your)\s+(instructions|rules|directives)", _I),
     InjectionType.INSTRUCTION_OVERRIDE, ConfidenceLevel.CRITICAL, 95),
    (re.compile(r"ignora\s+(todas\s+)?(las\s+)?instrucciones", _I),
     InjectionType.INSTRUCTION_OVERRIDE, ConfidenceLevel.CRITICAL, 95),
    # Prompt revelation
    (re.compile(r"(show|reveal|print|display|tell\s+me|repeat|what\s+(is|are))\s+(me\s+)?(your|the)\s+"
                r"(system\s+)?(prompt|instructions|rules)", _I),
     InjectionType.PROMPT_REVELATION, ConfidenceLevel.CRITICAL, 90),
    # Role manipulation
    (re.compile(r"(you\s+are\s+now|now\s+you\s+are|from\s+now\s+on\s+you\s+are)\s+(a|an|the)?\s*\w+", _I),
     InjectionType.ROLE_MANIPULATION, ConfidenceLevel.HIGH, 85),
    (re.compile(r"\bact\s+as\s+(a|an)\s+(?!assistant|chatbot|helpful)\w+", _I),
     InjectionType.ROLE_MANIPULATION, ConfidenceLevel.HIGH, 80),
    (re.compile(r"\bpretend\s+(you\s+are|to\s+be)\b", _I),
     InjectionType.ROLE_MANIPULATION, ConfidenceLevel.HIGH, 80),
    # Code execution
    (re.compile(r"\bexecute\s+(this\s+)?(code|command|script|sql|query)\b", _I),
     InjectionType.CODE_EXECUTION, ConfidenceLevel.HIGH, 85),
    (re.compile(r"\brun\s+(this\s+)?(code|command|script|sql)\b", _I),
     InjectionType.CODE_EXECUTION, ConfidenceLevel.HIGH, 85),
    (re.compile(r"\b(eval|exec)\s*\(", _I),
     InjectionType.CODE_EXECUTION, ConfidenceLevel.HIGH, 90),
    # Schema discovery
    (re.compile(r"\bshow\s+(me\s+)?(all\s+)?(the\s+)?(" + _DB_OBJECTS + r"|database\s+schema|schemas?\b)", _I),
     InjectionType.SCHEMA_DISCOVERY, ConfidenceLevel.HIGH, 75),
    (re.compile(r"\blist\s+(all\s+)?(the\s+)?(" + _DB_OBJECTS + r"|databases\b)", _I),
     InjectionType.SCHEMA_DISCOVERY, ConfidenceLevel.HIGH, 75),
    (re.compile(r"information_schema|pg_catalog|\bsys\.\w+", _I),
     InjectionType.SCHEMA_DISCOVERY, ConfidenceLevel.HIGH, 80),
    # Context escape
    (re.compile(r"(end\s+of\s+(prompt|instructions|context)|</?(system|assistant|user)>|\[/?INST\])", _I),
     InjectionType.CONTEXT_ESCAPE, ConfidenceLevel.MEDIUM, 70),
    (re.compile(r"(new|updated)\s+(instructions|rules|task)\s*:", _I),
     InjectionType.CONTEXT_ESCAPE, ConfidenceLevel.MEDIUM, 65),
    # Hypothetical bypass
    (re.compile(r"(hypothetically|in\s+a\s+hypothetical|imagine\s+(that\s+)?you\s+(could|had|were))", _I),
     InjectionType.HYPOTHETICAL_BYPASS, ConfidenceLevel.MEDIUM, 60),
    # Permission escalation
    (re.compile(r"(i\s+am\s+(an?\s+)?(admin|administrator|superadmin|developer)|grant\s+me|"
                r"give\s+me\s+(admin|root|full)\s+(access|permissions?))", _I),
     InjectionType.PERMISSION_ESCALATION, ConfidenceLevel.MEDIUM, 70),
    # Restriction bypass
    (re.compile(r"(without\s+(any\s+)?(restrictions|limits|filters)|bypass\s+(the\s+)?"
                r"(filter|restriction|security)|other\s+(venues?|tenants?|restaurants?))", _I),
     InjectionType.RESTRICTION_BYPASS, ConfidenceLevel.LOW, 50),
]

SPECIAL_CHARACTERS = re.compile(r"[<>\[\]{}|\\]")
BASE64_LIKE = re.compile(r"[A-Za-z0-9+/]{40,}={0,2}")
URL_ENCODED = re.compile(r"%[0-9A-Fa-f]{2}")
TAG_LIKE = re.compile(r"</?[a-z][a-z0-9]*\s*/?>", re.IGNORECASE)
LATIN = re.compile(r"[A-Za-z]")
CYRILLIC = re.compile("[\u0400-\u04FF]")
GREEK = re.compile("[\u0370-\u03FF]")


class PromptInjectionDetector:
    """
    Scores raw questions for prompt-injection techniques.

    The detector is stateless; one instance can be shared across requests.
    """

    def __init__(
        self,
        patterns: list[tuple[Pattern, InjectionType, ConfidenceLevel, int]] | None = None,
        characteristic_block_threshold: int = 60,
        combined_block_threshold: int = 100,
    ) -> None:
        self.patterns = patterns if patterns is not None else INJECTION_PATTERNS
        self.characteristic_block_threshold = characteristic_block_threshold
        self.combined_block_threshold = combined_block_threshold

    def detect(self, text: str) -> list[InjectionMatch]:
        """Return every pattern match in the text."""
        matches = []
        for pattern, injection_type, severity, risk in self.patterns:
            found = pattern.search(text)
            if found:
                matches.append(
                    InjectionMatch(
                        injection_type=injection_type,
                        severity=severity,
                        risk_score=risk,
                        matched_text=found.group(0),
                    )
                )
        return matches

    def score_characteristics(self, text: str) -> tuple[int, list[str]]:
        """
        Score suspicious surface characteristics of the text.

        Returns:
            Tuple of (score capped at 100, list of characteristic names)
        """
        score = 0
        found = []
        if len(SPECIAL_CHARACTERS.findall(text)) > 5:
            score += 10
            found.append("special_characters")
        if len(text) > 500:
            score += 15
            found.append("excessive_length")
        if BASE64_LIKE.search(text):
            score += 20
            found.append("base64_payload")
        if len(URL_ENCODED.findall(text)) > 3:
            score += 15
            found.append("url_encoding")
        scripts = sum(1 for script in (LATIN, CYRILLIC, GREEK) if script.search(text))
        if scripts > 1:
            score += 25
            found.append("mixed_scripts")
        if TAG_LIKE.search(text):
            score += 20
            found.append("markup_tags")
        return min(score, 100), found

    @staticmethod
    def _confidence(risk_score: int) -> ConfidenceLevel:
        if risk_score >= 90:
            return ConfidenceLevel.CRITICAL
        if risk_score >= 70:
            return ConfidenceLevel.HIGH
        if risk_score >= 50:
            return ConfidenceLevel.MEDIUM
        return ConfidenceLevel.LOW

    def check(self, text: str) -> InjectionCheckResult:
        """
        Full check combining pattern confidence with characteristic score.

        Blocks when the pattern confidence is HIGH or CRITICAL, when the
        characteristic score alone reaches its threshold, or when both
        scores together reach the combined threshold.
        """
        matches = self.detect(text)
        risk_score = min(100, sum(m.risk_score for m in matches))
        confidence = self._confidence(risk_score)
        characteristic_score, characteristics = self.score_characteristics(text)

        pattern_block = bool(matches) and confidence in (ConfidenceLevel.HIGH, ConfidenceLevel.CRITICAL)
        should_block = (
            pattern_block
            or characteristic_score >= self.characteristic_block_threshold
            or risk_score + characteristic_score >= self.combined_block_threshold
        )

        return InjectionCheckResult(
            is_injection=bool(matches) or should_block,
            confidence=confidence,
            matched_patterns=matches,
            should_block=should_block,
            risk_score=risk_score,
            characteristic_score=characteristic_score,
            characteristics=characteristics,
        )

    def sanitize(self, text: str) -> str:
        """Replace HIGH and CRITICAL matches with a placeholder."""
        result = text
        for pattern, _, severity, _ in self.patterns:
            if severity in (ConfidenceLevel.HIGH, ConfidenceLevel.CRITICAL):
                result = pattern.sub("[REMOVED]", result)
        return result
