# Portfolio Guard - AI Access-Control & Context-Assembly Engine
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
Abuse Detection

Scores visitor content and requests:

1. Pattern analysis: spam, inappropriate and suspicious-formatting regexes
2. Optional language-model classifier (any async prompt -> text callable)
3. Behaviour analysis: user agent and content shape
4. Request-shape heuristic for the admission path

Individual analyses are combined into one verdict: weighted confidence,
union of reasons, highest severity and most restrictive action.
"""

import logging
import re
from collections import Counter
from collections.abc import Awaitable, Callable

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..core.settings import SecuritySettings
from .blacklist import BlacklistManager
from .models import (
    AnalysisContext,
    ContentAnalysis,
    ContentViolationResult,
    RequestShapeAnalysis,
    Severity,
    SuggestedAction,
)

logger = logging.getLogger(__name__)

# Async callable taking a prompt and returning the model's text reply
Classifier = Callable[[str], Awaitable[str | None]]

SPAM_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\b(buy now|click here|limited time|act now|free money|make money fast)\b",
        r"\b(viagra|cialis|pharmacy|pills|medication)\b",
        r"\b(casino|gambling|poker|lottery|jackpot)\b",
        r"\b(crypto|bitcoin|investment|trading|profit)\b",
        r"\b(loan|credit|debt|mortgage|refinance)\b",
        r"\b(weight loss|diet pills|lose weight fast)\b",
        r"\b(work from home|make money online|easy money)\b",
    )
]

INAPPROPRIATE_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\b(hack|exploit|vulnerability|bypass|crack)\b",
        r"\b(illegal|piracy|torrent|download free)\b",
        r"\b(spam|bot|automated|scraping)\b",
        r"\b(phishing|scam|fraud|fake)\b",
    )
]

# Case-sensitive
SUSPICIOUS_PATTERNS = [
    re.compile(r"(.)\1{10,}"),  # repeated characters
    re.compile(r"[A-Z]{20,}"),  # shouting
    re.compile(r"\d{15,}"),  # long digit runs
    re.compile(r"[!@#$%^&*]{5,}"),  # symbol runs
]

SUSPICIOUS_AGENTS = [
    re.compile(r"bot|crawler|spider|scraper", re.IGNORECASE),
    re.compile(r"curl|wget|python|java", re.IGNORECASE),
    re.compile(r"automated|script|tool", re.IGNORECASE),
]

BOT_AGENT = SUSPICIOUS_AGENTS[0]

CLASSIFIER_PROMPT = """Analyze the following content for spam, inappropriate material, or abusive behavior.
Respond with a JSON object containing:
- isAbusive: boolean
- confidence: number (0-1)
- reasons: array of strings
- severity: "low" | "medium" | "high"

Content to analyze:
"{content}\""""

CLASSIFIER_MAX_CHARS = 1000


class ClassifierVerdict(BaseModel):
    """JSON reply expected from the classifier."""

    model_config = ConfigDict(populate_by_name=True)

    is_abusive: bool = Field(default=False, alias="isAbusive")
    confidence: float = 0.0
    reasons: list[str] = Field(default_factory=list)
    severity: Severity = Severity.LOW


def _allow() -> ContentAnalysis:
    return ContentAnalysis(is_abusive=False)


class AbuseDetector:
    """
    Content and request analysis, plus violation recording.

    Usage:
        detector = AbuseDetector(blacklist, settings.security)
        analysis = await detector.analyze_content(message, AnalysisContext(ip_address=ip))
        if analysis.is_abusive:
            await detector.record_content_violation(ip, analysis, context)
    """

    def __init__(
        self,
        blacklist: BlacklistManager,
        settings: SecuritySettings | None = None,
        classifier: Classifier | None = None,
    ):
        self._blacklist = blacklist
        self._settings = settings or SecuritySettings()
        self._classifier = classifier

    # ----------------------------------------------------------
    # Content
    # ----------------------------------------------------------

    async def analyze_content(
        self, content: str | None, context: AnalysisContext | None = None
    ) -> ContentAnalysis:
        context = context or AnalysisContext()

        if not content or not content.strip():
            return _allow()

        if len(content) > self._settings.max_content_length:
            return ContentAnalysis(
                is_abusive=True,
                severity=Severity.MEDIUM,
                confidence=0.8,
                reasons=["Content exceeds maximum length"],
                suggested_action=SuggestedAction.WARN,
            )

        results: list[ContentAnalysis] = []
        if self._settings.enable_pattern_matching:
            results.append(self.analyze_patterns(content))

        if self._classifier is not None:
            verdict = await self._classify(content)
            if verdict is not None:
                results.append(verdict)

        results.append(self.analyze_behavior(content, context))
        return self.combine(results)

    def analyze_patterns(self, content: str) -> ContentAnalysis:
        reasons: list[str] = []

        spam = 0
        for pattern in SPAM_PATTERNS:
            matches = [m.group(0) for m in pattern.finditer(content)]
            if matches:
                spam += len(matches)
                reasons.append(f"Spam pattern detected: {matches[0]}")

        inappropriate = 0
        for pattern in INAPPROPRIATE_PATTERNS:
            matches = [m.group(0) for m in pattern.finditer(content)]
            if matches:
                inappropriate += len(matches)
                reasons.append(f"Inappropriate content: {matches[0]}")

        suspicious = 0
        for pattern in SUSPICIOUS_PATTERNS:
            count = sum(1 for _ in pattern.finditer(content))
            if count:
                suspicious += count
                reasons.append("Suspicious formatting detected")

        score = spam * 0.3 + inappropriate * 0.5 + suspicious * 0.2

        severity = Severity.LOW
        action = SuggestedAction.ALLOW
        if (
            spam >= self._settings.spam_threshold
            or inappropriate >= self._settings.inappropriate_threshold
        ):
            severity, action = Severity.HIGH, SuggestedAction.BLOCK
        elif spam >= 2 or inappropriate >= 1 or suspicious >= 3:
            severity, action = Severity.MEDIUM, SuggestedAction.WARN

        return ContentAnalysis(
            is_abusive=action != SuggestedAction.ALLOW,
            severity=severity,
            confidence=min(score / 10, 1),
            reasons=reasons,
            suggested_action=action,
        )

    def analyze_behavior(self, content: str, context: AnalysisContext) -> ContentAnalysis:
        reasons: list[str] = []
        score = 0.0

        if context.user_agent and any(p.search(context.user_agent) for p in SUSPICIOUS_AGENTS):
            reasons.append("Suspicious user agent detected")
            score += 0.3

        words = content.split()
        word_count = max(len(words), 1)
        avg_word_length = len("".join(words)) / word_count

        if len(words) < 3 and len(content) > 50:
            reasons.append("Unusual content structure")
            score += 0.2

        if avg_word_length > 15:
            reasons.append("Unusually long words")
            score += 0.1

        if words:
            _, most_common = Counter(w.lower() for w in words).most_common(1)[0]
            if most_common > len(words) * 0.3:
                reasons.append("Excessive word repetition")
                score += 0.3

        if score > 0.6:
            severity, action = Severity.HIGH, SuggestedAction.BLOCK
        elif score > 0.3:
            severity, action = Severity.MEDIUM, SuggestedAction.WARN
        else:
            severity, action = Severity.LOW, SuggestedAction.ALLOW

        return ContentAnalysis(
            is_abusive=score > 0.3,
            severity=severity,
            confidence=score,
            reasons=reasons,
            suggested_action=action,
        )

    async def _classify(self, content: str) -> ContentAnalysis | None:
        """Ask the classifier for a verdict. Any failure just drops this signal."""
        prompt = CLASSIFIER_PROMPT.format(content=content[:CLASSIFIER_MAX_CHARS])
        try:
            reply = await self._classifier(prompt)
        except Exception as e:
            logger.warning(f"Content classifier failed, using pattern analysis only: {e}")
            return None
        if not reply:
            return None

        try:
            verdict = ClassifierVerdict.model_validate_json(reply)
        except ValidationError as e:
            logger.warning(f"Unparseable classifier reply: {e.error_count()} errors")
            return None

        if not verdict.is_abusive:
            action = SuggestedAction.ALLOW
        elif verdict.severity == Severity.HIGH:
            action = SuggestedAction.BLOCK
        else:
            action = SuggestedAction.WARN

        return ContentAnalysis(
            is_abusive=verdict.is_abusive,
            severity=verdict.severity,
            confidence=verdict.confidence,
            reasons=verdict.reasons,
            suggested_action=action,
        )

    @staticmethod
    def combine(results: list[ContentAnalysis]) -> ContentAnalysis:
        """Merge analyses; positive detections weigh 1.5x in the confidence average."""
        if not results:
            return _allow()
        if len(results) == 1:
            return results[0]

        total_confidence = 0.0
        total_weight = 0.0
        reasons: list[str] = []
        severity = Severity.LOW
        action = SuggestedAction.ALLOW

        for result in results:
            weight = 1.5 if result.is_abusive else 1.0
            total_confidence += result.confidence * weight
            total_weight += weight
            reasons.extend(r for r in result.reasons if r not in reasons)
            if result.severity.rank > severity.rank:
                severity = result.severity
            if result.suggested_action.rank > action.rank:
                action = result.suggested_action

        return ContentAnalysis(
            is_abusive=action != SuggestedAction.ALLOW,
            severity=severity,
            confidence=total_confidence / total_weight if total_weight else 0.0,
            reasons=reasons,
            suggested_action=action,
        )

    async def record_content_violation(
        self,
        ip_address: str,
        analysis: ContentAnalysis,
        context: AnalysisContext | None = None,
        content: str | None = None,
    ) -> ContentViolationResult:
        """
        Record an abusive message against its IP.

        Notification is due when the IP got blacklisted, on its first
        violation, or for high-severity content.
        """
        context = context or AnalysisContext()
        reason = f"Content violation: {', '.join(analysis.reasons)}"
        metadata = {
            "severity": str(analysis.severity),
            "confidence": analysis.confidence,
            "endpoint": context.endpoint,
            "user_agent": context.user_agent,
            "content_length": len(content or ""),
        }

        result = await self._blacklist.record_violation(ip_address, reason, metadata)
        should_notify = (
            result.blacklisted or result.violation_count == 1 or analysis.severity == Severity.HIGH
        )
        return ContentViolationResult(
            blacklisted=result.blacklisted,
            violation_count=result.violation_count,
            should_notify=should_notify,
            entry=result.entry,
        )

    # ----------------------------------------------------------
    # Request shape
    # ----------------------------------------------------------

    def analyze_request(
        self,
        user_agent: str | None,
        query: str | None,
        accept: str | None,
    ) -> RequestShapeAnalysis:
        """Count suspicious request signals, one point each."""
        reasons = []
        if user_agent and BOT_AGENT.search(user_agent):
            reasons.append("Bot user agent")
        if query and len(query) > self._settings.max_query_length:
            reasons.append("Oversized query string")
        if not accept:
            reasons.append("Missing Accept header")
        return RequestShapeAnalysis(
            score=len(reasons),
            threshold=self._settings.request_shape_block_threshold,
            reasons=reasons,
        )


__all__ = [
    "AbuseDetector",
    "Classifier",
    "ClassifierVerdict",
    "SPAM_PATTERNS",
    "INAPPROPRIATE_PATTERNS",
    "SUSPICIOUS_PATTERNS",
]
