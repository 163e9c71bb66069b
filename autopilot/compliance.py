"""
Compliance engine for regulated-vertical marketing copy.

``check`` runs the ordered deterministic rule set over the plain text of a
draft, adds one language-model review pass over the first 3000 characters,
merges and dedupes the findings, and aggregates a pass/warn/block verdict.
The model pass is advisory: if it fails for any reason the deterministic
findings stand alone.

Usage:
    engine = ComplianceEngine(completion)
    result = await engine.check("<p>Results guaranteed!</p>", "dental")
    result.status   # "block"
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Pattern, Sequence

from autopilot.llm import CompletionService, extract_json
from autopilot.models import ComplianceDetail, ComplianceResult, ComplianceStatus
from autopilot.seo import strip_html

logger = logging.getLogger("autopilot.compliance")

LLM_REVIEW_CHARS = 3000
CONTEXT_WINDOW = 200

PRICE_QUALIFIERS = re.compile(
    r"starting at|starts at|as low as|\bfrom\b|disclaimer|may vary|estimate",
    re.IGNORECASE,
)


def _price_lacks_context(text: str, match: "re.Match[str]") -> bool:
    start = max(0, match.start() - CONTEXT_WINDOW)
    end = min(len(text), match.end() + CONTEXT_WINDOW)
    return PRICE_QUALIFIERS.search(text[start:end]) is None


@dataclass
class Rule:
    """One deterministic rule. The first matching pattern wins."""
    name: str
    severity: str
    patterns: Sequence[Pattern[str]]
    reason: str
    suggestion: Optional[str] = None
    disclaimer: Optional[str] = None
    context_check: Optional[Callable[[str, "re.Match[str]"], bool]] = field(
        default=None, repr=False
    )

    def evaluate(self, text: str) -> Optional[ComplianceDetail]:
        for pattern in self.patterns:
            for match in pattern.finditer(text):
                if self.context_check is not None and not self.context_check(text, match):
                    continue
                return ComplianceDetail(
                    rule=self.name,
                    severity=self.severity,
                    phrase=match.group(0),
                    reason=self.reason,
                    suggestion=self.suggestion,
                    disclaimer=self.disclaimer,
                )
        return None


def _p(*sources: str) -> List[Pattern[str]]:
    return [re.compile(s, re.IGNORECASE) for s in sources]


RULES: List[Rule] = [
    Rule(
        name="guaranteed_results",
        severity="block",
        patterns=_p(r"\bguaranteed\b", r"\b100%\s+success\b", r"\bpermanent\s+solution\b"),
        reason="Do not guarantee outcomes",
        suggestion='Replace with qualified language like "may help" or "designed to"',
    ),
    Rule(
        name="diagnosis",
        severity="block",
        patterns=_p(r"\byou have\b", r"\byou suffer from\b", r"\bthis means you need\b"),
        reason="Only a dentist can diagnose",
        suggestion='Use "may indicate" or "consult your dentist to determine"',
    ),
    Rule(
        name="cure_language",
        severity="block",
        patterns=_p(r"\bcure\b", r"\bheal completely\b", r"\beliminate forever\b"),
        reason="Avoid absolute medical claims",
        suggestion='Use "treat", "manage" or "improve"',
    ),
    Rule(
        name="price_without_context",
        severity="block",
        patterns=_p(r"\$\d+"),
        reason="Prices need context",
        suggestion='Add "starting at" or a note that prices may vary',
        context_check=_price_lacks_context,
    ),
    Rule(
        name="before_after",
        severity="warn",
        patterns=_p(r"\bbefore and after\b", r"\bresults shown\b"),
        reason="Before/after claims need a results disclaimer",
        disclaimer="Individual results may vary.",
    ),
    Rule(
        name="insurance_claim",
        severity="warn",
        patterns=_p(r"\bcovered by insurance\b", r"\binsurance pays\b"),
        reason="Insurance coverage varies by plan",
        disclaimer="Contact your insurance provider to verify coverage.",
    ),
]


def aggregate_status(details: Sequence[ComplianceDetail]) -> str:
    severities = {d.severity for d in details}
    if "block" in severities:
        return ComplianceStatus.BLOCK.value
    if "warn" in severities:
        return ComplianceStatus.WARN.value
    return ComplianceStatus.PASS.value


def dedupe_details(details: Sequence[ComplianceDetail]) -> List[ComplianceDetail]:
    """Drop repeats of (rule, lower-cased phrase), keeping the first."""
    seen = set()
    unique: List[ComplianceDetail] = []
    for detail in details:
        key = (detail.rule, detail.phrase.lower())
        if key in seen:
            continue
        seen.add(key)
        unique.append(detail)
    return unique


def run_rules(text: str, rules: Sequence[Rule] = RULES) -> List[ComplianceDetail]:
    """Deterministic pass over already-stripped plain text."""
    details = []
    for rule in rules:
        detail = rule.evaluate(text)
        if detail is not None:
            details.append(detail)
    return details


def check_plain(markup: str) -> ComplianceResult:
    """Rules-only verdict, without the model review pass."""
    text = strip_html(markup)
    if not text:
        return ComplianceResult(status=ComplianceStatus.PASS.value)
    details = dedupe_details(run_rules(text))
    return ComplianceResult(status=aggregate_status(details), details=details)


def _review_system_prompt(vertical: str) -> str:
    return (
        f"You are a {vertical} content compliance reviewer. Identify claims that "
        "guarantee outcomes, diagnose the reader, promise cures, quote prices without "
        "context, or otherwise risk regulatory or professional-board complaints.\n"
        "Respond with ONLY a JSON array. Each element: "
        '{"rule": "...", "severity": "block"|"warn", "phrase": "exact text", '
        '"reason": "...", "suggestion": "..."}. Respond with [] if nothing is wrong.'
    )


class ComplianceEngine:
    """Rule set plus one model review pass."""

    def __init__(
        self,
        completion: Optional[CompletionService] = None,
        rules: Sequence[Rule] = RULES,
    ) -> None:
        self.completion = completion
        self.rules = list(rules)

    async def _llm_review(self, text: str, vertical: str) -> List[ComplianceDetail]:
        if self.completion is None:
            return []
        try:
            reply = await self.completion.complete(
                f"Review this content:\n\n{text[:LLM_REVIEW_CHARS]}",
                system=_review_system_prompt(vertical),
                model=self.completion.review_model,
                max_tokens=1024,
            )
            issues = extract_json(reply)
            if not isinstance(issues, list):
                return []
            details = []
            for issue in issues:
                if not isinstance(issue, dict):
                    continue
                details.append(
                    ComplianceDetail(
                        rule=str(issue.get("rule") or "llm_check"),
                        severity="block" if issue.get("severity") == "block" else "warn",
                        phrase=str(issue.get("phrase") or ""),
                        reason=str(issue.get("reason") or "Flagged by AI review"),
                        suggestion=issue.get("suggestion"),
                    )
                )
            return details
        except Exception as exc:
            logger.warning("Model compliance review skipped: %s", exc)
            return []

    async def check(self, rendered_html: str, vertical: str = "dental") -> ComplianceResult:
        text = strip_html(rendered_html)
        if not text:
            return ComplianceResult(status=ComplianceStatus.PASS.value)

        details = run_rules(text, self.rules)
        details.extend(await self._llm_review(text, vertical))
        details = dedupe_details(details)
        status = aggregate_status(details)
        logger.info("Compliance verdict %s (%d findings)", status, len(details))
        return ComplianceResult(status=status, details=details)
