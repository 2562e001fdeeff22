"""FindingsService — loads and aggregates the findings of a completed scan."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field

import structlog

from versionwarden.engines.base import ScanEngine
from versionwarden.engines.models import Finding, FindingCategory, Severity

log = structlog.get_logger("versionwarden.findings")


@dataclass
class FindingsResult:
    findings: list[Finding] = field(default_factory=list)
    summary: dict[Severity, int] = field(default_factory=lambda: {s: 0 for s in Severity})

    @property
    def total(self) -> int:
        return len(self.findings)

    @property
    def has_blocking(self) -> bool:
        return any(f.is_blocking for f in self.findings)

    def by_artifact(self) -> dict[str, list[Finding]]:
        grouped: dict[str, list[Finding]] = defaultdict(list)
        for finding in self.findings:
            grouped[finding.artifact_name].append(finding)
        return dict(grouped)

    def filter(
        self,
        *,
        severity: Severity | None = None,
        category: FindingCategory | None = None,
        search: str | None = None,
    ) -> list[Finding]:
        """Return findings matching every given criterion.

        *search* is a case-insensitive substring match over the artifact
        name, summary and rule id.
        """
        needle = search.strip().lower() if search else ""
        matched = []
        for finding in self.findings:
            if severity is not None and finding.severity is not severity:
                continue
            if category is not None and finding.category is not category:
                continue
            if needle and not any(
                needle in text.lower()
                for text in (finding.artifact_name, finding.summary, finding.rule_id)
            ):
                continue
            matched.append(finding)
        return matched


class FindingsService:
    """Stateless read-side over a scan's findings."""

    def __init__(self, engine: ScanEngine) -> None:
        self._engine = engine

    async def load_results(self, scan_id: str) -> FindingsResult:
        """Fetch findings and the per-severity summary for *scan_id*.

        The summary always carries every severity, missing ones counted as 0.
        Engine failures propagate; callers keep whatever they loaded before.
        """
        findings = await self._engine.get_findings_by_scan(scan_id)
        raw_summary = await self._engine.get_findings_summary(scan_id)
        summary = {severity: int(raw_summary.get(severity, 0)) for severity in Severity}
        log.info("findings.loaded", scan_id=scan_id, total=len(findings))
        return FindingsResult(findings=list(findings), summary=summary)
