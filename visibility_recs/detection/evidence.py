"""
Structural evidence collectors for implementation detection.

Each collector diffs one family of ``ScanSignals`` between the previous and
the current scan and returns one human-readable string per distinct change.
Which families are consulted depends on the pillar a recommendation maps to
(``PILLAR_COLLECTORS``). A pillar without collectors yields no evidence, so
its detections rely on the score delta alone.
"""

from __future__ import annotations

from typing import Callable

from visibility_recs.models.scan import ScanSignals
from visibility_recs.taxonomy.pillars import Pillar

Collector = Callable[[ScanSignals, ScanSignals, float], list[str]]


def schema_evidence(before: ScanSignals, after: ScanSignals, _: float = 0.0) -> list[str]:
    evidence: list[str] = []
    added = sorted(set(after.schema_types) - set(before.schema_types))
    if added:
        evidence.append(f"Added {len(added)} new schema type(s): {', '.join(added)}")
    if after.has_organization_schema and not before.has_organization_schema:
        evidence.append("Added Organization schema markup")
    if after.has_faq_schema and not before.has_faq_schema:
        evidence.append("Added FAQ schema markup")
    if after.has_local_business_schema and not before.has_local_business_schema:
        evidence.append("Added LocalBusiness schema markup")
    return evidence


def faq_evidence(before: ScanSignals, after: ScanSignals, _: float = 0.0) -> list[str]:
    evidence: list[str] = []
    if after.faq_count > before.faq_count:
        evidence.append(f"Added {after.faq_count - before.faq_count} new FAQ(s)")
    if after.has_faqpage_markup and not before.has_faqpage_markup:
        evidence.append("Implemented FAQPage schema markup")
    return evidence


def content_evidence(before: ScanSignals, after: ScanSignals, _: float = 0.0) -> list[str]:
    evidence: list[str] = []
    if after.entity_count > before.entity_count:
        evidence.append(
            f"Added {after.entity_count - before.entity_count} new entity definition(s)"
        )
    if after.last_modified is not None and (
        before.last_modified is None or after.last_modified > before.last_modified
    ):
        evidence.append("Content updated/refreshed")
    return evidence


def technical_evidence(
    before: ScanSignals, after: ScanSignals, load_time_improvement_s: float = 0.5
) -> list[str]:
    evidence: list[str] = []
    if before.page_load_time is not None and after.page_load_time is not None:
        gain = before.page_load_time - after.page_load_time
        if gain > load_time_improvement_s:
            evidence.append(f"Page load time improved by {gain:.2f}s")
    if after.is_mobile_friendly and not before.is_mobile_friendly:
        evidence.append("Mobile optimization implemented")
    return evidence


PILLAR_COLLECTORS: dict[Pillar, tuple[Collector, ...]] = {
    Pillar.AI_SEARCH_READINESS: (schema_evidence,),
    Pillar.CONTENT_STRUCTURE:   (faq_evidence,),
    Pillar.VOICE_OPTIMIZATION:  (faq_evidence, technical_evidence),
    Pillar.TRUST_AUTHORITY:     (schema_evidence, content_evidence),
    Pillar.AI_READABILITY:      (content_evidence,),
    Pillar.CONTENT_FRESHNESS:   (content_evidence,),
    Pillar.TECHNICAL_SETUP:     (technical_evidence,),
    Pillar.SPEED_UX:            (technical_evidence,),
}


def collect_evidence(
    pillar: Pillar,
    before: ScanSignals,
    after: ScanSignals,
    load_time_improvement_s: float = 0.5,
) -> list[str]:
    """All distinct evidence strings for ``pillar``, in collector order."""
    seen: list[str] = []
    for collector in PILLAR_COLLECTORS.get(pillar, ()):
        for item in collector(before, after, load_time_improvement_s):
            if item not in seen:
                seen.append(item)
    return seen
