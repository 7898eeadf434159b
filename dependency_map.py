# dependency_map.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Mapping

logger = logging.getLogger(__name__)

BEHAVIORAL_ANALYTICS = "BehavioralAnalytics"
SEARCH_CONSOLE_LINK = "SearchConsoleLink"
TOP_PAGES_IMPORT = "TopPagesImport"
CONTENT_SCRAPE = "ContentScrape"

DEPENDENCY_KINDS = frozenset({
    BEHAVIORAL_ANALYTICS,
    SEARCH_CONSOLE_LINK,
    TOP_PAGES_IMPORT,
    CONTENT_SCRAPE,
})

# Short labels used in operator-facing messages
DEPENDENCY_LABELS = {
    BEHAVIORAL_ANALYTICS: "RUM",
    SEARCH_CONSOLE_LINK: "GSC",
    TOP_PAGES_IMPORT: "Top pages import",
    CONTENT_SCRAPE: "Scraping",
}

OPPORTUNITY_TITLES = {
    "cwv": "Core Web Vitals",
    "meta-tags": "SEO Meta Tags",
    "broken-backlinks": "Broken Backlinks",
    "broken-internal-links": "Broken Internal Links",
    "alt-text": "Alt Text",
    "sitemap": "Sitemap",
}


def _freeze(mapping: Mapping[str, Iterable[str]]) -> Mapping[str, frozenset[str]]:
    return MappingProxyType({key: frozenset(values) for key, values in mapping.items()})


@dataclass(frozen=True)
class DependencyGraph:
    """
    Immutable audit -> opportunity -> dependency tables.

    Pass an alternate graph wherever DEFAULT_GRAPH is used to diagnose against
    a different audit vocabulary.
    """
    audit_to_opportunities: Mapping[str, frozenset[str]] = field(default_factory=dict)
    opportunity_to_dependencies: Mapping[str, frozenset[str]] = field(default_factory=dict)

    @classmethod
    def from_mappings(
        cls,
        audit_to_opportunities: Mapping[str, Iterable[str]],
        opportunity_to_dependencies: Mapping[str, Iterable[str]],
    ) -> "DependencyGraph":
        return cls(_freeze(audit_to_opportunities), _freeze(opportunity_to_dependencies))

    def all_audit_types(self) -> set[str]:
        return set(self.audit_to_opportunities)

    def all_opportunity_types(self) -> set[str]:
        out: set[str] = set()
        for opportunities in self.audit_to_opportunities.values():
            out.update(opportunities)
        return out

    def uncovered_opportunities(self) -> set[str]:
        """Opportunity types produced by some audit but missing a dependency entry."""
        return {o for o in self.all_opportunity_types() if o not in self.opportunity_to_dependencies}


DEFAULT_GRAPH = DependencyGraph.from_mappings(
    {
        "cwv": ["cwv"],
        "forms-opportunities": ["form-accessibility", "forms-opportunities"],
        "meta-tags": ["meta-tags"],
        "experimentation-opportunities": ["high-organic-low-ctr"],
        "broken-backlinks": ["broken-backlinks"],
        "broken-internal-links": ["broken-internal-links"],
        "sitemap": ["sitemap"],
        "alt-text": ["alt-text"],
        "accessibility": ["accessibility"],
    },
    {
        "cwv": [BEHAVIORAL_ANALYTICS],
        "high-organic-low-ctr": [BEHAVIORAL_ANALYTICS],
        "broken-internal-links": [BEHAVIORAL_ANALYTICS, TOP_PAGES_IMPORT],
        "meta-tags": [TOP_PAGES_IMPORT],
        "broken-backlinks": [TOP_PAGES_IMPORT],
        "forms-opportunities": [],
        "form-accessibility": [],
        "alt-text": [],
        "accessibility": [],
        "sitemap": [],
    },
)


@dataclass(frozen=True)
class ExpectedOpportunities:
    opportunity_types: frozenset[str]
    unknown_audit_types: frozenset[str]

    @property
    def has_unknown_audit_types(self) -> bool:
        return bool(self.unknown_audit_types)


def expected_opportunities(
    audit_types: Iterable[str],
    graph: DependencyGraph = DEFAULT_GRAPH,
) -> ExpectedOpportunities:
    expected: set[str] = set()
    unknown: set[str] = set()
    for audit_type in audit_types or []:
        if not audit_type:
            continue
        opportunities = graph.audit_to_opportunities.get(audit_type)
        if opportunities is None:
            unknown.add(audit_type)
            continue
        expected.update(opportunities)
    if unknown:
        logger.warning(f"Audit types without an opportunity mapping: {sorted(unknown)}")
    return ExpectedOpportunities(frozenset(expected), frozenset(unknown))


def dependencies_for_opportunity(
    opportunity_type: str,
    graph: DependencyGraph = DEFAULT_GRAPH,
) -> frozenset[str]:
    deps = graph.opportunity_to_dependencies.get(opportunity_type)
    if deps is None:
        logger.warning(f"No dependency entry for opportunity type {opportunity_type}; assuming no requirements")
        return frozenset()
    return deps


def required_dependencies(
    opportunity_types: Iterable[str],
    graph: DependencyGraph = DEFAULT_GRAPH,
) -> frozenset[str]:
    required: set[str] = set()
    for opportunity_type in opportunity_types or []:
        required.update(dependencies_for_opportunity(opportunity_type, graph))
    return frozenset(required)


def audits_for_opportunity(
    opportunity_type: str,
    graph: DependencyGraph = DEFAULT_GRAPH,
) -> list[str]:
    return sorted(
        audit_type
        for audit_type, opportunities in graph.audit_to_opportunities.items()
        if opportunity_type in opportunities
    )


def unmet_dependencies(
    opportunity_type: str,
    available: Mapping[str, bool],
    graph: DependencyGraph = DEFAULT_GRAPH,
) -> list[str]:
    """Required kinds not reported available. Kinds absent from `available` count as unmet."""
    deps = dependencies_for_opportunity(opportunity_type, graph)
    return sorted(kind for kind in deps if available.get(kind) is not True)


def opportunity_title(opportunity_type: str) -> str:
    if opportunity_type in OPPORTUNITY_TITLES:
        return OPPORTUNITY_TITLES[opportunity_type]
    return " ".join(word[:1].upper() + word[1:] for word in (opportunity_type or "").split("-"))
