"""
Cross-source deduplication and citation ranking.

Deduplication is by normalized title (case-folded, trimmed). When two sources
return the same title the copy with more citations wins; on equal citations
a copy with a usable abstract beats one without. The merged list is ordered
by citation count, highest first.
"""

from jurnalgpt.models import Journal, has_usable_abstract


def normalize_title(title: str) -> str:
    return title.casefold().strip()


def _should_replace(existing: Journal, incoming: Journal) -> bool:
    if incoming.citation_count != existing.citation_count:
        return incoming.citation_count > existing.citation_count
    return has_usable_abstract(incoming.abstract) and not has_usable_abstract(existing.abstract)


def merge_and_deduplicate(journals: list[Journal]) -> list[Journal]:
    unique: dict[str, Journal] = {}

    for journal in journals:
        key = normalize_title(journal.title)
        existing = unique.get(key)
        if existing is None or _should_replace(existing, journal):
            unique[key] = journal

    return sorted(unique.values(), key=lambda j: j.citation_count, reverse=True)
