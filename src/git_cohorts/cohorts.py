from __future__ import annotations

import re

from .config import ProjectMeta

COHORT_TYPES = ("firstyear", "domain", "repo", "prefix", "suffix")

UNKNOWN_COHORT = "(unknown)"
BRIEF_COHORT = "Brief"
OTHER_COHORT = "Other"

_NAME_SEPARATORS = re.compile(r"[-_.]")


def name_prefix(name: str) -> str:
    parts = _NAME_SEPARATORS.split(name, maxsplit=1)
    return parts[0] or name


def name_suffix(name: str) -> str:
    parts = _NAME_SEPARATORS.split(name)
    return parts[-1] or name


def firstyear_label(first_year: int, active_time: int, meta: ProjectMeta) -> str:
    if meta.brief_days is not None and active_time <= meta.brief_days * 86400:
        return BRIEF_COHORT
    return str(first_year)


def commit_label(
    cohort_type: str,
    *,
    repo_id: str,
    author_email: str,
    author_domain: str,
    author_time: int,
    meta: ProjectMeta,
) -> str | None:
    """
    Cohort label for one raw commit under a per-commit strategy.

    Returns None when the metadata hides the commit's domain.
    """
    if cohort_type == "domain":
        matched = meta.matched_domain(author_email, author_time, author_domain)
        label = meta.override(matched)
        hidden = meta.hidden_domains()
        if matched in hidden or label in hidden:
            return None
        return label or UNKNOWN_COHORT
    if cohort_type == "repo":
        label = meta.override(repo_id)
    elif cohort_type == "prefix":
        label = meta.override(name_prefix(repo_id))
    elif cohort_type == "suffix":
        label = meta.override(name_suffix(repo_id))
    else:
        raise ValueError(f"not a per-commit cohort type: {cohort_type!r}")
    return label or UNKNOWN_COHORT


def order_cohorts(cohort_type: str, weights: dict[str, int]) -> list[str]:
    special = [c for c in (UNKNOWN_COHORT, BRIEF_COHORT, OTHER_COHORT) if c in weights]
    regular = [c for c in weights if c not in special]
    if cohort_type == "firstyear":
        regular.sort(key=lambda c: (0, int(c)) if c.isdigit() else (1, c))
    else:
        regular.sort(key=lambda c: (-weights[c], c))
    return regular + special


def fold_small_cohorts(weights: dict[str, int], max_cohorts: int) -> dict[str, str]:
    """
    Keep the `max_cohorts` heaviest labels and map everything else to OTHER_COHORT.
    """
    if max_cohorts <= 0 or len(weights) <= max_cohorts:
        return {c: c for c in weights}
    ranked = sorted(weights, key=lambda c: (-weights[c], c))
    keep = set(ranked[:max_cohorts])
    return {c: (c if c in keep else OTHER_COHORT) for c in weights}
