"""Full-text matching, ranking and highlighting over the stored ``issues.tokens`` column."""
from __future__ import annotations

import os
import re
from dataclasses import dataclass

from .query_plan import QueryPlan

DEFAULT_TEXT_CONFIGS = ("simple", "english")
DEFAULT_HEADLINE_CONFIG = "english"
DESCRIPTION_HEADLINE_OPTIONS = "MaxFragments=10, MaxWords=8, MinWords=3"

# tsquery operators and the escape character; each one separates words.
_TSQUERY_SEPARATOR_RE = re.compile(r"[\s<>:|'*()&!\[\]\\]+")
_IDENTIFIER_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_]*-\d+$")


@dataclass(frozen=True)
class TextSearchConfig:
    """Postgres text search configurations used to match and highlight issues."""

    text_configs: tuple[str, ...] = DEFAULT_TEXT_CONFIGS
    headline_config: str = DEFAULT_HEADLINE_CONFIG

    @classmethod
    def from_env(cls) -> "TextSearchConfig":
        raw = os.getenv("SEARCH_TEXT_CONFIGS", "")
        configs = tuple(item.strip() for item in raw.split(",") if item.strip())
        return cls(
            text_configs=configs or DEFAULT_TEXT_CONFIGS,
            headline_config=os.getenv("SEARCH_HEADLINE_CONFIG", "").strip() or DEFAULT_HEADLINE_CONFIG,
        )


def split_ts_query(search_query: str) -> str:
    """Turn free text into a prefix ``to_tsquery`` expression (``word:* | other:*``).

    Every tsquery operator splits the text like whitespace does, so ``10:30`` becomes
    ``10:* | 30:*`` and no input can produce a tsquery syntax error.
    """

    words = _TSQUERY_SEPARATOR_RE.split(search_query)
    return " | ".join(f"{word}:*" for word in words if word)


def issue_identifiers(search_query: str) -> list[str]:
    """Return the ``IDENT-N`` style words of a query, upper-cased."""

    return [word.upper() for word in search_query.split() if _IDENTIFIER_RE.match(word)]


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def apply_text_filter(plan: QueryPlan, search_query: str, config: TextSearchConfig) -> None:
    """Restrict ``plan`` to issues matching ``search_query``.

    An issue matches when its tokens match the query under any configuration
    (whole words or word prefixes), when its sequence number starts with the
    query, or when one query word is its full identifier such as ``PROJ-42``.
    """

    plan.add_join("JOIN projects p ON p.id = issues.project_id")
    plan.add_where("p.deleted_at IS NULL")

    query_ref = plan.bind(search_query, key="search_query")
    clauses: list[str] = []
    prefix_query = split_ts_query(search_query)
    prefix_ref = plan.bind(prefix_query, key="prefix_query") if prefix_query else None
    for ts_config in config.text_configs:
        config_ref = plan.bind(ts_config, key=("ts_config", ts_config))
        clauses.append(f"issues.tokens @@ plainto_tsquery({config_ref}::regconfig, {query_ref})")
        if prefix_ref:
            clauses.append(f"issues.tokens @@ to_tsquery({config_ref}::regconfig, {prefix_ref})")

    sequence_ref = plan.bind(_escape_like(search_query) + "%")
    clauses.append(f"issues.sequence_id::text LIKE {sequence_ref}")

    identifiers = issue_identifiers(search_query)
    if identifiers:
        identifiers_ref = plan.bind(identifiers)
        clauses.append(
            f"upper(p.identifier) || '-' || issues.sequence_id::text = ANY({identifiers_ref}::text[])"
        )

    plan.add_where(" OR ".join(clauses))


def apply_rank_projection(plan: QueryPlan, search_query: str) -> None:
    """Project the relevance score as ``ts_rank``; relies on the join added by the filter."""

    query_ref = plan.bind(search_query, key="search_query")
    plan.add_select(f"calc_rank(issues.tokens, p.identifier, issues.sequence_id, {query_ref}) AS ts_rank")


def apply_highlight_projection(plan: QueryPlan, search_query: str, config: TextSearchConfig) -> None:
    query_ref = plan.bind(search_query, key="search_query")
    config_ref = plan.bind(config.headline_config, key="headline_config")
    tsquery = f"plainto_tsquery({config_ref}::regconfig, {query_ref})"
    plan.add_select(f"ts_headline({config_ref}::regconfig, issues.name, {tsquery}) AS name_highlighted")
    plan.add_select(
        f"ts_headline({config_ref}::regconfig, coalesce(issues.description_stripped, ''), {tsquery}, "
        f"'{DESCRIPTION_HEADLINE_OPTIONS}') AS desc_highlighted"
    )
