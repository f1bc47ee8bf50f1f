"""
Robots Directive Engine

Evaluates:
- robots.txt rule groups (parse, group selection per user agent)
- Allow/Disallow precedence for a request path
- Meta robots directives (robots, googlebot, bingbot)
- Per-AI-agent visibility combining both signals

Precedence policy:
- Group: longest case-insensitive substring match of the user agent wins;
  "*" only applies when no named agent matches
- Rule: longest raw pattern wins; equal lengths go to Allow
- No matching rule means the path is allowed
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping

import structlog

from crawlaudit.core.config import get_settings
from crawlaudit.core.errors import MalformedRobotsPatternError
from crawlaudit.engines.base import (
    AIAgent,
    AIAgentVerdict,
    MetaDirectives,
    RobotsEvaluation,
    RobotsRule,
    RobotsRuleGroup,
)

logger = structlog.get_logger(__name__)

WILDCARD_AGENT = "*"
META_SOURCES = ("robots", "googlebot", "bingbot")

DEFAULT_AI_AGENTS: tuple[AIAgent, ...] = (
    AIAgent(name="ChatGPT (GPTBot)", user_agent="GPTBot"),
    AIAgent(name="ChatGPT (ChatGPT-User)", user_agent="ChatGPT-User"),
    AIAgent(name="Perplexity (PerplexityBot)", user_agent="PerplexityBot"),
    AIAgent(name="Perplexity (Perplexity-User)", user_agent="Perplexity-User"),
    AIAgent(name="Gemini (Google-Extended)", user_agent="Google-Extended"),
)


# ─────────────────────────────────────────────
# Parsing
# ─────────────────────────────────────────────

def _split_directive(line: str) -> tuple[str, str] | None:
    cleaned = line.split("#", 1)[0].strip()
    if not cleaned or ":" not in cleaned:
        return None
    key, value = cleaned.split(":", 1)
    key = key.strip().lower()
    if not key:
        return None
    return key, value.strip()


def parse_robots(text: str | None) -> list[RobotsRuleGroup]:
    """Parse robots.txt text into one group per contiguous User-agent block."""
    groups: list[RobotsRuleGroup] = []
    agents: list[str] = []
    rules: list[RobotsRule] = []

    def flush() -> None:
        nonlocal agents, rules
        if agents or rules:
            groups.append(RobotsRuleGroup(agents=agents, rules=rules))
            agents, rules = [], []

    for line in str(text or "").splitlines():
        if not line.split("#", 1)[0].strip():
            # Blank line ends a group only once it carries rules
            if rules:
                flush()
            continue

        directive = _split_directive(line)
        if directive is None:
            continue
        key, value = directive

        if key == "user-agent":
            if rules:
                flush()
            if value:
                agents.append(value.lower())
        elif key in ("allow", "disallow"):
            rules.append(RobotsRule(kind=key, pattern=value))

    flush()
    return groups


def extract_sitemaps(text: str | None) -> list[str]:
    """Return the values of every Sitemap: line (key matched case-insensitively)."""
    sitemaps: list[str] = []
    for line in str(text or "").splitlines():
        stripped = line.strip()
        if not stripped.lower().startswith("sitemap:"):
            continue
        value = stripped.split(":", 1)[1].strip()
        if value:
            sitemaps.append(value)
    return sitemaps


def pick_group(groups: Iterable[RobotsRuleGroup], user_agent: str) -> RobotsRuleGroup | None:
    """Select the group whose agent token is the longest substring of user_agent."""
    ua = (user_agent or "").lower()
    best: RobotsRuleGroup | None = None
    best_len = 0
    wildcard: RobotsRuleGroup | None = None

    for group in groups:
        for agent in group.agents:
            if not agent:
                continue
            if agent == WILDCARD_AGENT:
                if wildcard is None:
                    wildcard = group
                continue
            if agent in ua and len(agent) > best_len:
                best = group
                best_len = len(agent)

    return best if best is not None else wildcard


# ─────────────────────────────────────────────
# Rule matching
# ─────────────────────────────────────────────

class RobotsMatcher:
    """
    Compiles robots.txt patterns to anchored regular expressions.

    Safety invariants:
    - max_pattern_length bounds the expanded expression length
    - max_wildcards bounds the number of ".*" segments, which is what
      drives backtracking cost in the stdlib engine
    Patterns over either ceiling are skipped and treated as non-matching.
    """

    def __init__(self, max_pattern_length: int | None = None, max_wildcards: int | None = None):
        settings = get_settings()
        self.max_pattern_length = max_pattern_length or settings.ROBOTS_PATTERN_MAX_LENGTH
        self.max_wildcards = max_wildcards or settings.ROBOTS_PATTERN_MAX_WILDCARDS
        self._compiled: dict[str, re.Pattern[str]] = {}
        self.skipped_patterns: set[str] = set()

    def compile(self, pattern: str) -> re.Pattern[str]:
        """Translate a robots.txt pattern. Raises MalformedRobotsPatternError."""
        cached = self._compiled.get(pattern)
        if cached is not None:
            return cached

        body = pattern
        anchored = body.endswith("$")
        if anchored:
            body = body[:-1]

        # Runs of "*" are equivalent to a single one
        body = re.sub(r"\*+", "*", body)
        wildcards = body.count("*")
        if wildcards > self.max_wildcards:
            raise MalformedRobotsPatternError(
                f"Pattern has {wildcards} wildcards (limit {self.max_wildcards})",
                pattern=pattern,
            )

        expression = ".*".join(re.escape(part) for part in body.split("*"))
        if anchored:
            expression += "$"
        if len(expression) > self.max_pattern_length:
            raise MalformedRobotsPatternError(
                f"Expanded pattern length {len(expression)} exceeds {self.max_pattern_length}",
                pattern=pattern,
            )

        try:
            compiled = re.compile(expression)
        except re.error as exc:
            raise MalformedRobotsPatternError(f"Pattern does not compile: {exc}", pattern=pattern) from exc

        self._compiled[pattern] = compiled
        return compiled

    def matches(self, rule: RobotsRule, path: str) -> bool:
        if not rule.pattern:
            return False
        try:
            expression = self.compile(rule.pattern)
        except MalformedRobotsPatternError as exc:
            if rule.pattern not in self.skipped_patterns:
                self.skipped_patterns.add(rule.pattern)
                logger.warning("Skipping malformed robots.txt pattern", pattern=rule.pattern[:80], reason=exc.message)
            return False
        return expression.match(path) is not None

    def match_rule(self, rules: Iterable[RobotsRule], path: str) -> RobotsRule | None:
        """Longest matching pattern wins; an equal-length Allow beats Disallow."""
        winner: RobotsRule | None = None
        for rule in rules:
            if not self.matches(rule, path):
                continue
            if (
                winner is None
                or len(rule.pattern) > len(winner.pattern)
                or (len(rule.pattern) == len(winner.pattern) and rule.kind == "allow")
            ):
                winner = rule
        return winner


def evaluate(
    groups: list[RobotsRuleGroup],
    user_agent: str,
    path: str,
    matcher: RobotsMatcher | None = None,
) -> RobotsEvaluation:
    """Decide whether user_agent may fetch path under the parsed groups."""
    if not groups:
        return RobotsEvaluation(allowed=True)

    group = pick_group(groups, user_agent)
    if group is None or not group.rules:
        return RobotsEvaluation(allowed=True, matched_group=group)

    matcher = matcher or RobotsMatcher()
    rule = matcher.match_rule(group.rules, path or "/")
    if rule is None:
        return RobotsEvaluation(allowed=True, matched_group=group)

    return RobotsEvaluation(
        allowed=rule.kind != "disallow",
        matched_rule=rule,
        matched_group=group,
    )


# ─────────────────────────────────────────────
# Meta directives & AI visibility
# ─────────────────────────────────────────────

def parse_meta_directives(content: str | None) -> MetaDirectives:
    directives = [
        part.strip().lower()
        for part in re.split(r"[,;]", content or "")
        if part.strip()
    ]
    return MetaDirectives(
        directives=directives,
        noindex="noindex" in directives,
        nofollow="nofollow" in directives,
        noai="noai" in directives,
        noimageai="noimageai" in directives,
        nosnippet="nosnippet" in directives,
        max_snippet_zero=any(d.startswith("max-snippet") and ":0" in d for d in directives),
    )


def merge_meta_directives(meta: Mapping[str, str | None]) -> MetaDirectives:
    """OR together the flags from the robots, googlebot and bingbot sources."""
    parsed = [parse_meta_directives(meta.get(source)) for source in META_SOURCES]
    directives: list[str] = []
    for item in parsed:
        directives.extend(d for d in item.directives if d not in directives)
    return MetaDirectives(
        directives=directives,
        noindex=any(p.noindex for p in parsed),
        nofollow=any(p.nofollow for p in parsed),
        noai=any(p.noai for p in parsed),
        noimageai=any(p.noimageai for p in parsed),
        nosnippet=any(p.nosnippet for p in parsed),
        max_snippet_zero=any(p.max_snippet_zero for p in parsed),
    )


def ai_visibility(
    groups: list[RobotsRuleGroup],
    meta: Mapping[str, str | None],
    agents: Iterable[AIAgent] = DEFAULT_AI_AGENTS,
    path: str = "/",
    matcher: RobotsMatcher | None = None,
) -> list[AIAgentVerdict]:
    """
    Combine robots.txt and meta directives into one verdict per AI agent.
    A noai directive on any meta source blocks every agent regardless of robots.txt.
    """
    flags = merge_meta_directives(meta)
    matcher = matcher or RobotsMatcher()
    verdicts: list[AIAgentVerdict] = []

    for agent in agents:
        result = evaluate(groups, agent.user_agent, path, matcher)
        blocked_by_robots = not result.allowed
        blocked_by_meta = flags.noai
        allowed = not blocked_by_robots and not blocked_by_meta

        reasons = []
        if blocked_by_robots:
            reasons.append("Robots.txt")
        if blocked_by_meta:
            reasons.append("Meta noai")

        verdicts.append(AIAgentVerdict(
            agent_name=agent.name,
            user_agent_token=agent.user_agent,
            allowed=allowed,
            matched_rule=result.matched_rule,
            blocked_by_robots=blocked_by_robots,
            blocked_by_meta=blocked_by_meta,
            images_allowed=allowed and not flags.noimageai,
            reasons=reasons,
        ))

    return verdicts
