"""Heuristic detection of pages that depend on JavaScript to render.

Every rule is evaluated independently against the raw markup and each match
contributes its reason, in declaration order. Framework tokens are matched
case-sensitively as written; only the free-text warning rules ignore case.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

REASON_SEPARATOR = "; "


@dataclass(frozen=True)
class Rule:
    name: str
    pattern: re.Pattern[str]
    reason: str

    def matches(self, markup: str) -> bool:
        return self.pattern.search(markup) is not None


def _rule(name: str, pattern: str, reason: str, flags: int = 0) -> Rule:
    return Rule(name=name, pattern=re.compile(pattern, flags), reason=reason)


RULES: tuple[Rule, ...] = (
    _rule(
        "noscript_warning",
        r"<noscript\b[^>]*>(?:(?!</noscript>).)*?(?:javascript|browser)(?:(?!</noscript>).)*</noscript>",
        "noscript warning found (JavaScript required)",
        re.IGNORECASE | re.DOTALL,
    ),
    _rule(
        "explicit_requirement",
        r"(?:this (?:site|page|app|application) requires javascript"
        r"|you need to enable javascript"
        r"|please enable javascript)",
        "explicit JavaScript requirement message",
        re.IGNORECASE,
    ),
    _rule(
        "ember",
        r"\bember(?:\.[\w-]+)*\.js|ember-application|data-ember-|\bember-view\b",
        "Ember.js application detected",
    ),
    _rule(
        "react",
        r"\breact(?:-dom)?(?:\.[\w-]+)*\.js|data-reactroot|__REACT_DEVTOOLS|_reactRootContainer"
        r"""|(?<![\w-])id\s*=\s*["']root["']""",
        "React framework detected",
    ),
    _rule(
        "angular",
        r"\bangular(?:\.[\w-]+)*\.js|\bng-app\b|<app-root\b|\bng-version=",
        "Angular framework detected",
    ),
    _rule(
        "vue",
        r"\bvue(?:\.[\w-]+)*\.js|\bv-app\b|\bdata-v-[0-9a-f]{6,}\b|__VUE__"
        r"""|(?<![\w-])id\s*=\s*["']app["']""",
        "Vue.js framework detected",
    ),
    _rule(
        "svelte",
        r"\bsvelte(?:\.[\w-]+)*\.js|\bsvelte-[a-z0-9]{5,}\b",
        "Svelte framework detected",
    ),
    _rule("webpack", r"webpack", "Webpack bundled JavaScript detected"),
    _rule("parcel", r"parcelRequire", "Parcel bundled JavaScript detected"),
    _rule("rollup", r"\brollup\b", "Rollup bundled JavaScript detected"),
    _rule("browserify", r"browserify", "Browserify bundled JavaScript detected"),
    _rule(
        "bundle_script",
        r"""<script\b[^>]*\bsrc\s*=\s*["']?[^"'\s>]*bundle""",
        "JavaScript bundle script detected",
        re.IGNORECASE,
    ),
    _rule(
        "spa_routing",
        r"""href\s*=\s*["']#!/|<router-outlet\b|<router-view\b|\bng-view\b|\bdata-router\b|history\.pushState""",
        "client-side SPA routing detected",
    ),
)


@dataclass(frozen=True)
class Classification:
    is_javascript_dependent: bool
    reasons: tuple[str, ...] = ()

    @property
    def reasons_text(self) -> Optional[str]:
        """Reasons joined for storage; ``None`` when nothing matched."""

        if not self.reasons:
            return None
        return REASON_SEPARATOR.join(self.reasons)


NOT_DEPENDENT = Classification(False, ())


def classify(markup: str | None, rules: tuple[Rule, ...] = RULES) -> Classification:
    if not markup:
        return NOT_DEPENDENT
    reasons = tuple(rule.reason for rule in rules if rule.matches(markup))
    if not reasons:
        return NOT_DEPENDENT
    return Classification(True, reasons)


__all__ = ["Classification", "NOT_DEPENDENT", "REASON_SEPARATOR", "RULES", "Rule", "classify"]
