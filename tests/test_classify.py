from __future__ import annotations

import pytest

from ingest.classify import NOT_DEPENDENT, RULES, classify


def _reason(name: str) -> str:
    return next(rule.reason for rule in RULES if rule.name == name)


def test_noscript_warning_marks_page_dependent():
    result = classify("<html><noscript>Please enable JavaScript to view this page.</noscript></html>")

    assert result.is_javascript_dependent
    assert result.reasons[0] == _reason("noscript_warning")
    assert "noscript" in result.reasons_text


def test_all_matching_rules_are_reported_in_declaration_order():
    markup = (
        '<script src="/static/react.production.min.js"></script>'
        "<script>window.webpackJsonp = [];</script>"
        '<script src="/assets/app.bundle.js"></script>'
    )

    result = classify(markup)

    assert result.reasons == (_reason("react"), _reason("webpack"), _reason("bundle_script"))
    assert result.reasons_text == "; ".join(result.reasons)


@pytest.mark.parametrize(
    "markup",
    [
        None,
        "",
        "<html><body><p>Hello</p><a href='/about'>About</a></body></html>",
        "<p>We write about REACT.JS and Webpack in this article.</p>",
        '<main data-id="root" id="rooted"><div id="application"></div></main>',
    ],
)
def test_static_markup_is_not_dependent(markup):
    result = classify(markup)

    assert result == NOT_DEPENDENT
    assert result.reasons_text is None


@pytest.mark.parametrize(
    "markup, rule",
    [
        ('<div class="ember-application">', "ember"),
        ('<app-root ng-version="17.0.0"></app-root>', "angular"),
        ('<div id="app" data-v-7ba5bd90></div>', "vue"),
        ("<script>parcelRequire = function(){}</script>", "parcel"),
        ('<a href="#!/inbox">Inbox</a>', "spa_routing"),
        ('<div id="root"></div><script src="/static/js/main.3f2a1b.js"></script>', "react"),
        ("<div id='app'></div>", "vue"),
        ('<div id="ember123" class="ember-view"></div>', "ember"),
    ],
)
def test_framework_and_routing_signatures(markup, rule):
    assert _reason(rule) in classify(markup).reasons


def test_classification_is_deterministic():
    markup = '<noscript>This browser is unsupported</noscript><script src="bundle.js"></script>'

    assert classify(markup) == classify(markup)
