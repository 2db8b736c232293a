"""Keyword-based intent classifier.

Maps a free-text chat message to a set of topic tags that decide which
domain data is fetched for the grounding context.  Classification is a
pure table lookup (no LLM): every keyword group that matches contributes
its tags, and a message matching nothing is tagged ``general``.

Arabic text is normalised before matching (hamza/alef variants, taa
marbuta, alef maqsura, diacritics and tatweel) so that common spelling
variants hit the same keywords.  Latin text is lower-cased.
"""

from __future__ import annotations

import re
from typing import Iterable

GENERAL = "general"

INVOICES = "invoices"
CLIENTS = "clients"
DEBTS = "debts"
TASKS = "tasks"

ACTION_TASK = "action_task"
ACTION_INVOICE = "action_invoice"
ACTION_DEBT = "action_debt"

DOMAIN_TAGS: tuple[str, ...] = (INVOICES, CLIENTS, DEBTS, TASKS)
ACTION_TAGS: tuple[str, ...] = (ACTION_TASK, ACTION_INVOICE, ACTION_DEBT)

# Response ordering for the ``intents`` field of the chat response
_TAG_ORDER: tuple[str, ...] = ACTION_TAGS + DOMAIN_TAGS + (GENERAL,)

_DIACRITICS = re.compile(r"[\u064B-\u0652\u0670\u0640]")
_CHAR_MAP = str.maketrans({"أ": "ا", "إ": "ا", "آ": "ا", "ة": "ه", "ى": "ي"})


def normalize(text: str) -> str:
    """Lower-case and fold Arabic spelling variants to a canonical form."""
    return _DIACRITICS.sub("", text).translate(_CHAR_MAP).lower()


def _compile(pattern: str) -> re.Pattern[str]:
    return re.compile(normalize(pattern))


# ─────────────────────────────────────────────
# Keyword tables
# ─────────────────────────────────────────────

# Topic groups: pattern → tags added when the pattern matches.
KEYWORD_GROUPS: list[tuple[re.Pattern[str], tuple[str, ...]]] = [
    (
        _compile(r"فاتور|فواتير|إيصال|مبيعات|إيرادات|دخل|invoice|revenue|sales|receipt"),
        (INVOICES,),
    ),
    (
        _compile(r"عميل|عملاء|زبون|زبائن|متعامل|client|customer"),
        (CLIENTS,),
    ),
    (
        _compile(r"دين|ديون|مستحق|متأخر|سداد|تحصيل|مديون|debt|overdue|collection"),
        (DEBTS,),
    ),
    (
        _compile(r"مهم|مهام|عمل|أعمال|مشروع|خدم|خدمات|task|work|project|service"),
        (TASKS,),
    ),
    (
        _compile(
            r"تقرير|تقارير|إحصائ|ملخص|نظرة|عام|شامل|كامل|أداء|تحليل"
            r"|report|summary|overview|analys|statistic"
        ),
        DOMAIN_TAGS,
    ),
]

# Action verbs (create / add / register).  "سجل" is only a verb when it
# does not carry the definite article ("السجل" is "the register").  Latin verbs
# must be whole words ("address" is not "add").
ACTION_VERBS: re.Pattern[str] = _compile(
    r"أنشئ|انشئ|إنشاء|أضف|اضف|إضافة|(?<!ال)سجل|تسجيل|\b(?:create|add|register)\b"
)

# Action groups: noun pattern → tag, only when an action verb is present too.
ACTION_GROUPS: list[tuple[re.Pattern[str], str]] = [
    (_compile(r"مهمة|مهام|task"), ACTION_TASK),
    (_compile(r"فاتورة|فواتير|invoice"), ACTION_INVOICE),
    (_compile(r"دين|ديون|مديونية|debt"), ACTION_DEBT),
]


# ─────────────────────────────────────────────
# Classification
# ─────────────────────────────────────────────


def classify(message: str) -> set[str]:
    """Return the set of intent tags for *message* (never empty)."""
    text = normalize(message or "")
    intents: set[str] = set()

    if ACTION_VERBS.search(text):
        for pattern, tag in ACTION_GROUPS:
            if pattern.search(text):
                intents.add(tag)

    for pattern, tags in KEYWORD_GROUPS:
        if pattern.search(text):
            intents.update(tags)

    if not intents:
        intents.add(GENERAL)
    return intents


def ordered(intents: Iterable[str]) -> list[str]:
    """Stable ordering of *intents* for display and JSON responses."""
    known = [tag for tag in _TAG_ORDER if tag in intents]
    extra = sorted(set(intents) - set(_TAG_ORDER))
    return known + extra


def has_action(intents: Iterable[str]) -> bool:
    return any(tag in ACTION_TAGS for tag in intents)


def needs_category(intents: Iterable[str], category: str) -> bool:
    """Whether the context for *category* must be fetched.

    A category is fetched when it was asked about, when the message is
    ``general``, or when an action may need it: every action needs the
    client list for name resolution, and ``action_<kind>`` also grounds the
    model with the matching category.
    """
    tags = set(intents)
    if category in tags or GENERAL in tags:
        return True
    if category == CLIENTS and has_action(tags):
        return True
    action_for = {TASKS: ACTION_TASK, INVOICES: ACTION_INVOICE, DEBTS: ACTION_DEBT}
    return action_for.get(category) in tags
