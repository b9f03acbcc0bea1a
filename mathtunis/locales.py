"""
Localized strings used by strategies and the fallback solution.

Tables are plain dicts keyed by language tag. Lookups go through localized(),
which walks LANGUAGE_FALLBACKS and ends at DEFAULT_LANGUAGE, so any tag
(including unknown ones) resolves to some text.
"""

from dataclasses import dataclass
from typing import Dict, Mapping, Optional, TypeVar

DEFAULT_LANGUAGE = "fr"

# Tunisian dialect shares the Arabic script strings
LANGUAGE_FALLBACKS = {"tn": "ar"}

T = TypeVar("T")


@dataclass(frozen=True)
class FallbackMessage:
    title: str
    description: str
    final_answer: str


FALLBACK_MESSAGES: Dict[str, FallbackMessage] = {
    "fr": FallbackMessage(
        title="Analyse du problème",
        description=(
            "Impossible de résoudre cette question pour le moment. "
            "Veuillez réessayer ou reformuler votre question."
        ),
        final_answer="Solution nécessite une analyse plus approfondie",
    ),
    "ar": FallbackMessage(
        title="تحليل المسألة",
        description="لا يمكن معالجة هذا السؤال حاليا. يرجى المحاولة مرة أخرى أو إعادة صياغة السؤال.",
        final_answer="الحل يتطلب تحليل أعمق",
    ),
}

SOLVE_PROMPTS = {
    "fr": "Résolvez ce problème mathématique étape par étape: {question}",
    "ar": "حل هذه المسألة الرياضية خطوة بخطوة: {question}",
    "tn": "حل هذه المسألة الرياضية خطوة بخطوة: {question}",
}

STEP_TITLES = {
    "fr": "Étape {n}",
    "ar": "الخطوة {n}",
}

SOLUTION_TITLES = {
    "fr": "Solution",
    "ar": "الحل",
}

PENDING_ANALYSIS = {
    "fr": "Analyse en cours...",
    "ar": "جاري التحليل...",
}

SEE_DETAILS = {
    "fr": "Voir solution détaillée ci-dessus",
    "ar": "انظر الحل المفصل أعلاه",
}

ANSWER_PATTERNS = {
    "fr": r"(?:réponse|résultat|solution)[:\s]*(.+?)(?:\n|$)",
    "ar": r"(?:الجواب|النتيجة|الحل)[:\s]*(.+?)(?:\n|$)",
}

# Titles and descriptions for the local heuristic strategy
HEURISTIC_TEXT = {
    "fr": {
        "limit_title": "Identifier le type de limite",
        "limit_desc": "Analyser la forme de la fonction",
        "derivative_title": "Appliquer les règles de dérivation",
        "derivative_desc": "Utiliser les formules de dérivation appropriées",
        "analysis_title": "Analyse du problème",
        "analysis_desc": "Identifier les éléments clés du problème",
        "parse_title": "Écrire l'expression",
        "equation_title": "Écrire l'équation",
        "solve_title": "Résoudre",
        "solve_desc": "Isoler la variable {var}",
        "evaluate_title": "Calculer",
        "evaluate_desc": "Évaluer l'expression",
        "limit_compute_desc": "Calculer la limite quand {var} tend vers {point}",
        "derivative_compute_desc": "Dériver par rapport à {var}",
        "no_solution": "Aucune solution réelle",
        "result_title": "Résultat",
    },
    "ar": {
        "limit_title": "تحديد نوع النهاية",
        "limit_desc": "تحليل شكل الدالة",
        "derivative_title": "تطبيق قواعد الاشتقاق",
        "derivative_desc": "استخدام صيغ الاشتقاق المناسبة",
        "analysis_title": "تحليل المسألة",
        "analysis_desc": "تحديد العناصر الأساسية للمسألة",
        "parse_title": "كتابة العبارة",
        "equation_title": "كتابة المعادلة",
        "solve_title": "الحل",
        "solve_desc": "عزل المتغير {var}",
        "evaluate_title": "الحساب",
        "evaluate_desc": "حساب قيمة العبارة",
        "limit_compute_desc": "حساب النهاية عندما يؤول {var} إلى {point}",
        "derivative_compute_desc": "الاشتقاق بالنسبة إلى {var}",
        "no_solution": "لا يوجد حل حقيقي",
        "result_title": "النتيجة",
    },
}


def localized(table: Mapping[str, T], language: Optional[str]) -> T:
    """Return the entry for language, following fallbacks down to the default."""
    tag = language or DEFAULT_LANGUAGE
    seen = set()
    while tag and tag not in seen:
        if tag in table:
            return table[tag]
        seen.add(tag)
        tag = LANGUAGE_FALLBACKS.get(tag)
    return table[DEFAULT_LANGUAGE]
