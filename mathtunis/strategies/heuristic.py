"""
Local heuristic strategy.

Recognizes common school exercises by keyword (limits, derivatives,
equations) and solves the ones it can parse with sympy. Questions it only
recognizes by keyword get a generic analysis at low confidence, which the
coordinator normally rejects.
"""

import re
import threading
from tokenize import TokenError
from typing import List, Optional, Tuple

import sympy as sp
from sympy.parsing.sympy_parser import (
    convert_xor,
    implicit_multiplication_application,
    parse_expr,
    standard_transformations,
)

from ..errors import Malformed
from ..locales import FALLBACK_MESSAGES, HEURISTIC_TEXT, localized
from ..logger import get_logger
from ..models import SOURCE_HEURISTIC, Question, Solution, Step
from ..retry import Deadline
from .base import StrategyAdapter

logger = get_logger()

SOLVED_CONFIDENCE = 90
KEYWORD_CONFIDENCE = 60

MAX_EXPRESSION_LENGTH = 200

LIMIT_RE = re.compile(r"\b(?:limites?|limits?|lim)\b|نهاية", re.IGNORECASE)
DERIVATIVE_RE = re.compile(
    r"d[ée]riv[ée]e?s?|d[ée]river|derivatives?|differentiate|مشتقة|اشتقاق", re.IGNORECASE
)
APPROACH_RE = re.compile(
    r"\b([a-z])\s*(?:->|→|tend\s+vers|tends\s+to|approaches|يؤول\s+إلى)\s*"
    r"([+-]?\s*(?:\d+(?:[.,]\d+)?|infinity|infini|inf|oo|∞))",
    re.IGNORECASE,
)
FUNCTION_DEF_RE = re.compile(r"[a-zA-Z]\s*\(\s*[a-zA-Z]\s*\)\s*$")

FUNCTION_NAMES = {"sin", "cos", "tan", "exp", "ln", "log", "sqrt", "abs"}
MATH_TOKEN_RE = re.compile(r"[0-9A-Za-z+\-*/^().,=]+")
SAFE_EXPRESSION_RE = re.compile(r"(?:[0-9A-Za-z+\-*/^()\s]|(?<=\d)\.(?=\d))+")

SYMBOL_REPLACEMENTS = {
    "²": "^2",
    "³": "^3",
    "×": "*",
    "÷": "/",
    "−": "-",
    "√": "sqrt",
    "π": "pi",
}

TRANSFORMATIONS = standard_transformations + (implicit_multiplication_application, convert_xor)
LOCAL_NAMES = {"ln": sp.log, "pi": sp.pi, "e": sp.E}

# The only names parsed code can reach. parse_expr evaluates its output, so
# builtins are removed and every identifier is checked before parsing.
PARSER_GLOBALS = {
    "__builtins__": {},
    "Symbol": sp.Symbol,
    "Function": sp.Function,
    "Integer": sp.Integer,
    "Float": sp.Float,
    "Rational": sp.Rational,
    "sin": sp.sin,
    "cos": sp.cos,
    "tan": sp.tan,
    "exp": sp.exp,
    "log": sp.log,
    "sqrt": sp.sqrt,
    "abs": sp.Abs,
}
ALLOWED_NAMES = FUNCTION_NAMES | set(LOCAL_NAMES)
IDENTIFIER_RE = re.compile(r"[A-Za-z]+")

# sympy raises a wide range of errors on odd input
PARSE_ERRORS = (sp.SympifyError, TokenError, SyntaxError, TypeError, ValueError, AttributeError, NotImplementedError)


def _clean(fragment: str) -> str:
    for old, new in SYMBOL_REPLACEMENTS.items():
        fragment = fragment.replace(old, new)
    fragment = re.sub(r"[?!;:]", " ", fragment)
    # Decimal comma between digits
    return re.sub(r"(?<=\d),(?=\d)", ".", fragment)


def _is_math_token(token: str) -> bool:
    if not MATH_TOKEN_RE.fullmatch(token):
        return False
    if len(token) == 1 or any(c.isdigit() for c in token):
        return True
    if any(c in "+-*/^()=" for c in token):
        return True
    return token.lower() in FUNCTION_NAMES


def math_fragment(text: str) -> str:
    """Return the longest run of math-looking tokens in text."""
    tokens = _clean(text).split()
    best: List[str] = []
    run: List[str] = []
    for tok in tokens:
        if _is_math_token(tok):
            run.append(tok)
            continue
        if len(" ".join(run)) > len(" ".join(best)):
            best = run
        run = []
    if len(" ".join(run)) > len(" ".join(best)):
        best = run
    return " ".join(best).strip(" .,:;")


def parse_math(fragment: str) -> sp.Expr:
    """Parse a cleaned fragment with sympy, refusing anything but arithmetic syntax."""
    fragment = fragment.strip()
    if not fragment or len(fragment) > MAX_EXPRESSION_LENGTH:
        raise ValueError("Empty or oversized expression")
    if not SAFE_EXPRESSION_RE.fullmatch(fragment):
        raise ValueError(f"Unsupported characters in {fragment!r}")
    for name in IDENTIFIER_RE.findall(fragment):
        if len(name) > 1 and name not in ALLOWED_NAMES:
            raise ValueError(f"Unknown name {name!r}")
    return parse_expr(
        fragment,
        local_dict=dict(LOCAL_NAMES),
        global_dict=dict(PARSER_GLOBALS),
        transformations=TRANSFORMATIONS,
    )


def pick_variable(*exprs: sp.Expr) -> Optional[sp.Symbol]:
    symbols = set()
    for e in exprs:
        symbols |= e.free_symbols
    if not symbols:
        return None
    for s in symbols:
        if s.name == "x":
            return s
    return sorted(symbols, key=lambda s: s.name)[0]


def _parse_point(raw: str) -> sp.Expr:
    raw = raw.replace(" ", "").replace(",", ".").lower()
    sign = -1 if raw.startswith("-") else 1
    raw = raw.lstrip("+-")
    if raw in ("inf", "infini", "infinity", "oo", "∞"):
        return sign * sp.oo
    return sign * sp.nsimplify(raw)


def _format_value(value: sp.Expr) -> str:
    if value.is_Rational or value.is_infinite:
        return sp.sstr(value)
    approx = value.evalf(6)
    if approx.is_Number:
        return f"{sp.sstr(value)} ≈ {sp.sstr(approx)}"
    return sp.sstr(value)


class HeuristicStrategy(StrategyAdapter):
    """Keyword detection plus local symbolic solving."""

    name = "heuristic"
    source = SOURCE_HEURISTIC

    def __init__(self, solved_confidence: float = SOLVED_CONFIDENCE, keyword_confidence: float = KEYWORD_CONFIDENCE):
        self.solved_confidence = solved_confidence
        self.keyword_confidence = keyword_confidence

    def solve(
        self,
        question: Question,
        language: str,
        timeout: float,
        cancel: Optional[threading.Event] = None,
    ) -> Solution:
        deadline = Deadline(timeout)
        text = question.text
        is_limit = bool(LIMIT_RE.search(text))
        is_derivative = bool(DERIVATIVE_RE.search(text))
        self.checkpoint(deadline, cancel)

        try:
            if is_derivative:
                solution = self._derivative(text, language, deadline, cancel)
            elif is_limit:
                solution = self._limit(text, language, deadline, cancel)
            elif "=" in text:
                solution = self._equation(text, language, deadline, cancel)
            else:
                solution = self._evaluate(text, language, deadline, cancel)
        except PARSE_ERRORS as e:
            logger.debug("Heuristic could not parse question", error=str(e))
            solution = None

        if solution is not None:
            return solution
        if is_limit or is_derivative:
            return self._keyword_analysis(language, is_limit, is_derivative)
        raise Malformed("No recognizable math in question", strategy=self.name)

    # Solvers. Each returns None when the question has no usable expression.

    def _function_expression(self, text: str) -> Tuple[str, str]:
        """Split "f(x) = expr" into ("f(x)", "expr"), else ("", fragment)."""
        if "=" in text:
            left, right = text.split("=", 1)
            head = math_fragment(left)
            if FUNCTION_DEF_RE.search(head):
                return head.split()[-1], math_fragment(right)
        return "", math_fragment(text)

    def _derivative(self, text, language, deadline, cancel) -> Optional[Solution]:
        t = localized(HEURISTIC_TEXT, language)
        head, fragment = self._function_expression(text)
        if not fragment:
            return None
        expr = parse_math(fragment)
        var = pick_variable(expr)
        if var is None:
            return None
        self.checkpoint(deadline, cancel)
        derivative = sp.simplify(sp.diff(expr, var))
        self.checkpoint(deadline, cancel)

        name = head.split("(")[0] if head else "f"
        steps = [
            Step(
                title=t["parse_title"],
                explanation=f"{name}({var}) = {sp.sstr(expr)}",
                math=f"{name}({sp.latex(var)}) = {sp.latex(expr)}",
                category="blue",
            ),
            Step(
                title=t["derivative_title"],
                explanation=t["derivative_compute_desc"].format(var=var),
                math=f"{name}'({sp.latex(var)}) = {sp.latex(derivative)}",
                category="green",
            ),
        ]
        return self._solved(steps, f"{name}'({var}) = {sp.sstr(derivative)}", "derivative")

    def _limit(self, text, language, deadline, cancel) -> Optional[Solution]:
        t = localized(HEURISTIC_TEXT, language)
        approach = APPROACH_RE.search(text)
        if approach is None:
            return None
        point = _parse_point(approach.group(2))
        remainder = text[:approach.start()] + " " + text[approach.end():]
        _, fragment = self._function_expression(remainder)
        if not fragment:
            return None
        expr = parse_math(fragment)
        var = sp.Symbol(approach.group(1))
        self.checkpoint(deadline, cancel)
        value = sp.limit(expr, var, point)
        self.checkpoint(deadline, cancel)

        steps = [
            Step(
                title=t["limit_title"],
                explanation=t["limit_desc"],
                math=sp.latex(expr),
                category="blue",
            ),
            Step(
                title=t["result_title"],
                explanation=t["limit_compute_desc"].format(var=var, point=sp.sstr(point)),
                math=f"\\lim_{{{sp.latex(var)} \\to {sp.latex(point)}}} {sp.latex(expr)} = {sp.latex(value)}",
                category="green",
            ),
        ]
        return self._solved(steps, _format_value(value), "limit")

    def _equation(self, text, language, deadline, cancel) -> Optional[Solution]:
        t = localized(HEURISTIC_TEXT, language)
        left, right = text.split("=", 1)
        lhs_fragment, rhs_fragment = math_fragment(left), math_fragment(right)
        if not lhs_fragment or not rhs_fragment:
            return None
        lhs, rhs = parse_math(lhs_fragment), parse_math(rhs_fragment)
        var = pick_variable(lhs, rhs)
        if var is None:
            return None
        self.checkpoint(deadline, cancel)
        roots = sp.solve(sp.Eq(lhs, rhs), var)
        self.checkpoint(deadline, cancel)

        real_roots = [r for r in roots if r.is_real]
        if real_roots:
            answer = " ; ".join(f"{var} = {_format_value(r)}" for r in real_roots)
            math = ", ".join(f"{sp.latex(var)} = {sp.latex(r)}" for r in real_roots)
        else:
            answer = t["no_solution"]
            math = None

        steps = [
            Step(
                title=t["equation_title"],
                explanation=f"{sp.sstr(lhs)} = {sp.sstr(rhs)}",
                math=sp.latex(sp.Eq(lhs, rhs, evaluate=False)),
                category="blue",
            ),
            Step(
                title=t["solve_title"],
                explanation=t["solve_desc"].format(var=var),
                math=math,
                category="green",
            ),
        ]
        return self._solved(steps, answer, "equation")

    def _evaluate(self, text, language, deadline, cancel) -> Optional[Solution]:
        t = localized(HEURISTIC_TEXT, language)
        fragment = math_fragment(text)
        # A bare number or variable is not an exercise
        if not fragment or not re.search(r"[+\-*/^()]", fragment):
            return None
        expr = parse_math(fragment)
        if expr.free_symbols:
            return None
        self.checkpoint(deadline, cancel)
        value = sp.simplify(expr)

        steps = [
            Step(
                title=t["evaluate_title"],
                explanation=t["evaluate_desc"],
                math=f"{sp.latex(expr)} = {sp.latex(value)}",
                category="blue",
            ),
        ]
        return self._solved(steps, _format_value(value), "arithmetic")

    def _solved(self, steps: List[Step], answer: str, kind: str) -> Solution:
        return Solution(
            steps=steps,
            final_answer=answer,
            confidence=self.solved_confidence,
            source=self.source,
            metadata={"problem": kind},
        )

    def _keyword_analysis(self, language: str, is_limit: bool, is_derivative: bool) -> Solution:
        t = localized(HEURISTIC_TEXT, language)
        steps = []
        if is_limit:
            steps.append(Step(title=t["limit_title"], explanation=t["limit_desc"], category="blue"))
        if is_derivative:
            steps.append(Step(title=t["derivative_title"], explanation=t["derivative_desc"], category="green"))
        return Solution(
            steps=steps,
            final_answer=localized(FALLBACK_MESSAGES, language).final_answer,
            confidence=self.keyword_confidence,
            source=self.source,
            metadata={"problem": "keywords"},
        )
