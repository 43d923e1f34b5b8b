"""A Pack Rat Parsing Expression Grammar matcher with left recursion."""

from .packrat import (
    DEFAULT_MAX_DEPTH,
    Expression, Terminal, Sequence, Choice, Repetition, OneOrMore, ZeroOrOne, And, Not, RuleApplication,
    Grammar, Matcher, ParseState, MemoTable, MemoEntry, LeftRecursion,
    build_expression, match, one_line_format,
)
