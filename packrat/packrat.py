#!/usr/bin/env python3
"""A Pack Rat Parsing Expression Grammar matcher with left recursion."""

import re
from collections import namedtuple
from typing import Any, Optional, Union, Tuple, List, Dict, Set, Hashable, Sequence as SymbolSequence

CST = Any
PEGAtom = str
PEGExpression = Tuple[Any, ...] # should be Union[Tuple[PEGOperator, PEGExpression, ...], PEGAtom]

DEFAULT_MAX_DEPTH = 200


def one_line_format(symbols):
    # type: (SymbolSequence[Hashable]) -> str
    """Escape tabs and truncate at the first newline.

    Parameters:
        symbols (Sequence): The symbols to format. Non-strings are shown
            using their repr.

    Returns:
        str: The escaped string.
    """
    if not isinstance(symbols, str):
        return repr(symbols)
    string = re.sub(r'\t', r'\\t', symbols)
    if '\n' in string:
        string = string[:string.index('\n')]
    return string


LeftRecursion = namedtuple('LeftRecursion', 'detected')
MemoEntry = namedtuple('MemoEntry', 'cst, next_pos')


class MemoTable:
    """Cached rule outcomes, indexed by position and then rule id.

    Each slot holds None (no attempt yet), a LeftRecursion marker (the rule is
    being evaluated for the first time at that position), or a MemoEntry (the
    resolved outcome, where a cst of None is a failure). Rows are created the
    first time a position is reached.
    """

    def __init__(self, length):
        # type: (int) -> None
        """Initialize the MemoTable.

        Parameters:
            length (int): The length of the input. Positions range over
                0 to length inclusive.
        """
        self.rows = [None] * (length + 1) # type: List[Optional[Dict[int, Any]]]

    def __len__(self):
        # type: () -> int
        return sum(len(row) for row in self.rows if row)

    def get(self, position, rule_id):
        # type: (int, int) -> Union[None, LeftRecursion, MemoEntry]
        """Retrieve the entry for a rule at a position, if it exists.

        Parameters:
            position (int): The position of the rule application.
            rule_id (int): The id of the rule.

        Returns:
            LeftRecursion: A marker if the rule is still being evaluated.
            MemoEntry: The outcome if the rule is resolved.
            None: If the rule was never tried at this position.
        """
        row = self.rows[position]
        if row is None:
            return None
        return row.get(rule_id)

    def set_marker(self, position, rule_id, detected=False):
        # type: (int, int, bool) -> None
        """Record that a rule is being evaluated at a position.

        Parameters:
            position (int): The position of the rule application.
            rule_id (int): The id of the rule.
            detected (bool): Whether the rule re-entered itself at this
                position. Defaults to False.
        """
        self._row(position)[rule_id] = LeftRecursion(detected)

    def set_resolved(self, position, rule_id, cst, next_pos):
        # type: (int, int, Optional[CST], int) -> None
        """Record the outcome of a rule at a position.

        Parameters:
            position (int): The position of the rule application.
            rule_id (int): The id of the rule.
            cst (any): The concrete syntax tree, or None for a failure.
            next_pos (int): The position after the match. Ignored on failure.
        """
        if cst is None:
            next_pos = position
        self._row(position)[rule_id] = MemoEntry(cst, next_pos)

    def discard(self, position, rule_id):
        # type: (int, int) -> None
        """Forget the entry for a rule at a position."""
        row = self.rows[position]
        if row is not None:
            row.pop(rule_id, None)

    def _row(self, position):
        # type: (int) -> Dict[int, Any]
        row = self.rows[position]
        if row is None:
            row = self.rows[position] = {}
        return row


class ParseState:
    """The mutable state of a single match.

    Owns the input, the cursor, and the memo table. A new ParseState is
    created for every match and is never shared.
    """

    def __init__(self, symbols, grammar, memoize=True, max_depth=DEFAULT_MAX_DEPTH, debug=False):
        # type: (SymbolSequence[Hashable], Grammar, bool, Optional[int], bool) -> None
        """Initialize the ParseState.

        Parameters:
            symbols (Sequence): The input to match.
            grammar (Grammar): The grammar to match against.
            memoize (bool): Whether to keep rule outcomes after the rule
                application finishes. Defaults to True.
            max_depth (int): The maximum depth of nested rule applications,
                or None for no limit. Defaults to DEFAULT_MAX_DEPTH.
            debug (bool): Whether to print matching information.
                Defaults to False.
        """
        self.input = symbols
        self.grammar = grammar
        self.memoize = memoize
        self.max_depth = max_depth
        self.debug = debug
        self.pos = 0
        self.depth = 0
        self.memo = MemoTable(len(symbols))

    def at_end(self):
        # type: () -> bool
        """Return whether the entire input has been consumed."""
        return self.pos == len(self.input)

    def consume(self, symbol):
        # type: (Hashable) -> bool
        """Consume a symbol if it is next in the input.

        Parameters:
            symbol (any): The symbol to consume.

        Returns:
            bool: Whether the symbol was consumed.
        """
        if self.pos < len(self.input) and self.input[self.pos] == symbol:
            self.pos += 1
            return True
        return False

    def _debug_print(self, message):
        # type: (str) -> None
        """Print debugging information with indentation.

        Parameters:
            message (str): The message to print.
        """
        if self.debug:
            print(self.depth * '    ' + message)


class Expression:
    """Base class of all parsing expressions.

    Expressions are immutable and stateless; all state lives in the
    ParseState passed to eval(). A failed eval() returns None and may leave
    the cursor anywhere; callers that backtrack restore it themselves.
    """

    has_payload = True

    def eval(self, state):
        # type: (ParseState) -> Optional[CST]
        """Attempt to match the expression at the current position.

        Parameters:
            state (ParseState): The state of the match.

        Returns:
            any: The concrete syntax tree, or None if the match failed.
        """
        raise NotImplementedError()

    def children(self):
        # type: () -> Tuple[Expression, ...]
        """Return the sub-expressions of this expression."""
        return ()

    def rule_references(self):
        # type: () -> Set[str]
        """Return the names of all rules this expression applies."""
        names = set() # type: Set[str]
        for child in self.children():
            names |= child.rule_references()
        return names

    def _key(self):
        # type: () -> Tuple[Any, ...]
        return self.children()

    def __eq__(self, other):
        return type(self) is type(other) and self._key() == other._key()

    def __hash__(self):
        return hash((type(self).__name__, self._key()))

    def __repr__(self):
        return '{}({})'.format(
            type(self).__name__,
            ', '.join(repr(part) for part in self._key()),
        )


class Terminal(Expression):
    """A fixed literal sequence of symbols."""

    def __init__(self, literal):
        # type: (SymbolSequence[Hashable]) -> None
        self.literal = literal

    def eval(self, state):
        # type: (ParseState) -> Optional[CST]
        for symbol in self.literal:
            if not state.consume(symbol):
                return None
        return self.literal

    def _key(self):
        # type: () -> Tuple[Any, ...]
        return (self.literal,)


class Sequence(Expression):
    """The concatenation of multiple expressions."""

    def __init__(self, items):
        # type: (List[Expression]) -> None
        self.items = tuple(items)

    def eval(self, state):
        # type: (ParseState) -> Optional[CST]
        """Match each item in order.

        Results of lookahead items are left out of the returned list. The
        cursor is not restored if an item fails.

        Parameters:
            state (ParseState): The state of the match.

        Returns:
            list: The results of the items, or None if any item failed.
        """
        results = []
        for item in self.items:
            cst = item.eval(state)
            if cst is None:
                return None
            if item.has_payload:
                results.append(cst)
        return results

    def children(self):
        # type: () -> Tuple[Expression, ...]
        return self.items


class Choice(Expression):
    """An ordered choice between expressions; the first match wins."""

    def __init__(self, alternatives):
        # type: (List[Expression]) -> None
        self.alternatives = tuple(alternatives)

    def eval(self, state):
        # type: (ParseState) -> Optional[CST]
        position = state.pos
        for alternative in self.alternatives:
            state.pos = position
            cst = alternative.eval(state)
            if cst is not None:
                return cst
        state.pos = position
        return None

    def children(self):
        # type: () -> Tuple[Expression, ...]
        return self.alternatives


class Repetition(Expression):
    """Zero or more of an expression (the * operator).

    Repetition is greedy and never backtracks into itself. It stops at the
    first attempt that fails or that succeeds without consuming input.
    """

    def __init__(self, element):
        # type: (Expression) -> None
        self.element = element

    def eval(self, state):
        # type: (ParseState) -> Optional[CST]
        results = []
        while True:
            position = state.pos
            cst = self.element.eval(state)
            if cst is None or state.pos == position:
                state.pos = position
                break
            results.append(cst)
        return results

    def children(self):
        # type: () -> Tuple[Expression, ...]
        return (self.element,)


class OneOrMore(Repetition):
    """One or more of an expression (the + operator)."""

    def eval(self, state):
        # type: (ParseState) -> Optional[CST]
        position = state.pos
        cst = self.element.eval(state)
        if cst is None:
            state.pos = position
            return None
        return [cst] + super().eval(state)


class ZeroOrOne(Expression):
    """Zero or one of an expression (the ? operator)."""

    def __init__(self, element):
        # type: (Expression) -> None
        self.element = element

    def eval(self, state):
        # type: (ParseState) -> Optional[CST]
        position = state.pos
        cst = self.element.eval(state)
        if cst is None:
            state.pos = position
            return []
        return [cst]

    def children(self):
        # type: () -> Tuple[Expression, ...]
        return (self.element,)


class Not(Expression):
    """Negative lookahead (the ! operator).

    Succeeds iff the element fails. Never consumes input, and contributes
    nothing to an enclosing Sequence.
    """

    has_payload = False

    def __init__(self, element):
        # type: (Expression) -> None
        self.element = element

    def eval(self, state):
        # type: (ParseState) -> Optional[CST]
        position = state.pos
        cst = self.element.eval(state)
        state.pos = position
        if cst is None:
            return True
        return None

    def children(self):
        # type: () -> Tuple[Expression, ...]
        return (self.element,)


class And(Not):
    """Positive lookahead (the & operator)."""

    def eval(self, state):
        # type: (ParseState) -> Optional[CST]
        position = state.pos
        cst = self.element.eval(state)
        state.pos = position
        if cst is None:
            return None
        return True


class RuleApplication(Expression):
    """A reference to a named rule in the grammar.

    This is the only expression that uses the memo table. On the first
    application of a rule at a position, a LeftRecursion marker is stored
    before the rule body is evaluated; if the body re-applies the same rule at
    the same position, it gets a failure from the marker and flags it. The
    result of the first evaluation is the seed. If the marker was flagged, the
    body is evaluated again from the same position, this time reading the
    previous result from the memo table, for as long as each evaluation
    consumes more input than the last.
    """

    def __init__(self, name):
        # type: (str) -> None
        self.name = name

    def eval(self, state):
        # type: (ParseState) -> Optional[CST]
        """Apply the rule at the current position.

        Parameters:
            state (ParseState): The state of the match.

        Returns:
            any: The concrete syntax tree, or None if the match failed.

        Raises:
            NameError: If the rule is not defined in the grammar.
            RecursionError: If the rule would exceed the maximum depth.
        """
        rule_id, body = state.grammar.lookup(self.name)
        position = state.pos
        entry = state.memo.get(position, rule_id)
        if isinstance(entry, LeftRecursion):
            if not entry.detected:
                state._debug_print('left recursion on {} at position {}'.format(self.name, position))
                state.memo.set_marker(position, rule_id, detected=True)
            return None
        elif entry is not None:
            return self._use_memoized(state, entry)
        if state.max_depth is not None and state.depth >= state.max_depth:
            raise RecursionError('exceeded maximum rule depth of {} applying {} at position {}'.format(
                state.max_depth, self.name, position
            ))
        if state.debug:
            state._debug_print('parsing {} at position {} >>>{}'.format(
                self.name, position, one_line_format(state.input[position:position+32])
            ))
        state.depth += 1
        state.memo.set_marker(position, rule_id)
        cst = body.eval(state)
        detected = state.memo.get(position, rule_id).detected
        state.memo.set_resolved(position, rule_id, cst, state.pos)
        if detected and cst is not None:
            cst = self._grow_seed(state, position, rule_id, body)
        state.depth -= 1
        if cst is None:
            state.pos = position
            state._debug_print('failed to match {} at position {}'.format(self.name, position))
        else:
            state._debug_print('matched {} at positions {}-{}'.format(self.name, position, state.pos))
        if not state.memoize:
            state.memo.discard(position, rule_id)
        return cst

    def _grow_seed(self, state, position, rule_id, body):
        # type: (ParseState, int, int, Expression) -> CST
        """Re-apply a left-recursive rule until it stops consuming more input.

        Parameters:
            state (ParseState): The state of the match.
            position (int): The position of the rule application.
            rule_id (int): The id of the rule.
            body (Expression): The definition of the rule.

        Returns:
            any: The longest concrete syntax tree found.
        """
        while True:
            best = state.memo.get(position, rule_id)
            state.pos = position
            cst = body.eval(state)
            if cst is None or state.pos <= best.next_pos:
                break
            state._debug_print('grew {} at position {} to position {}'.format(self.name, position, state.pos))
            state.memo.set_resolved(position, rule_id, cst, state.pos)
        state.pos = best.next_pos
        return best.cst

    @staticmethod
    def _use_memoized(state, entry):
        # type: (ParseState, MemoEntry) -> Optional[CST]
        if entry.cst is not None:
            state.pos = entry.next_pos
        return entry.cst

    def rule_references(self):
        # type: () -> Set[str]
        return {self.name}

    def _key(self):
        # type: () -> Tuple[Any, ...]
        return (self.name,)


OPERATORS = {
    'CHOICE': Choice,
    'SEQUENCE': Sequence,
    'ZERO_OR_MORE': Repetition,
    'ZERO_OR_ONE': ZeroOrOne,
    'ONE_OR_MORE': OneOrMore,
    'AND': And,
    'NOT': Not,
}


def build_expression(definition):
    # type: (Union[PEGExpression, PEGAtom]) -> Expression
    """Convert a tuple definition into an Expression.

    Tuple definitions are of the form (OPERATOR, operand, ...), where the
    operator is one of the keys of OPERATORS. Quoted strings (in either single
    or double quotes) are literals; any other string names a rule.

    Parameters:
        definition (tuple): The definition to convert.

    Returns:
        Expression: The equivalent expression.

    Raises:
        NameError: If the operator is unknown.
    """
    if isinstance(definition, Expression):
        return definition
    elif isinstance(definition, str):
        if re.match(r"^'[^']*'$", definition) or re.match(r'^"[^"]*"$', definition):
            return Terminal(definition[1:-1])
        return RuleApplication(definition)
    elif isinstance(definition, tuple) and definition and definition[0] in OPERATORS:
        operator = OPERATORS[definition[0]]
        operands = [build_expression(operand) for operand in definition[1:]]
        if operator in (Choice, Sequence):
            return operator(operands)
        elif len(operands) != 1:
            raise TypeError('{} takes exactly one operand, got {}'.format(definition[0], len(operands)))
        return operator(operands[0])
    raise NameError('Unknown meta-terminal {}'.format(definition))


class Grammar:
    """A set of named rules.

    Rule names are resolved to integer ids when the grammar is created, in
    declaration order. References to undefined rules are only reported when
    they are applied (or by undefined_references()).
    """

    def __init__(self, rules):
        # type: (Dict[str, Expression]) -> None
        """Initialize the Grammar.

        Parameters:
            rules (dict[str, Expression]): Dictionary of rule definitions.

        Raises:
            TypeError: If a definition is not an Expression.
        """
        for name, expression in rules.items():
            if not isinstance(expression, Expression):
                raise TypeError('definition of {} is not an Expression: {!r}'.format(name, expression))
        self.rules = dict(rules)
        self.rule_ids = {name: rule_id for rule_id, name in enumerate(self.rules)}
        self.definitions = list(self.rules.values())

    @classmethod
    def from_definitions(cls, definitions):
        # type: (Dict[str, Union[PEGExpression, PEGAtom]]) -> Grammar
        """Create a grammar from tuple definitions.

        See build_expression() for the format of the definitions.

        Parameters:
            definitions (dict[str]): Dictionary of term definitions.

        Returns:
            Grammar: The grammar.
        """
        return cls({
            name: build_expression(definition)
            for name, definition in definitions.items()
        })

    def __contains__(self, name):
        return name in self.rule_ids

    def __getitem__(self, name):
        return self.rules[name]

    def __len__(self):
        return len(self.rules)

    def lookup(self, name):
        # type: (str) -> Tuple[int, Expression]
        """Find the id and definition of a rule.

        Parameters:
            name (str): The name of the rule.

        Returns:
            int: The id of the rule.
            Expression: The definition of the rule.

        Raises:
            NameError: If the rule is not defined.
        """
        try:
            rule_id = self.rule_ids[name]
        except KeyError:
            raise NameError('Unknown rule {}'.format(name)) from None
        return rule_id, self.definitions[rule_id]

    def undefined_references(self):
        # type: () -> Set[str]
        """Return the names of rules that are applied but not defined."""
        names = set() # type: Set[str]
        for expression in self.definitions:
            names |= expression.rule_references()
        return names - set(self.rule_ids)


class Matcher:
    """Matcher for Parsing Expression Grammars (PEGs).

    A packrat matcher that also supports left-recursive rules. The matcher
    holds no state between matches, so it can be reused for any number of
    inputs.
    """

    def __init__(self, grammar, start='start', memoize=True, max_depth=DEFAULT_MAX_DEPTH, debug=False):
        # type: (Union[Grammar, Dict[str, Expression]], str, bool, Optional[int], bool) -> None
        """Initialize the Matcher.

        Parameters:
            grammar (Grammar): The grammar, or a dictionary of rule
                definitions.
            start (str): The rule to match the input as. Defaults to 'start'.
            memoize (bool): Whether to cache rule outcomes. Left recursion
                is supported either way. Defaults to True.
            max_depth (int): The maximum depth of nested rule applications,
                or None for no limit. Defaults to DEFAULT_MAX_DEPTH.
            debug (bool): Whether to print matching information.
                Defaults to False.
        """
        if not isinstance(grammar, Grammar):
            grammar = Grammar(grammar)
        self.grammar = grammar
        self.start = start
        self.memoize = memoize
        self.max_depth = max_depth
        self.debug = debug

    def match(self, symbols, start=None):
        # type: (SymbolSequence[Hashable], Optional[str]) -> Optional[CST]
        """Match the entire input as a rule.

        Parameters:
            symbols (Sequence): The input to match. Iterables that do not
                support indexing are read into a tuple first.
            start (str): The rule to match the input as. Defaults to the rule
                from the constructor.

        Returns:
            any: The concrete syntax tree, or None if the rule failed or did
                not consume the entire input.

        Raises:
            NameError: If an undefined rule is applied.
            RecursionError: If the maximum rule depth is exceeded.
        """
        if start is None:
            start = self.start
        if not hasattr(symbols, '__getitem__'):
            symbols = tuple(symbols)
        state = ParseState(
            symbols,
            self.grammar,
            memoize=self.memoize,
            max_depth=self.max_depth,
            debug=self.debug,
        )
        cst = RuleApplication(start).eval(state)
        if cst is not None and state.at_end():
            return cst
        state._debug_print('only matched {} of {} symbols'.format(state.pos, len(symbols)))
        return None


def match(grammar, symbols, start='start', **kwargs):
    # type: (Union[Grammar, Dict[str, Expression]], SymbolSequence[Hashable], str, Any) -> Optional[CST]
    """Match the entire input against a grammar.

    Parameters:
        grammar (Grammar): The grammar, or a dictionary of rule definitions.
        symbols (Sequence): The input to match.
        start (str): The rule to match the input as. Defaults to 'start'.
        **kwargs: Other options for Matcher.

    Returns:
        any: The concrete syntax tree, or None if there is no match.
    """
    return Matcher(grammar, start=start, **kwargs).match(symbols)
