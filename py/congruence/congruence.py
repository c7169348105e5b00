# Copyright (c) 2025 Congruence contributors. MIT LICENSE.
#
# Congruence
# ==========
#
# Match loosely-typed JSON-like data against a template, "by example".
# The template is the schema: its leaves are literal values, regular
# expressions, or predicate functions, and its maps are matched key by
# key. Mismatches are collected as human-readable reasons.
#
# Main utilities
# - match: test an object against a template, collecting reasons.
# - similar: as match, but object keys the template does not name are ignored.
# - check: as match, but raise CongruenceError on mismatch.
# - not_: negate a template node.
# - or_: match any one of several template nodes.
#
# Minor utilities
# - isdefined, ismap, islist, isnumber, isstring, isboolean, isnull, isfunc:
#   leaf predicates identifying value kinds.
# - isvaliddate: predicate factory for date strings.
# - named: pair a predicate with the name used in reasons.
# - stringify: human-friendly string version of a value.
#
# Template keys
# - '(?)key': optional key, ignored when absent from the object.
# - '(+)': rest key, matches any object key not otherwise matched.


from typing import *
from datetime import date, datetime
import functools
import inspect
import json
import logging
import re


log = logging.getLogger(__name__)


# Special keys.
S_OPTIONAL = '(?)'
S_REST = '(+)'

# Leaf kinds.
S_literal = 'literal'
S_pattern = 'pattern'
S_predicate = 'predicate'
S_template = 'template'
S_undefined = 'undefined'

# General strings.
S_MT = ''
S_anonymous = 'anonymous'
S_or = 'or'
S_not = 'not'
S_match = 'match'
S_similar = 'similar'

# Deepest template nesting accepted; anything deeper is taken to be cyclic.
MAXDEPTH = 64


class _Undefined:
    def __repr__(self):
        return 'UNDEF'

    def __bool__(self):
        return False


# The undefined value: an absent key or template node. None is JSON null,
# a literal like any other.
UNDEF = _Undefined()


class CongruenceError(ValueError):
    """An object failed to match its template."""

    def __init__(self, message: str, errs: Optional[List[Any]] = None) -> None:
        super().__init__(message)
        self.errs = list(errs or [])


class TemplateError(CongruenceError):
    """A template that cannot be matched at all (programmer error)."""
    pass


class ErrorSink:
    """
    Ordered, deduplicating collector of mismatch reasons.

    The sink wraps the caller's list in place, so reasons are visible
    after the call returns. Reasons pushed since a checkpoint can be
    discarded with rollback, which is how abandoned alternatives (`or_`,
    rest key retries) avoid leaking their reasons.
    """

    def __init__(self, errs: Optional[List[Any]] = None) -> None:
        self.errs = [] if errs is None else errs

    @classmethod
    def of(cls, errs: Any = None) -> 'ErrorSink':
        "Adapt None, a list, or an existing sink."
        if isinstance(errs, ErrorSink):
            return errs
        return cls(errs)

    def push(self, err: Any) -> None:
        "Append a reason, unless already present."
        if err not in self.errs:
            self.errs.append(err)

    # Predicates can treat the sink as a plain list.
    append = push

    def checkpoint(self) -> int:
        return len(self.errs)

    def rollback(self, mark: int) -> None:
        "Discard every reason pushed since mark."
        del self.errs[mark:]

    def __len__(self) -> int:
        return len(self.errs)

    def __iter__(self):
        return iter(self.errs)

    def __contains__(self, err: Any) -> bool:
        return err in self.errs

    def __getitem__(self, index):
        return self.errs[index]

    def __repr__(self):
        return f'ErrorSink({self.errs!r})'


class Predicate:
    """
    A callable template leaf, paired with the name used in reasons.

    Callables with two required positional arguments are given the error
    sink as their second argument, so they can report specific reasons.
    Quiet predicates (combinators, curried matchers) report their own
    reasons; no generic "returned false" reason is added for them.
    """

    def __init__(self, fn: Callable, name: Any = UNDEF, quiet: bool = False) -> None:
        if isinstance(fn, Predicate):
            name = fn.name if name is UNDEF else name
            quiet = quiet or fn.quiet
            fn = fn.fn

        self.fn = fn
        self.name = _fnname(fn) if name is UNDEF else name
        self.quiet = quiet
        self.witherrs = _takes_errs(fn)

    def test(self, value: Any, sink: ErrorSink) -> bool:
        if self.witherrs:
            return bool(self.fn(value, sink))
        return bool(self.fn(value))

    def __call__(self, value: Any, errs: Any = None) -> bool:
        return self.test(value, ErrorSink.of(errs))

    def __repr__(self):
        return f'<Predicate {self.name}>'


class Template:
    """
    A template compiled for matching.

    Key markers are parsed and leaf kinds resolved once, so a Template
    can be built at module load and reused across any number of match
    calls. The source mapping is never modified.
    """

    def __init__(self, spec: Any, _depth: int = 0) -> None:
        if isinstance(spec, Template):
            spec = spec.spec

        if not ismap(spec):
            raise TemplateError(f'Template must be a mapping, not: {stringify(spec)}')

        if MAXDEPTH < _depth:
            raise TemplateError(
                f'Template nesting is deeper than {MAXDEPTH} levels (cyclic template?)')

        self.spec = spec
        self.keys: Dict[Any, Tuple[bool, Tuple[str, Any]]] = {}
        self.rest = UNDEF

        for rawkey, child in spec.items():
            if S_REST == rawkey:
                self.rest = _compile(child, _depth + 1)
                continue

            key, optional = parsekey(rawkey)

            # The optional form of a key wins over the required form.
            if key in self.keys:
                if not optional:
                    log.debug('Template key %r shadowed by %r', rawkey, S_OPTIONAL + key)
                    continue
                log.debug('Template key %r shadowed by %r', key, rawkey)

            self.keys[key] = (optional, _compile(child, _depth + 1))

    def __repr__(self):
        return f'Template({list(self.spec.keys())!r})'


def isdefined(val: Any = UNDEF) -> bool:
    "Value is defined. None (JSON null) is defined."
    return val is not UNDEF


def ismap(val: Any = UNDEF) -> bool:
    "Value is a plain map (dict): not a list, function or pattern."
    return isinstance(val, dict)


def islist(val: Any = UNDEF) -> bool:
    "Value is a list."
    return isinstance(val, list)


def isnumber(val: Any = UNDEF) -> bool:
    "Value is an int or float. Booleans are not numbers."
    return isinstance(val, (int, float)) and not isinstance(val, bool)


def isstring(val: Any = UNDEF) -> bool:
    "Value is a string."
    return isinstance(val, str)


def isboolean(val: Any = UNDEF) -> bool:
    "Value is True or False."
    return isinstance(val, bool)


def isnull(val: Any = UNDEF) -> bool:
    "Value is None (JSON null)."
    return val is None


def isfunc(val: Any = UNDEF) -> bool:
    "Value is a function."
    return callable(val)


def isvaliddate(formats: Any = UNDEF) -> Callable[[Any], bool]:
    """
    Build a predicate accepting dates. Strings must parse with one of the
    given strptime formats, or as ISO 8601 when no formats are given.
    date and datetime instances are always accepted.
    """
    if formats is UNDEF or formats is None:
        formats = []
    elif isinstance(formats, str):
        formats = [formats]
    else:
        formats = list(formats)

    def isvaliddate(val):
        if isinstance(val, (date, datetime)):
            return True

        if not isinstance(val, str):
            return False

        if 0 == len(formats):
            try:
                datetime.fromisoformat(val)
                return True
            except ValueError:
                return False

        for fmt in formats:
            try:
                datetime.strptime(val, fmt)
                return True
            except ValueError:
                continue

        return False

    return isvaliddate


def named(name: str, fn: Callable) -> Predicate:
    "Pair a predicate with the name used when it returns false."
    return Predicate(fn, name)


def parsekey(key: Any) -> Tuple[Any, bool]:
    "Split a template key into the object key it names, and its optional flag."
    if isinstance(key, str) and key.startswith(S_OPTIONAL):
        return key[len(S_OPTIONAL):], True
    return key, False


def stringify(val: Any = UNDEF) -> str:
    "Safely stringify a value for reasons (NOT JSON!)."
    if val is UNDEF:
        return 'undefined'

    if isinstance(val, str):
        return val

    if isinstance(val, re.Pattern):
        return '/' + val.pattern + '/'

    if isinstance(val, Predicate):
        return val.name

    if isinstance(val, Template):
        return repr(val)

    if callable(val):
        return _fnname(val)

    try:
        valstr = json.dumps(val, sort_keys=True, separators=(',', ':'))
        return valstr.replace('"', S_MT)
    except (TypeError, ValueError):
        return str(val)


def match(template: Any, obj: Any = UNDEF, errs: Any = None) -> Any:
    """
    Returns True if obj matches template.

    Every key of a template map must be present in obj, and every key of
    obj must be named by the template, unless the key is optional ('(?)a')
    or absorbed by the rest key ('(+)'). Reasons for any mismatch are
    appended to errs (a list or ErrorSink), without duplicates; reasons
    already in errs are kept.

    With obj omitted, returns a predicate matching its argument against
    template, for use as a nested template leaf.
    """
    if obj is UNDEF:
        return _curry(template, False, S_match)
    return _match(template, obj, errs, False)


def similar(template: Any, obj: Any = UNDEF, errs: Any = None) -> Any:
    """
    Returns True if obj matches template, ignoring any object keys the
    template does not name. Curried like match.
    """
    if obj is UNDEF:
        return _curry(template, True, S_similar)
    return _match(template, obj, errs, True)


def check(template: Any, obj: Any) -> Any:
    "Returns obj if it matches template, otherwise raises CongruenceError."
    errs = []
    if not match(template, obj, errs):
        raise CongruenceError(
            'Incongruent object: ' + ' | '.join(stringify(err) for err in errs), errs)
    return obj


def not_(node: Any) -> Predicate:
    """
    Negate a template node.

    Reasons recorded while testing the inner node are always discarded;
    when the inner node matches, a single reason of its own is recorded.
    """
    inner = _compile(node)
    name = S_not + '(' + _nodename(inner) + ')'

    def negate(value, errs):
        mark = errs.checkpoint()
        ok = _subtree(inner, value, errs)
        errs.rollback(mark)

        if ok:
            errs.push(f'{name}({stringify(value)}) returned false')

        return not ok

    return Predicate(negate, name, quiet=True)


def or_(*nodes: Any) -> Predicate:
    """
    Match any one of the given template nodes, tried in order.

    The first match wins and discards the reasons of the operands tried
    before it. If none match, only the reasons of the last operand are
    kept. Map operands name the keys they require: object keys they do
    not name are ignored, as with similar.
    """
    if 0 == len(nodes):
        raise TemplateError('or_ requires at least one operand')

    operands = [_compile(node) for node in nodes]

    def either(value, errs):
        mark = errs.checkpoint()

        for operand in operands:
            errs.rollback(mark)
            if _subtree(operand, value, errs, True):
                errs.rollback(mark)
                return True

        return False

    return Predicate(either, S_or, quiet=True)


# Internal utilities
# ==================

def _match(template, obj, errs, opened):
    sink = ErrorSink.of(errs)
    mark = sink.checkpoint()

    valid = True
    if not ismap(obj):
        sink.push("'object' must be a mapping")
        valid = False

    if not (ismap(template) or isinstance(template, Template)):
        sink.push("'template' must be a mapping")
        valid = False

    if not valid:
        return False

    root = template if isinstance(template, Template) else Template(template)

    try:
        ok = _keys(root, obj, sink, opened)
    except TemplateError:
        sink.rollback(mark)
        raise
    except RecursionError as err:
        sink.rollback(mark)
        raise TemplateError('Recursion limit reached while matching (cyclic template?)') from err

    if not ok:
        log.debug('Object does not match %r: %d reason(s)', root, len(sink) - mark)

    return ok


def _curry(template, opened, name):
    # Compile once up front; a malformed template is left for _match to report.
    root = Template(template) if ismap(template) else template

    def curried(value, errs):
        return _match(root, value, errs, opened)

    return Predicate(curried, name, quiet=True)


# Resolve the leaf kind of a template node, compiling nested maps.
def _compile(node, _depth=0):
    if node is UNDEF:
        return (S_undefined, node)
    if isinstance(node, Template):
        return (S_template, node)
    if isinstance(node, Predicate):
        return (S_predicate, node)
    if isinstance(node, re.Pattern):
        return (S_pattern, node)
    if callable(node):
        return (S_predicate, Predicate(node))
    if ismap(node):
        return (S_template, Template(node, _depth))
    return (S_literal, node)


# Recurse into a subtree and test each node against the template.
def _subtree(node, value, sink, opened=False):
    kind, tval = node

    # A leaf is reached. An empty map is still walked against a nested
    # template, so that optional keys can be omitted.
    if S_template != kind or not ismap(value):
        return _leaf(node, value, sink)

    return _keys(tval, value, sink, opened)


def _keys(template, obj, sink, opened):
    ok = True

    for key, (optional, child) in template.keys.items():
        if key not in obj:
            # An optional key with no value is ignored.
            if not optional:
                sink.push(f'missing key {stringify(key)}')
                ok = False
            continue

        ok = _member(template, child, obj[key], sink, opened) and ok

    for key, val in obj.items():
        if key in template.keys or S_REST == key:
            continue

        if template.rest is not UNDEF:
            ok = _subtree(template.rest, val, sink, opened) and ok
        elif not opened:
            sink.push(f'unexpected key {stringify(key)}')
            ok = False

    return ok


# Match a named key, retrying against the rest template on failure. Only
# the reasons of the final attempt are kept.
def _member(template, child, val, sink, opened):
    mark = sink.checkpoint()

    if _subtree(child, val, sink, opened):
        return True

    if template.rest is UNDEF:
        return False

    sink.rollback(mark)
    return _subtree(template.rest, val, sink, opened)


# Test a value against a single template node, and report any errors.
def _leaf(node, value, sink):
    kind, tval = node

    if S_undefined == kind:
        sink.push('no match for ' + _jsonify(value))
        return False

    # Only reached for values that are not maps.
    if S_template == kind:
        sink.push(f'expected ({stringify(value)}) to be an object')
        return False

    if S_pattern == kind:
        if tval.search(value if isinstance(value, str) else stringify(value)):
            return True
        sink.push(f'expected {stringify(tval)} to match {stringify(value)}')
        return False

    if S_predicate == kind:
        mark = sink.checkpoint()
        if tval.test(value, sink):
            sink.rollback(mark)
            return True
        if not tval.quiet:
            sink.push(f'{tval.name}({stringify(value)}) returned false')
        return False

    if _equal(tval, value):
        return True

    sink.push(f'expected ({stringify(tval)}) to equal {stringify(value)}')
    return False


# Literal equality, without Python's True == 1.
def _equal(a, b):
    if isinstance(a, bool) or isinstance(b, bool):
        return type(a) is type(b) and a == b
    return a == b


def _nodename(node):
    kind, tval = node
    if S_template == kind:
        return S_template
    return stringify(tval)


def _fnname(fn):
    if isinstance(fn, functools.partial):
        return _fnname(fn.func)

    name = getattr(fn, '__name__', UNDEF)
    if not isinstance(name, str) or '<lambda>' == name:
        return S_anonymous

    return name


def _takes_errs(fn):
    try:
        params = inspect.signature(fn).parameters.values()
    except (TypeError, ValueError):
        # Some builtins have no signature; they are called with the value only.
        return False

    positional = 0
    for param in params:
        if param.VAR_POSITIONAL == param.kind:
            return True
        # Defaulted parameters are not given the sink.
        if (param.kind in (param.POSITIONAL_ONLY, param.POSITIONAL_OR_KEYWORD)
                and param.empty is param.default):
            positional += 1

    return 1 < positional


def _jsonify(val):
    if val is UNDEF:
        return 'undefined'
    try:
        return json.dumps(val, sort_keys=True, separators=(',', ':'))
    except (TypeError, ValueError):
        return stringify(val)


__all__ = [
    'CongruenceError',
    'ErrorSink',
    'MAXDEPTH',
    'Predicate',
    'S_OPTIONAL',
    'S_REST',
    'Template',
    'TemplateError',
    'UNDEF',
    'check',
    'isboolean',
    'isdefined',
    'isfunc',
    'islist',
    'ismap',
    'isnull',
    'isnumber',
    'isstring',
    'isvaliddate',
    'match',
    'named',
    'not_',
    'or_',
    'parsekey',
    'similar',
    'stringify',
]
