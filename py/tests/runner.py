# Test runner that uses the test model in congruence.json.
#
# Test sets are lists of entries:
#   {"template": ..., "object": ..., "out": true|false, "errs": [...]}
# Template strings of the form `name` refer to a predicate exported by
# congruence, and strings of the form /re/ are compiled to patterns.
# "errs", when present, must equal the collected reasons exactly.
# "err", when present, is a substring of an expected exception message.

import os
import json
import re
from typing import Any, Dict, Callable, TypedDict

import congruence


R_PREDICATE = re.compile(r'^`([a-z_]+)`$')  # Named predicate.
R_PATTERN = re.compile(r'^/(.+)/$')         # Regular expression.


class RunPack(TypedDict):
    spec: Dict[str, Any]
    runset: Callable


def makeRunner(testfile: str):

    def runner(name: str) -> RunPack:
        spec = resolve_spec(name, testfile)

        def runset(testspec, subject):
            for entry in testspec['set']:
                try:
                    template = resolve_template(entry.get('template'))
                    errs = []

                    res = subject(template, entry.get('object'), errs)
                    entry['res'] = res
                    entry['reasons'] = errs
                    check_result(entry, res, errs)

                except Exception as err:
                    handle_error(entry, err)

        return {
            "spec": spec,
            "runset": runset,
        }

    return runner


def resolve_spec(name: str, testfile: str) -> Dict[str, Any]:
    with open(os.path.join(os.path.dirname(__file__), testfile), 'r', encoding='utf-8') as f:
        alltests = json.load(f)

    if name in alltests:
        spec = alltests[name]
    else:
        spec = alltests

    return spec


def resolve_template(val: Any) -> Any:
    if isinstance(val, dict):
        return {k: resolve_template(v) for k, v in val.items()}

    if isinstance(val, str):
        m = R_PREDICATE.match(val)
        if m:
            return getattr(congruence, m.group(1))

        m = R_PATTERN.match(val)
        if m:
            return re.compile(m.group(1))

    # Lists and scalars are literals.
    return val


def check_result(entry, res, errs):
    if 'err' in entry:
        raise AssertionError(
            f"Expected error: {entry['err']}, got: {res}\n"
            f"Entry: {json.dumps(entry, indent=2, default=jsonfallback)}"
        )

    if entry.get('out') != res:
        raise AssertionError(
            f"Expected: {entry.get('out')}, got: {res}\n"
            f"Entry: {json.dumps(entry, indent=2, default=jsonfallback)}"
        )

    if 'errs' in entry and entry['errs'] != errs:
        raise AssertionError(
            f"Expected errs: {entry['errs']}, got: {errs}\n"
            f"Entry: {json.dumps(entry, indent=2, default=jsonfallback)}"
        )


def handle_error(entry, err):
    entry['thrown'] = err
    entry_err = entry.get('err')

    # The test expects this error.
    if entry_err is not None and not isinstance(err, AssertionError):
        if entry_err is True or entry_err in str(err):
            return True

        raise AssertionError(f"ERROR MATCH: [{entry_err}] <=> [{str(err)}]")

    elif isinstance(err, AssertionError):
        raise err

    else:
        import traceback
        raise AssertionError(
            f"{traceback.format_exc()}\nENTRY: " +
            f"{json.dumps(entry, indent=2, default=jsonfallback)}"
        )


def jsonfallback(obj):
    return f"<non-serializable: {type(obj).__name__}>"


__all__ = [
    'makeRunner',
]
