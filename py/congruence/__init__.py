# congruence init

import logging

from .congruence import (
    CongruenceError,
    ErrorSink,
    Predicate,
    Template,
    TemplateError,
    UNDEF,
    check,
    isboolean,
    isdefined,
    isfunc,
    islist,
    ismap,
    isnull,
    isnumber,
    isstring,
    isvaliddate,
    match,
    named,
    not_,
    or_,
    similar,
    stringify,
)


logging.getLogger(__name__).addHandler(logging.NullHandler())


__all__ = [
    'CongruenceError',
    'ErrorSink',
    'Predicate',
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
    'similar',
    'stringify',
]
