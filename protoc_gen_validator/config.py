"""
Generator configuration.

protoc hands plugin options over as a single parameter string, e.g.::

    protoc --validator_out=rules=rules.json,func=is_ipv4=ipv4.j2,verbose=true:out

Recognised keys:

- ``rules=<path>``: JSON rule document (see :mod:`protoc_gen_validator.rules`)
- ``func=<name>=<path>``: Jinja2 template of a custom function, repeatable
- ``verbose=true|false``: diagnostics on stderr
"""

from dataclasses import dataclass, field
from typing import Dict

from .functions import FunctionRegistry
from .rules import RuleSet, load_rule_document

_TRUE = ('1', 'true', 'yes', 'on')
_FALSE = ('0', 'false', 'no', 'off', '')


class ConfigError(ValueError):
    """Malformed plugin parameter or unreadable configured file."""


@dataclass
class GeneratorConfig:
    rules_path: str = ''
    function_paths: Dict[str, str] = field(default_factory=dict)
    verbose: bool = False

    def load_rules(self) -> Dict[str, RuleSet]:
        """Load the rule document, or return no rules when none is configured."""
        if not self.rules_path:
            return {}
        try:
            return load_rule_document(self.rules_path)
        except OSError as e:
            raise ConfigError('can not read rule document %s: %s' % (self.rules_path, e)) from e

    def load_templates(self) -> Dict[str, str]:
        templates = {}
        for name, path in self.function_paths.items():
            try:
                with open(path, 'r', encoding='utf-8') as f:
                    templates[name] = f.read()
            except OSError as e:
                raise ConfigError('can not read template of function %s: %s' % (name, e)) from e
        return templates

    def load_registry(self) -> FunctionRegistry:
        return FunctionRegistry.from_templates(self.load_templates())


def _parse_bool(key: str, value: str) -> bool:
    if value.lower() in _TRUE:
        return True
    if value.lower() in _FALSE:
        return False
    raise ConfigError('%s expects true or false, got %r' % (key, value))


def parse_parameter(parameter: str) -> GeneratorConfig:
    """
    Parse the comma separated ``key=value`` plugin parameter.

    A bare key is shorthand for ``key=true``. Unknown keys are rejected.

        >>> parse_parameter('rules=r.json,verbose').verbose
        True
    """
    config = GeneratorConfig()
    items = [item.strip() for item in (parameter or '').split(',')]
    for item in items:
        if not item:
            continue
        key, sep, value = item.partition('=')
        key = key.strip()
        if not sep:
            value = 'true'
        if key == 'rules':
            config.rules_path = value
        elif key == 'func':
            name, sep, path = value.partition('=')
            if not sep or not name or not path:
                raise ConfigError('func expects <name>=<template path>, got %r' % value)
            if name in config.function_paths:
                raise ConfigError('function %s configured twice' % name)
            config.function_paths[name] = path
        elif key == 'verbose':
            config.verbose = _parse_bool(key, value)
        else:
            raise ConfigError('unknown parameter %r' % key)
    return config
