"""Generate Python validate functions for protobuf messages from declarative field rules."""

__version__ = '0.1.0'

from .errors import GenerationError
from .functions import FunctionRegistry, TemplateFunction
from .rules import Rule, RuleKey, RuleSet, ValidationValue, load_rule_document, parse_rule_document
from .runtime import ValidationError
from .schema import SchemaIndex
from .validator import ValidatorGenerator, generate_files

__all__ = [
    'FunctionRegistry',
    'GenerationError',
    'Rule',
    'RuleKey',
    'RuleSet',
    'SchemaIndex',
    'TemplateFunction',
    'ValidationError',
    'ValidationValue',
    'ValidatorGenerator',
    'generate_files',
    'load_rule_document',
    'parse_rule_document',
]
