#!/usr/bin/env python3
"""
protoc-gen-validator: protoc plugin emitting ``*_validate.py`` modules.

Plugin mode (no arguments): protoc writes a ``CodeGeneratorRequest`` to
stdin and reads the ``CodeGeneratorResponse`` from stdout::

    protoc --plugin=protoc-gen-validator --validator_out=rules=rules.json:out example.proto

Standalone mode works from a descriptor set written by ``protoc -o``::

    protoc --include_imports -o example.pb example.proto
    protoc-gen-validator --descriptor-set example.pb --rules rules.json --out out example.proto
"""

import argparse
import os
import sys
from typing import Dict, List, Optional

from google.protobuf import descriptor_pb2
from google.protobuf.compiler import plugin_pb2

from .config import ConfigError, GeneratorConfig, parse_parameter
from .errors import GenerationError
from .rules import RuleDocumentError, RuleSet, describe
from .schema import SchemaIndex
from .validator import generate_files


def _report_rules(index: SchemaIndex, rules: Dict[str, RuleSet]) -> None:
    for name, ruleset in sorted(rules.items()):
        if name not in index.messages:
            print("[!] rules given for %s, which is not declared in any input file" % name, file=sys.stderr)
            continue
        if ruleset.message:
            print("[+] %s: %s" % (name, ', '.join(describe(ruleset.message))), file=sys.stderr)
        for field_name, field_rules in ruleset.fields.items():
            print("[+] %s.%s: %s" % (name, field_name, ', '.join(describe(field_rules))), file=sys.stderr)


def run(config: GeneratorConfig, protos: List[descriptor_pb2.FileDescriptorProto],
        files: List[str]) -> Dict[str, str]:
    """Load the configured rules and functions and generate every requested file."""
    rules = config.load_rules()
    registry = config.load_registry()
    index = SchemaIndex(protos, generate=files)
    if config.verbose:
        _report_rules(index, rules)
    outputs = generate_files(index, rules, registry, files)
    if config.verbose:
        for name in outputs:
            print("[+] generated %s" % name, file=sys.stderr)
    return outputs


def process_request(request: plugin_pb2.CodeGeneratorRequest) -> plugin_pb2.CodeGeneratorResponse:
    """Turn one CodeGeneratorRequest into a response; errors go to ``response.error``."""
    response = plugin_pb2.CodeGeneratorResponse()
    response.supported_features = plugin_pb2.CodeGeneratorResponse.FEATURE_PROTO3_OPTIONAL
    try:
        config = parse_parameter(request.parameter)
        outputs = run(config, list(request.proto_file), list(request.file_to_generate))
    except (GenerationError, ConfigError, RuleDocumentError) as e:
        print("[X] %s" % e, file=sys.stderr)
        response.error = str(e)
        return response

    for name, content in outputs.items():
        f = response.file.add()
        f.name = name
        f.content = content
    return response


def plugin_main() -> int:
    data = sys.stdin.buffer.read()
    request = plugin_pb2.CodeGeneratorRequest.FromString(data)
    response = process_request(request)
    sys.stdout.buffer.write(response.SerializeToString())
    sys.stdout.buffer.flush()
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    if argv is None:
        argv = sys.argv[1:]
    if not argv:
        return plugin_main()

    ap = argparse.ArgumentParser(description="Generate *_validate.py modules from a descriptor set.")
    ap.add_argument("files", nargs="+", help="Schema file names (as recorded in the descriptor set) to generate")
    ap.add_argument("--descriptor-set", dest="descriptor_set", required=True,
                    help="FileDescriptorSet written by protoc -o (use --include_imports)")
    ap.add_argument("--rules", dest="rules", default="", help="JSON rule document")
    ap.add_argument("--func", dest="functions", action="append", default=[],
                    help="Custom function template as NAME=PATH (repeatable)")
    ap.add_argument("--out", dest="out", default=".", help="Output directory")
    ap.add_argument("--verbose", action="store_true", help="Verbose logging")
    args = ap.parse_args(argv)

    try:
        config = GeneratorConfig(rules_path=args.rules, verbose=args.verbose)
        for item in args.functions:
            name, sep, path = item.partition("=")
            if not sep or not name or not path:
                raise ConfigError("--func expects NAME=PATH, got %r" % item)
            config.function_paths[name] = path
        with open(args.descriptor_set, "rb") as f:
            descriptor_set = descriptor_pb2.FileDescriptorSet.FromString(f.read())
        outputs = run(config, list(descriptor_set.file), args.files)
    except (GenerationError, ConfigError, RuleDocumentError, OSError) as e:
        print("[X] %s" % e, file=sys.stderr)
        return 1

    for name, content in outputs.items():
        path = os.path.join(args.out, name)
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(content)
        print("[OK] Wrote %s" % path, file=sys.stderr)
    return 0


if __name__ == "__main__":
    sys.exit(main())
