"""Command-line tools for crash monitor configuration files.

Usage:
    python -m crashguard.lib.config [COMMAND] [OPTIONS]

Commands:
    validate    - Validate configuration file
    create      - Create new configuration file
    schema      - Print the configuration JSON schema
    show        - Show the effective configuration (with env overrides)

Examples:
    python -m crashguard.lib.config validate crashguard.yaml
    python -m crashguard.lib.config create --output crashguard.yaml --contact +15551234567
"""

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

import yaml

from . import (
    ConfigurationError,
    load_config_from_file,
    save_config_to_file,
)
from .validation import (
    validate_config_file,
    create_config_schema,
    generate_example_config
)
from ...models.monitor_configuration import MonitorConfiguration


def create_parser() -> argparse.ArgumentParser:
    """Create command line argument parser."""
    parser = argparse.ArgumentParser(
        prog="python -m crashguard.lib.config",
        description="CrashGuard Configuration Management",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose output"
    )

    subparsers = parser.add_subparsers(
        dest="command",
        help="Available commands",
        metavar="COMMAND"
    )

    validate_parser = subparsers.add_parser("validate", help="Validate configuration file")
    validate_parser.add_argument("config_file", type=Path, help="Configuration file to validate")
    validate_parser.add_argument("--strict", action="store_true", help="Treat unknown keys as errors")
    validate_parser.add_argument(
        "--format",
        choices=["text", "json"],
        default="text",
        help="Output format for validation results"
    )

    create_parser = subparsers.add_parser("create", help="Create new configuration file")
    create_parser.add_argument("--output", "-o", type=Path, required=True, help="Output file path")
    create_parser.add_argument("--contact", help="Emergency contact number")
    create_parser.add_argument("--overwrite", action="store_true", help="Overwrite existing file")

    schema_parser = subparsers.add_parser("schema", help="Print configuration schema")
    schema_parser.add_argument("--output", "-o", type=Path, help="Output schema file (default: stdout)")
    schema_parser.add_argument("--format", choices=["json", "yaml"], default="json", help="Schema format")

    show_parser = subparsers.add_parser("show", help="Show effective configuration")
    show_parser.add_argument("config_file", type=Path, help="Configuration file")

    return parser


def cmd_validate(args) -> int:
    """Handle validate command."""
    result = validate_config_file(args.config_file, strict=args.strict)

    if args.format == "json":
        print(json.dumps(result.get_summary(), indent=2))
    else:
        print(f"Validating configuration: {args.config_file}")
        result.print_results(verbose=args.verbose or not result.is_valid)

    return 0 if result.is_valid else 1


def cmd_create(args) -> int:
    """Handle create command."""
    if args.output.exists() and not args.overwrite:
        print(f"File already exists: {args.output}", file=sys.stderr)
        print("Use --overwrite to replace existing file")
        return 1

    config_data = generate_example_config()
    if args.contact:
        config_data["contact"] = args.contact

    config = MonitorConfiguration(**config_data)
    save_config_to_file(config, args.output)

    print(f"Created configuration file: {args.output}")
    if not config.has_contact:
        print("Remember to set 'contact' before enabling crash detection")
    return 0


def cmd_schema(args) -> int:
    """Handle schema command."""
    schema = create_config_schema()

    if args.format == "yaml":
        output_content = yaml.dump(schema, default_flow_style=False, indent=2)
    else:
        output_content = json.dumps(schema, indent=2, sort_keys=True)

    if args.output:
        with open(args.output, 'w', encoding='utf-8') as f:
            f.write(output_content)
        print(f"Schema exported to: {args.output}")
    else:
        print(output_content)

    return 0


def cmd_show(args) -> int:
    """Handle show command."""
    config = load_config_from_file(args.config_file, validate=True)
    print(yaml.dump(config.export_dict(), default_flow_style=False, indent=2, sort_keys=False))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the configuration CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    commands = {
        "validate": cmd_validate,
        "create": cmd_create,
        "schema": cmd_schema,
        "show": cmd_show
    }

    try:
        return commands[args.command](args)
    except KeyboardInterrupt:
        print("\nOperation cancelled by user")
        return 1
    except (ConfigurationError, OSError, ValueError) as e:
        print(f"{args.command} error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
