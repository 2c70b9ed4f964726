"""
csp_builder CLI
"""
import argparse
import sys

import structlog

from csp_builder.config.loader import apply_settings, get_settings
from csp_builder.core.builder import CSPBuilder
from csp_builder.core.snippet import SNIPPET_FORMATS
from csp_builder.errors import CSPBuilderError
from csp_builder.logging_config import setup_logging

logger = structlog.get_logger()


def build_parser():
    """Argument parser for all subcommands"""
    parser = argparse.ArgumentParser(
        prog="csp_builder",
        description="Build and parse Content-Security-Policy headers",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Print the header value for a JSON policy
  python -m csp_builder compile policy.json

  # Print every header line, legacy X- names included
  python -m csp_builder compile policy.json --headers --legacy

  # Write an nginx include
  python -m csp_builder snippet policy.json csp.conf --format nginx

  # Turn an existing header back into a JSON policy
  python -m csp_builder parse "default-src 'self'; img-src data:"
        """
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    compile_parser = subparsers.add_parser('compile', help='Compile a JSON policy')
    compile_parser.add_argument('policy', nargs='?', help='Policy JSON file (default: CSP_POLICY_FILE)')
    compile_parser.add_argument('--headers', action='store_true',
                                help='Print "Name: value" header lines instead of the bare value')
    compile_parser.add_argument('--legacy', action='store_true',
                                help='Include X-Content-Security-Policy and X-Webkit-CSP')

    snippet_parser = subparsers.add_parser('snippet', help='Write a web server config snippet')
    snippet_parser.add_argument('policy', help='Policy JSON file')
    snippet_parser.add_argument('output', help='Snippet file to write')
    snippet_parser.add_argument('--format', choices=SNIPPET_FORMATS, default=None,
                                help='Snippet format (default: CSP_SNIPPET_FORMAT)')

    parse_parser = subparsers.add_parser('parse', help='Parse a header into a JSON policy')
    parse_parser.add_argument('header', help='Content-Security-Policy header value')
    parse_parser.add_argument('--output', help='Write the policy JSON to this file')

    return parser


def main(argv=None):
    """Main CLI entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    # Logs go to stderr before settings load; stdout is reserved for output.
    setup_logging()
    settings = get_settings()
    setup_logging(log_level=settings.log_level, json_format=settings.log_json)

    try:
        if args.command == 'compile':
            return cmd_compile(args)
        elif args.command == 'snippet':
            return cmd_snippet(args)
        elif args.command == 'parse':
            return cmd_parse(args)
    except (CSPBuilderError, OSError) as e:
        logger.error("cli_command_failed", command=args.command, error=str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return 0


def _load(path):
    """Load a policy file and apply the configured compatibility modes"""
    path = path or get_settings().policy_file
    if not path:
        raise CSPBuilderError("No policy file given and CSP_POLICY_FILE is not set")
    return apply_settings(CSPBuilder.from_file(path))


def cmd_compile(args):
    """Execute compile command"""
    csp = _load(args.policy)
    if not args.headers:
        print(csp.get_compiled_header())
        return 0

    legacy = args.legacy or get_settings().legacy_headers
    for name, value in csp.get_require_headers():
        print(f"{name}: {value}")
    for name, value in csp.get_header_array(legacy=legacy).items():
        print(f"{name}: {value}")
    return 0


def cmd_snippet(args):
    """Execute snippet command"""
    csp = _load(args.policy)
    fmt = args.format or get_settings().snippet_format
    csp.save_snippet(args.output, fmt)
    print(f"Snippet saved to {args.output}")
    return 0


def cmd_parse(args):
    """Execute parse command"""
    csp = CSPBuilder.from_header(args.header)
    if args.output:
        csp.save_to_file(args.output)
        print(f"Policy saved to {args.output}")
    else:
        print(csp.export_policies())
    return 0


if __name__ == '__main__':
    sys.exit(main())
