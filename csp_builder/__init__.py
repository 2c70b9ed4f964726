"""
csp_builder - Content-Security-Policy header builder and parser
"""

__version__ = "0.1.0"

from csp_builder.logging_config import configure_library_logging

configure_library_logging()

from csp_builder.core.builder import CSPBuilder
from csp_builder.core.compiler import CompileOptions, compile_policy, compile_subgroup
from csp_builder.core.parser import parse_header
from csp_builder.core.report_to import compile_report_endpoints
from csp_builder.core.snippet import FORMAT_APACHE, FORMAT_NGINX
from csp_builder.errors import (
    CSPBuilderError,
    HeadersAlreadySentError,
    InvalidPolicyError,
    UnknownDirectiveError,
    UnsupportedFormatError,
)
from csp_builder.models.directive import DirectiveRule

__all__ = [
    'CSPBuilder',
    'CompileOptions',
    'DirectiveRule',
    'compile_policy',
    'compile_subgroup',
    'compile_report_endpoints',
    'parse_header',
    'FORMAT_APACHE',
    'FORMAT_NGINX',
    'CSPBuilderError',
    'HeadersAlreadySentError',
    'InvalidPolicyError',
    'UnknownDirectiveError',
    'UnsupportedFormatError',
]
