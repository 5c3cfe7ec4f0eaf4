"""
Commands for echo_operator's main entrypoint
"""

# Local
from .run_operator_cmd import RunOperatorCmd
