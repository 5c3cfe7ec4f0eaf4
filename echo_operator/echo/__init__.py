"""
The EchoResource kind
"""

# Local
from .reconciler import GROUP, KIND, VERSION, EchoReconciler, make_echo_resource
from .types import EchoSpec, EchoStatus
