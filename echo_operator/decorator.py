"""
Decorator for making the authoring of reconcilers easier
"""

# Standard
from typing import Callable, Optional, Type

# Local
from .reconcilable import Reconcilable


def reconciler(  # pylint: disable=too-many-arguments
    group: str,
    version: str,
    kind: str,
    spec_type: Optional[Type] = None,
    status_type: Optional[Type] = None,
) -> Callable[[Type[Reconcilable]], Type[Reconcilable]]:
    """The @reconciler decorator is the primary entrypoint for creating a
    Reconcilable. It sets the class properties that bind the type to a
    group/version/kind.

    Args:
        group:  str
            The apiVersion group for the resource this reconciler manages
        version:  str
            The apiVersion version for the resource this reconciler manages
        kind:  str
            The kind for the resource this reconciler manages
        spec_type:  Optional[Type]
            If given, the type used to parse the spec
        status_type:  Optional[Type]
            If given, the type used to parse the status

    Returns:
        decorator:  Callable[[Type[Reconcilable]], Type[Reconcilable]]
            The decorator function that will be invoked on construction of
            decorated classes
    """

    def decorator(cls: Type[Reconcilable]) -> Type[Reconcilable]:
        cls.group = group
        cls.version = version
        cls.kind = kind
        if spec_type is not None:
            cls.spec_type = spec_type
        if status_type is not None:
            cls.status_type = status_type
        return cls

    return decorator
