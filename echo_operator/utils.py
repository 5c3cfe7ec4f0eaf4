"""
Common utilities shared across the library
"""

# Standard
from typing import Any
import hashlib

# First Party
import alog

# Local
from . import constants

log = alog.use_channel("UTILS")

# Sentinel for missing dict values
__MISSING__ = "__MISSING__"

## Dicts #######################################################################


def nested_get(dct: dict, key: str, dflt=None) -> Any:
    """Helper to get values from a dict using 'foo.bar' key notation

    Args:
        dct:  dict
            The dict to read from
        key:  str
            Key that may contain '.' notation indicating dict nesting

    Returns:
        val:  Any
            Whatever is found at the given key or dflt if the key is not found.
            This includes missing intermediate dicts.
    """
    parts = key.split(constants.NESTED_DICT_DELIM)
    for i, part in enumerate(parts[:-1]):
        dct = dct.get(part, __MISSING__)
        if dct is __MISSING__:
            return dflt
        if not isinstance(dct, dict):
            raise TypeError(
                f"Intermediate key {constants.NESTED_DICT_DELIM.join(parts[:i])} is not a dict"
            )
    return dct.get(parts[-1], dflt)


## Names #######################################################################


def get_truncated_name(name: str) -> str:
    """Perform truncation on a cluster name to make it conform to kubernetes
    limits while remaining unique.

    Args:
        name:  str
            The name of the resource that should be truncated and made unique

    Returns:
        truncated_name:  str
            A version of name that has been truncated and made unique
    """
    if len(name) > constants.MAX_NAME_LEN:
        sha = hashlib.sha256()
        sha.update(name.encode("utf-8"))
        trunc_name = name[: constants.MAX_NAME_LEN - 4] + sha.hexdigest()[:4]
        log.debug2("Truncated name [%s] -> [%s]", name, trunc_name)
        name = trunc_name
    return name


def split_api_version(api_version: str):
    """Split an apiVersion into its (group, version) parts. Core resources
    (e.g. "v1") have an empty group.
    """
    if "/" in api_version:
        group, version = api_version.split("/", 1)
        return group, version
    return "", api_version


## General #####################################################################


class classproperty:  # pylint: disable=invalid-name,too-few-public-methods
    """@classmethod+@property
    CITE: https://stackoverflow.com/a/22729414
    """

    def __init__(self, func):
        self.func = classmethod(func)

    def __get__(self, *args):
        return self.func.__get__(*args)()
