#!/usr/bin/env python
"""
Run the echo operator. With no command given, the operator is started with the
run command.
"""

# Standard
from typing import Any, Dict, Iterator, List, Optional, Tuple
import argparse
import sys

# First Party
import alog

# Local
from . import config
from .cmd import RunOperatorCmd
from .log_format import configure_logging

log = alog.use_channel("MAIN")

## Library Config Args #########################################################


def _str_to_bool(value: str) -> bool:
    if value.lower() in ("true", "yes", "1"):
        return True
    if value.lower() in ("false", "no", "0"):
        return False
    raise argparse.ArgumentTypeError(f"Expected a boolean, got [{value}]")


def _config_leaves(
    values: Dict[str, Any], path: Tuple[str, ...] = ()
) -> Iterator[Tuple[Tuple[str, ...], Any]]:
    """Walk the config yielding the path and value of every non-dict entry"""
    for key, value in values.items():
        if isinstance(value, dict):
            yield from _config_leaves(value, path + (key,))
        else:
            yield path + (key,), value


def add_config_args(parser: argparse.ArgumentParser) -> Dict[str, Tuple[str, ...]]:
    """Add a --dotted.key override for each library config value

    Returns:
        config_args:  Dict[str, Tuple[str, ...]]
            Mapping from the parsed arg's dest to its path in the config
    """
    group = parser.add_argument_group("Library Configuration")
    config_args = {}
    for path, default in _config_leaves(config.library_config):
        dest = "_".join(path)
        kwargs = {
            "dest": dest,
            "default": default,
            "help": f"Override {'.'.join(path)} (default: %(default)s)",
        }
        if isinstance(default, bool):
            # Allow a bare --flag as well as --flag false
            kwargs.update(nargs="?", const=True, type=_str_to_bool)
        elif isinstance(default, list):
            kwargs["nargs"] = "*"
        elif default is not None:
            kwargs["type"] = type(default)
        group.add_argument(f"--{'.'.join(path)}", **kwargs)
        config_args[dest] = path
    return config_args


def apply_config_args(args: argparse.Namespace, config_args: Dict[str, Tuple[str, ...]]):
    """Write the parsed overrides back into the library config"""
    for dest, path in config_args.items():
        target = config.library_config
        for key in path[:-1]:
            target = target[key]
        target[path[-1]] = getattr(args, dest)


## Main ########################################################################


def main(argv: Optional[List[str]] = None):
    argv = list(sys.argv[1:] if argv is None else argv)

    parser = argparse.ArgumentParser(description=__doc__)
    subparsers = parser.add_subparsers(help="Available commands", dest="command")
    run_cmd = RunOperatorCmd()
    run_parser = run_cmd.add_subparser(subparsers)
    config_args = add_config_args(run_parser)

    if not argv or (argv[0] not in subparsers.choices and argv[0] not in ("-h", "--help")):
        argv.insert(0, "run")
    args = parser.parse_args(argv)

    apply_config_args(args, config_args)
    configure_logging(
        config.log_level, config.log_filters, config.log_json, config.log_thread_id
    )
    log.debug("Running command [%s]", args.command)
    run_cmd.cmd(args)


if __name__ == "__main__":  # pragma: no cover
    main()
