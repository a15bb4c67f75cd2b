#!/usr/bin/env python
"""
Executable entrypoint for the console operator. The only command is run, and it
is used when no command is given.
"""

# Standard
from typing import Iterator, List, Optional, Tuple
import argparse
import sys

# First Party
import aconfig
import alog

# Local
from . import config
from .cmd import RunOperatorCmd
from .config import library_config
from .log_format import ConsoleOperatorJsonFormatter

log = alog.use_channel("MAIN")

RUN_COMMAND = "run"

## Library config flags ########################################################


def config_leaves(
    config_obj: aconfig.Config, path: Tuple[str, ...] = ()
) -> Iterator[Tuple[Tuple[str, ...], object]]:
    """Walk every non-dict value of the library config with its key path"""
    for key, val in config_obj.items():
        if isinstance(val, aconfig.AttributeAccessDict):
            yield from config_leaves(val, path + (key,))
        else:
            yield path + (key,), val


def add_library_config_args(parser: argparse.ArgumentParser) -> List[Tuple[str, ...]]:
    """Add a --<dotted.key> flag per library config value, defaulting to the
    loaded value

    Returns:
        paths:  List[Tuple[str, ...]]
            The config key path of every flag added
    """
    group = parser.add_argument_group("Library Configuration")
    paths = []
    for path, val in config_leaves(library_config):
        kwargs = {
            "default": val,
            "dest": "_".join(path),
            "help": f"Override {'.'.join(path)} (see console_operator/config/config.yaml)",
        }
        if isinstance(val, bool):
            kwargs["action"] = "store_true"
        elif isinstance(val, list):
            kwargs["nargs"] = "*"
        elif val is not None:
            kwargs["type"] = type(val)
        group.add_argument(f"--{'.'.join(path)}", **kwargs)
        paths.append(path)
    return paths


def apply_library_config_args(args: argparse.Namespace, paths: List[Tuple[str, ...]]):
    for path in paths:
        config_obj = library_config
        for key in path[:-1]:
            config_obj = config_obj[key]
        config_obj[path[-1]] = getattr(args, "_".join(path))


## Main ########################################################################


def main(argv: Optional[List[str]] = None):
    """Parse the command line, apply the config overrides and run"""
    argv = list(sys.argv[1:] if argv is None else argv)
    if not argv or argv[0] != RUN_COMMAND:
        argv.insert(0, RUN_COMMAND)

    parser = argparse.ArgumentParser(description=__doc__)
    subparsers = parser.add_subparsers(dest="command")
    run_cmd = RunOperatorCmd()
    run_parser = run_cmd.add_subparser(subparsers)
    run_parser.set_defaults(func=run_cmd.cmd)
    config_paths = add_library_config_args(run_parser)

    args = parser.parse_args(argv)
    apply_library_config_args(args, config_paths)

    alog.configure(
        default_level=config.log_level,
        filters=config.log_filters,
        formatter=ConsoleOperatorJsonFormatter() if config.log_json else "pretty",
        thread_id=config.log_thread_id,
    )
    log.debug("Running %s", args.command)
    return args.func(args)


if __name__ == "__main__":  # pragma: no cover
    main()
