"""
This is the main entrypoint command for running the operator
"""
# Standard
from typing import List, Optional, Type
import argparse
import importlib
import os
import signal

# Third Party
import yaml

# First Party
import alog

# Local
from .. import config, constants, watch_manager
from ..deploy_manager import DryRunDeployManager
from ..exceptions import ConfigError, assert_config
from ..reconcilable import Reconcilable

log = alog.use_channel("MAIN")

DEFAULT_MODULE_NAME = "echo_operator.echo"


class RunOperatorCmd:
    __doc__ = __doc__

    ## Interface ##

    def add_subparser(
        self,
        subparsers: argparse._SubParsersAction,
    ) -> argparse.ArgumentParser:
        parser = subparsers.add_parser("run", help=__doc__)
        runtime_args = parser.add_argument_group("Runtime Configuration")
        runtime_args.add_argument(
            "--module_name",
            "-m",
            default=DEFAULT_MODULE_NAME,
            help="The module to import that holds the reconcilers",
        )
        runtime_args.add_argument(
            "--reconciler_name",
            default="",
            help="The name of a single reconciler in the module to run",
        )
        runtime_args.add_argument(
            "--cr",
            "-c",
            default=None,
            help="(dry run) A CR manifest yaml to apply directly",
        )
        runtime_args.add_argument(
            "--resource_dir",
            "-r",
            default=None,
            help="(dry run) Path to a directory of yaml files that should exist in the cluster",
        )
        return parser

    def cmd(self, args: argparse.Namespace):
        # Validate args
        dry_run = self._is_dry_run()
        assert_config(
            args.cr is None or (dry_run and os.path.isfile(args.cr)),
            "Can only specify --cr with dry run and it must point to a valid file",
        )
        assert_config(
            args.resource_dir is None
            or (dry_run and os.path.isdir(args.resource_dir)),
            "Can only specify --resource_dir with dry run and it must point to a valid directory",
        )

        # Find all reconcilers in the operator library
        reconcilable_types = self._get_reconcilable_types(
            args.module_name, args.reconciler_name
        )

        # Parse pre-populated resources if needed
        resources = self._parse_resource_dir(args.resource_dir)

        # Create the watch managers
        deploy_manager = self._setup_watches(reconcilable_types, resources)

        # Register the signal handler to stop the watches
        def do_stop(*_, **__):  # pragma: no cover
            watch_manager.stop_all()

        signal.signal(signal.SIGINT, do_stop)

        # Run the watch manager
        log.info("Starting Watches")
        watch_manager.start_all()

        # If given, apply the CR directly
        if args.cr:
            log.info("Applying CR [%s]", args.cr)
            with open(args.cr, encoding="utf-8") as handle:
                cr_manifest = yaml.safe_load(handle)
                cr_manifest.setdefault("metadata", {}).setdefault(
                    "namespace", constants.DEFAULT_NAMESPACE
                )
                log.debug3(cr_manifest)
                deploy_manager.deploy([cr_manifest])

        # All done!
        log.info("SHUTTING DOWN")

    ## Impl ##

    @staticmethod
    def _is_dry_run() -> bool:
        return bool(config.dry_run) or config.watch_manager == "dry_run"

    @staticmethod
    def _is_reconcilable_type(attr_val) -> bool:
        """Determine if a given attribute value is a concrete reconciler type"""
        return (
            isinstance(attr_val, type)
            and issubclass(attr_val, Reconcilable)
            and attr_val is not Reconcilable
            and bool(attr_val.kind)
        )

    @classmethod
    def _get_reconcilable_types(
        cls, module_name: str, reconciler_name: str = ""
    ) -> List[Type[Reconcilable]]:
        """Import the operator library and either extract all Reconcilables,
        or just extract the provided Reconcilable
        """
        module = importlib.import_module(module_name)
        log.debug4(dir(module))
        reconcilable_types = []

        if reconciler_name:
            # Confirm that the class exists and that it is a reconciler type
            attr_val = getattr(module, reconciler_name, None)
            assert_config(
                cls._is_reconcilable_type(attr_val),
                f"Provided reconciler, {reconciler_name}, is invalid",
            )
            log.debug3("Provided reconciler, %s, is valid", reconciler_name)
            reconcilable_types.append(attr_val)
        else:
            log.debug3("Searching for all reconcilers...")
            for attr in dir(module):
                attr_val = getattr(module, attr)
                if cls._is_reconcilable_type(attr_val):
                    log.debug2("Found Reconcilable: %s", attr_val)
                    reconcilable_types.append(attr_val)

        assert_config(reconcilable_types, f"No reconcilers found in [{module_name}]")
        return reconcilable_types

    @staticmethod
    def _parse_resource_dir(resource_dir: Optional[str]) -> List[dict]:
        """If given, this will parse all yaml files found in the given directory"""
        all_resources = []
        if resource_dir is not None:
            for fname in sorted(os.listdir(resource_dir)):
                if fname.endswith(".yaml") or fname.endswith(".yml"):
                    resource_path = os.path.join(resource_dir, fname)
                    log.debug3("Reading resource file [%s]", resource_path)
                    with open(resource_path, encoding="utf-8") as handle:
                        all_resources.extend(
                            res for res in yaml.safe_load_all(handle) if res
                        )
        return all_resources

    @staticmethod
    def _setup_watches(
        reconcilable_types: List[Type[Reconcilable]],
        resources: List[dict],
    ) -> Optional[DryRunDeployManager]:
        """Set up watches for all reconcilers. If in dry run mode, the
        DryRunDeployManager will be returned.
        """
        deploy_manager = None
        extra_kwargs = {}
        if RunOperatorCmd._is_dry_run():
            log.info("Running DRY RUN")
            deploy_manager = DryRunDeployManager(resources=resources)
            wm_type = watch_manager.DryRunWatchManager
            extra_kwargs["deploy_manager"] = deploy_manager
        elif config.watch_manager == "threaded":  # pragma: no cover
            log.info("Running threaded operator")
            wm_type = watch_manager.ThreadedWatchManager
        else:
            raise ConfigError(f"Unknown watch manager {config.watch_manager}")

        for reconcilable_type in reconcilable_types:
            log.debug("Registering watch for %s", reconcilable_type)
            wm_type(reconcilable_type=reconcilable_type, **extra_kwargs)
        return deploy_manager
