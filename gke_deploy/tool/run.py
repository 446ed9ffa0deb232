"""gke-deploy run action, which prepares then applies."""

from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
import logging
from typing import cast

from gke_deploy import apply, prepare
from gke_deploy.source import is_gcs

from . import flags

_LOGGER = logging.getLogger(__name__)


class RunAction:
    """gke-deploy run action."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "run",
                help="Prepare configuration files and apply them to a cluster",
                description="""Runs prepare, then applies the expanded
                    configuration files to the cluster.""",
            ),
        )
        flags.add_config_flags(args)
        flags.add_namespace_flag(args, flags.DEFAULT_NAMESPACE)
        flags.add_prepare_flags(args)
        flags.add_apply_flags(args)
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        **kwargs,
    ) -> None:
        """Async Action implementation."""
        options = flags.build_prepare_options(**kwargs)
        await prepare.prepare(options)
        config = options.expanded_output
        if is_gcs(config):
            config = f"{config}/*"
        _LOGGER.info("Applying expanded configuration from %s", config)
        # The expanded artifact already carries the namespace
        request = flags.build_deploy_request(
            config, **{**kwargs, "namespace": "", "recursive": False}
        )
        records = await apply.apply(request)
        for record in records:
            print(f"{record.resource_id} is ready")
