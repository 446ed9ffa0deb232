"""gke-deploy apply action."""

from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
import logging
from typing import cast

from gke_deploy import apply

from . import flags

_LOGGER = logging.getLogger(__name__)


class ApplyAction:
    """gke-deploy apply action."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "apply",
                help="Apply configuration files to a cluster and wait for them",
                description="""Applies namespaces first, then every other object,
                    and waits until all of them are ready.""",
            ),
        )
        flags.add_config_flags(args, required=True)
        flags.add_namespace_flag(args, "")
        flags.add_apply_flags(args)
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        filename: str,
        **kwargs,
    ) -> None:
        """Async Action implementation."""
        request = flags.build_deploy_request(filename, **kwargs)
        records = await apply.apply(request)
        for record in records:
            print(f"{record.resource_id} is ready")
