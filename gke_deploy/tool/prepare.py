"""gke-deploy prepare action."""

from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
import logging
from typing import cast

from gke_deploy import prepare

from . import flags

_LOGGER = logging.getLogger(__name__)


class PrepareAction:
    """gke-deploy prepare action."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "prepare",
                help="Prepare expanded and suggested configuration files",
                description="""Pins the image to its digest and adds the namespace
                    and application labels to the configuration files, writing
                    an expanded and a suggested artifact to the output location.""",
            ),
        )
        flags.add_config_flags(args)
        flags.add_namespace_flag(args, flags.DEFAULT_NAMESPACE)
        flags.add_prepare_flags(args)
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        **kwargs,
    ) -> None:
        """Async Action implementation."""
        options = flags.build_prepare_options(**kwargs)
        await prepare.prepare(options)
        print(f"Expanded configuration written to {options.expanded_output}")
        print(f"Suggested configuration written to {options.suggested_output}")
