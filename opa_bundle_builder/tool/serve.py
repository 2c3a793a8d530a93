"""opa-bundle-builder serve action."""

from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
import asyncio
import logging
import pathlib
import signal
from typing import cast

from opa_bundle_builder.config import BundleBuilderConfig
from opa_bundle_builder.orchestrator import BundleBuilder
from opa_bundle_builder.watch import KubernetesWatchFeed

_LOGGER = logging.getLogger(__name__)


def make_config(
    config_file: pathlib.Path | None = None,
    namespace: str | None = None,
    all_namespaces: bool = False,
    label_selector: str | None = None,
    host: str | None = None,
    port: int | None = None,
    debounce: float | None = None,
    archive_root: str | None = None,
    output_dir: str | None = None,
) -> BundleBuilderConfig:
    """Build the configuration from the config file, environment and flags.

    Flags take precedence over the config file. The namespace falls back to
    the WATCH_NAMESPACE environment variable when neither sets one.
    """
    config = (
        BundleBuilderConfig.from_yaml(config_file)
        if config_file
        else BundleBuilderConfig()
    )
    if namespace:
        config.watch.namespace = namespace
    if all_namespaces:
        config.watch.all_namespaces = True
    config.apply_environment()
    if label_selector is not None:
        config.watch.label_selector = label_selector
    if host:
        config.server.host = host
    if port is not None:
        config.server.port = port
    if debounce is not None:
        config.coordinator.debounce_seconds = debounce
    if archive_root is not None:
        config.assembly.archive_root = archive_root
    if output_dir:
        config.output_dir = output_dir
    return config


class ServeAction:
    """opa-bundle-builder serve action."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "serve",
                help="Watch policy ConfigMaps and serve them as an OPA bundle",
                description="""Runs as a sidecar next to the Open Policy Agent.
                    ConfigMaps matching the label selector are assembled into a
                    bundle which is rebuilt whenever they change and served
                    over HTTP.""",
            ),
        )
        args.add_argument(
            "--config",
            dest="config_file",
            type=pathlib.Path,
            help="YAML file with the bundle builder configuration",
        )
        args.add_argument(
            "--namespace",
            help="Namespace to watch. Defaults to the WATCH_NAMESPACE environment variable",
        )
        args.add_argument(
            "--all-namespaces",
            action="store_true",
            help="Watch ConfigMaps in all namespaces",
        )
        args.add_argument(
            "--label-selector",
            help="Label selector for policy ConfigMaps",
        )
        args.add_argument("--host", help="Address the HTTP server binds to")
        args.add_argument("--port", type=int, help="Port the HTTP server listens on")
        args.add_argument(
            "--debounce",
            type=float,
            help="Seconds to wait for further changes before rebuilding",
        )
        args.add_argument(
            "--archive-root",
            help="Directory inside the archive that all bundle files are placed under",
        )
        args.add_argument(
            "--output-dir",
            help="Directory the current bundle is also written to as bundle.tar.gz",
        )
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        config_file: pathlib.Path | None,
        namespace: str | None,
        all_namespaces: bool,
        label_selector: str | None,
        host: str | None,
        port: int | None,
        debounce: float | None,
        archive_root: str | None,
        output_dir: str | None,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        config = make_config(
            config_file=config_file,
            namespace=namespace,
            all_namespaces=all_namespaces,
            label_selector=label_selector,
            host=host,
            port=port,
            debounce=debounce,
            archive_root=archive_root,
            output_dir=output_dir,
        )
        feed = KubernetesWatchFeed.from_cluster(config.watch)
        builder = BundleBuilder(feed, config)

        task = asyncio.current_task()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, task.cancel)  # type: ignore[union-attr]
        try:
            await builder.run()
        except asyncio.CancelledError:
            _LOGGER.info("Shut down")
