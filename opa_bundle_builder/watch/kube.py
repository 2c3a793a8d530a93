"""Watch feed for policy sources backed by the kubernetes API.

The feed lists the matching ConfigMaps to produce a Snapshot, then watches
from the resource version of the list. When the watch expires (HTTP 410),
the connection fails or the stream is unreadable, the feed lists again and
yields a fresh Snapshot so the cache can reconcile sources deleted in the
meantime.

The kubernetes client is blocking, so each list call and each read from the
watch stream runs in a worker thread.
"""

import asyncio
from collections.abc import AsyncGenerator, Callable, Iterator
import logging
from typing import Any

from kubernetes import client, config, watch
from kubernetes.client.rest import ApiException
import urllib3

from opa_bundle_builder.config import WatchConfig
from opa_bundle_builder.exceptions import InputException, WatchException
from opa_bundle_builder.manifest import PolicySource
from opa_bundle_builder.store.events import Added, Deleted, Snapshot, Updated, WatchEvent

from .feed import WatchFeed

_LOGGER = logging.getLogger(__name__)

HTTP_GONE = 410


class ResourceExpired(Exception):
    """Raised when the watched resource version is too old to resume from."""


class KubernetesWatchFeed(WatchFeed):
    """Lists and watches ConfigMaps matching a label selector."""

    def __init__(
        self,
        api: client.CoreV1Api,
        watch_config: WatchConfig,
        watch_factory: Callable[[], watch.Watch] = watch.Watch,
    ) -> None:
        """Initialize the KubernetesWatchFeed.

        Args:
            api: Client for the core v1 API group
            watch_config: Namespace, selector and retry settings
            watch_factory: Creates the object used to stream watch events
        """
        if not watch_config.all_namespaces and not watch_config.namespace:
            raise WatchException(
                "missing namespace to watch, set WATCH_NAMESPACE or --namespace"
            )
        self._api = api
        self._config = watch_config
        self._watch_factory = watch_factory

    @classmethod
    def from_cluster(cls, watch_config: WatchConfig) -> "KubernetesWatchFeed":
        """Create a feed using the in-cluster config or the local kubeconfig."""
        try:
            config.load_incluster_config()
            _LOGGER.info("Loaded in-cluster kubernetes config")
        except config.ConfigException:
            try:
                config.load_kube_config()
            except (config.ConfigException, OSError) as err:
                raise WatchException(f"Unable to load kubernetes config: {err}") from err
            _LOGGER.info("Loaded local kubernetes config")
        return cls(client.CoreV1Api(), watch_config)

    def _list_call(self) -> tuple[Callable[..., Any], tuple[Any, ...]]:
        if self._config.all_namespaces:
            return self._api.list_config_map_for_all_namespaces, ()
        return self._api.list_namespaced_config_map, (self._config.namespace,)

    async def events(self) -> AsyncGenerator[WatchEvent, None]:
        """Yield a Snapshot followed by watch events, relisting after failures."""
        backoff = self._config.backoff_seconds
        while True:
            try:
                snapshot = await self._list()
                yield snapshot
                backoff = self._config.backoff_seconds
                async for event in self._watch(snapshot.resource_version):
                    yield event
            except ResourceExpired:
                _LOGGER.info("Watch resource version expired, relisting")
            except ApiException as err:
                if err.status == HTTP_GONE:
                    _LOGGER.info("Watch resource version expired, relisting")
                    continue
                _LOGGER.warning(
                    "Watch of policy sources failed (%s %s), retrying in %ss",
                    err.status,
                    err.reason,
                    backoff,
                )
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, self._config.max_backoff_seconds)
            except (urllib3.exceptions.HTTPError, OSError) as err:
                _LOGGER.warning(
                    "Connection to the API server lost (%s), retrying in %ss",
                    err,
                    backoff,
                )
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, self._config.max_backoff_seconds)
            except Exception:  # pylint: disable=broad-except
                # Such as a malformed line in the watch stream
                _LOGGER.exception("Unexpected watch failure, retrying in %ss", backoff)
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, self._config.max_backoff_seconds)

    async def _list(self) -> Snapshot:
        """List all matching ConfigMaps."""
        list_fn, args = self._list_call()
        result = await asyncio.to_thread(
            list_fn, *args, label_selector=self._config.label_selector
        )
        sources: list[PolicySource] = []
        for item in result.items or []:
            doc = self._api.api_client.sanitize_for_serialization(item)
            if (source := _parse(doc)) is not None:
                sources.append(source)
        resource_version = result.metadata.resource_version if result.metadata else None
        _LOGGER.info(
            "Listed %d policy sources at resource version %s",
            len(sources),
            resource_version,
        )
        return Snapshot(sources=tuple(sources), resource_version=resource_version)

    async def _watch(
        self, resource_version: str | None
    ) -> AsyncGenerator[WatchEvent, None]:
        """Yield events from consecutive watch requests.

        Each request ends after the server side timeout and is resumed from the
        last resource version seen.
        """
        list_fn, args = self._list_call()
        while True:
            stream_watch = self._watch_factory()
            try:
                stream: Iterator[dict[str, Any]] = stream_watch.stream(
                    list_fn,
                    *args,
                    label_selector=self._config.label_selector,
                    resource_version=resource_version,
                    timeout_seconds=self._config.timeout_seconds,
                    allow_watch_bookmarks=True,
                )
                while (item := await asyncio.to_thread(next, stream, None)) is not None:
                    event_type = item.get("type")
                    raw = item.get("raw_object") or {}
                    if event_type == "ERROR":
                        if raw.get("code") == HTTP_GONE:
                            raise ResourceExpired(raw.get("message"))
                        raise ApiException(status=raw.get("code"), reason=raw.get("message"))
                    if version := (raw.get("metadata") or {}).get("resourceVersion"):
                        resource_version = version
                    if event_type == "BOOKMARK":
                        continue
                    if (source := _parse(raw)) is None:
                        continue
                    if event_type == "ADDED":
                        yield Added(source)
                    elif event_type == "MODIFIED":
                        yield Updated(source)
                    elif event_type == "DELETED":
                        yield Deleted(source.key)
                    else:
                        _LOGGER.debug("Ignoring watch event type %s", event_type)
            finally:
                stream_watch.stop()
            _LOGGER.debug("Watch request ended, resuming at %s", resource_version)


def _parse(doc: dict[str, Any]) -> PolicySource | None:
    try:
        return PolicySource.parse_doc(doc)
    except InputException as err:
        _LOGGER.warning("Skipping unreadable policy source: %s", err)
        return None
