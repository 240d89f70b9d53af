"""Asset lifecycle: content-addressed registry of locally created assets.

Locally registered assets do not exist in the remote catalogue, so every full
snapshot load replaces them with unresolved placeholders. The manager keeps
the bytes for the lifetime of the process and hands the commit a resync plan
to replay inside the same remote call.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterator, List, Optional, Sequence

from .errors import DetachError, DetachErrorKind, RemoteError
from .graph.model import AssetDescriptor, AssetKind, GraphSnapshot, content_hash
from .remote import RemoteTarget, ResyncEntry
from .services.catalogue import AssetCatalogue

LOGGER = logging.getLogger("blockpilot.assets")


class AssetLifecycleManager:
    def __init__(self, remote: RemoteTarget, catalogue: Optional[AssetCatalogue] = None) -> None:
        self.remote = remote
        self.catalogue = catalogue or AssetCatalogue()
        self._registry: Dict[str, AssetDescriptor] = {}

    def __contains__(self, descriptor_id: object) -> bool:
        return descriptor_id in self._registry

    def __iter__(self) -> Iterator[AssetDescriptor]:
        return iter(self._registry.values())

    def get(self, descriptor_id: str) -> Optional[AssetDescriptor]:
        return self._registry.get(descriptor_id)

    def register(
        self,
        data: bytes,
        kind: AssetKind,
        *,
        name: str = "",
        anchor_x: float = 0.0,
        anchor_y: float = 0.0,
        scale_factor: int = 1,
    ) -> AssetDescriptor:
        """Register bytes; identical content returns the already known descriptor."""
        asset_id = content_hash(data)
        existing = self._registry.get(asset_id)
        if existing is not None:
            return existing
        descriptor = AssetDescriptor(
            id=asset_id,
            kind=AssetKind(kind),
            data=data,
            name=name or asset_id[:8],
            anchor_x=anchor_x,
            anchor_y=anchor_y,
            scale_factor=scale_factor if kind is AssetKind.RASTER else 1,
        )
        self.remote.register_asset(descriptor)
        self._registry[asset_id] = descriptor
        LOGGER.info("Registered %s asset %s (%d bytes)", descriptor.kind.value, descriptor.md5ext, len(data))
        return descriptor

    def attach(self, descriptor: AssetDescriptor, target: str) -> None:
        known = self._registry.get(descriptor.id)
        if known is None:
            if not descriptor.data:
                raise KeyError(f"asset {descriptor.id} is not registered")
            known = self.register(
                descriptor.data,
                descriptor.kind,
                name=descriptor.name,
                anchor_x=descriptor.anchor_x,
                anchor_y=descriptor.anchor_y,
                scale_factor=descriptor.scale_factor,
            )
        self.remote.attach_asset(target, known)
        LOGGER.info("Attached %s to %s", known.md5ext, target)

    def detach(self, descriptor_id: str, target: str) -> None:
        assets = self.remote.list_assets(target)
        indices = [index for index, asset in enumerate(assets) if asset.id == descriptor_id]
        if not indices:
            raise DetachError(DetachErrorKind.UNKNOWN_ASSET, descriptor_id, target)
        if len(assets) <= 1:
            # The runtime would ignore this silently and leave the list unchanged.
            raise DetachError(DetachErrorKind.LAST_ASSET_PROTECTED, descriptor_id, target)
        self.remote.detach_asset(target, indices[-1])
        remaining = len(self.remote.list_assets(target))
        if remaining != len(assets) - 1:
            raise RemoteError(f"detach of {descriptor_id} on {target} was not applied")
        LOGGER.info("Detached %s from %s", descriptor_id, target)

    def replace(self, target: str, descriptors: Sequence[AssetDescriptor]) -> None:
        """Swap the whole asset list: attach every new entry, then detach old ones last-first."""
        if not descriptors:
            raise ValueError("an asset list can not be replaced by an empty set")
        old_count = len(self.remote.list_assets(target))
        for descriptor in descriptors:
            self.attach(descriptor, target)
        for index in range(old_count - 1, -1, -1):
            self.remote.detach_asset(target, index)
        final = [asset.id for asset in self.remote.list_assets(target)]
        expected = [descriptor.id for descriptor in descriptors]
        if final != expected:
            raise RemoteError(f"asset replacement on {target} left {final}, expected {expected}")
        LOGGER.info("Replaced %d assets on %s with %d", old_count, target, len(descriptors))

    def resync(self, target: str, descriptors: Sequence[AssetDescriptor]) -> ResyncEntry:
        """Build the re-attachment step for ``target``.

        The entry is executed by the runtime as the tail of the load that
        carries it; there is no way to run it as a separate call.
        """
        resolved = []
        for descriptor in descriptors:
            known = self._registry.get(descriptor.id)
            if known is None:
                raise KeyError(f"asset {descriptor.id} is not registered")
            resolved.append(known)
        return ResyncEntry(target=target, descriptors=tuple(resolved))

    def resync_plan(self, snapshot: GraphSnapshot) -> List[ResyncEntry]:
        plan: List[ResyncEntry] = []
        for target in snapshot.targets:
            local: Dict[str, AssetDescriptor] = {}
            for asset in target.assets:
                known = self._registry.get(asset.id)
                if known is None or asset.id in local:
                    continue
                if self.catalogue.contains(known):
                    continue
                local[asset.id] = known
            if local:
                plan.append(self.resync(target.name, list(local.values())))
        return plan
