"""Remote runtime adapter driving the block editor page through Playwright.

Each remote operation is exactly one ``page.evaluate`` call raced against the
configured timeout inside the page, so a load and its asset resync can never
be interleaved with another call.
"""

from __future__ import annotations

import base64
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from playwright.sync_api import BrowserContext, Error as PlaywrightError, Page

from ..config import RuntimeConfig
from ..errors import RemoteError
from ..graph.model import STAGE_SELECTOR, AssetDescriptor, GraphSnapshot
from ..graph.serialization import project_from_snapshot, snapshot_from_project
from ..remote import ActualAsset, ActualBlock, ActualGraph, BoundingBox, ResyncEntry
from .browser import BrowserManager, get_browser_manager

LOGGER = logging.getLogger("blockpilot.runtime")

_WRAPPER = """
async ([payload, timeoutMs]) => {
  const vm = (%(vm)s);
  const ws = (%(ws)s);
  if (!vm) throw new Error('runtime_unavailable');
  const findTarget = (name) => name === null
    ? vm.runtime.getTargetForStage()
    : (vm.runtime.targets.find(t => t.isOriginal && t.getName() === name) || null);
  const decode = (b64) => Uint8Array.from(atob(b64), c => c.charCodeAt(0));
  const describeCostumes = (target) => target.getCostumes().map(c => ({
    id: c.assetId,
    name: c.name,
    placeholder: Boolean(c.broken) || Boolean(c.asset && c.asset.assetId !== c.assetId),
  }));
  const work = (async () => { %(body)s })();
  let timer;
  const timeout = new Promise((_, reject) => {
    timer = setTimeout(() => reject(new Error('timeout')), timeoutMs);
  });
  try {
    return await Promise.race([work, timeout]);
  } finally {
    clearTimeout(timer);
  }
}
"""

_GET_SNAPSHOT = "return vm.toJSON();"

_LOAD_SNAPSHOT = """
await vm.loadProject(payload.project);
const storage = vm.runtime.storage;
for (const entry of payload.resync) {
  const target = findTarget(entry.target);
  if (!target) throw new Error('resync_target_missing:' + entry.target);
  const current = target.currentCostume;
  const original = target.getCostumes().length;
  const slots = {};
  target.getCostumes().forEach((c, i) => { slots[c.assetId] = i; });
  for (const d of entry.descriptors) {
    const type = d.format === 'svg' ? storage.AssetType.ImageVector : storage.AssetType.ImageBitmap;
    const asset = storage.createAsset(type, d.format, decode(d.data), d.id, false);
    await vm.addCostume(d.id + '.' + d.format, {
      name: d.name, asset: asset, assetId: d.id, md5ext: d.id + '.' + d.format, dataFormat: d.format,
      rotationCenterX: d.anchor_x, rotationCenterY: d.anchor_y, bitmapResolution: d.scale_factor,
    }, target.id);
  }
  const ids = new Set(entry.descriptors.map(d => d.id));
  for (let i = original - 1; i >= 0; i--) {
    const c = target.getCostumes()[i];
    const broken = Boolean(c.broken) || Boolean(c.asset && c.asset.assetId !== c.assetId);
    if (ids.has(c.assetId) && broken) target.deleteCostume(i);
  }
  Object.entries(slots).sort((a, b) => a[1] - b[1]).forEach(([assetId, slot]) => {
    const index = target.getCostumes().findIndex(c => c.assetId === assetId);
    if (index >= 0 && index !== slot && slot < target.getCostumes().length) target.reorderCostume(index, slot);
  });
  target.setCostume(Math.min(current, target.getCostumes().length - 1));
}
return true;
"""

_REGISTER_ASSET = """
window.__blockpilotAssets = window.__blockpilotAssets || {};
window.__blockpilotAssets[payload.id] = payload;
return true;
"""

_ATTACH_ASSET = """
const target = findTarget(payload.target);
if (!target) throw new Error('target_missing:' + payload.target);
const d = payload.descriptor;
const storage = vm.runtime.storage;
const type = d.format === 'svg' ? storage.AssetType.ImageVector : storage.AssetType.ImageBitmap;
const asset = storage.createAsset(type, d.format, decode(d.data), d.id, false);
await vm.addCostume(d.id + '.' + d.format, {
  name: d.name, asset: asset, assetId: d.id, md5ext: d.id + '.' + d.format, dataFormat: d.format,
  rotationCenterX: d.anchor_x, rotationCenterY: d.anchor_y, bitmapResolution: d.scale_factor,
}, target.id);
return true;
"""

_DETACH_ASSET = """
const target = findTarget(payload.target);
if (!target) throw new Error('target_missing:' + payload.target);
target.deleteCostume(payload.index);
return true;
"""

_LIST_ASSETS = """
const target = findTarget(payload.target);
if (!target) throw new Error('target_missing:' + payload.target);
return describeCostumes(target);
"""

_READ_ACTUAL = """
const target = findTarget(payload.target);
if (!target) throw new Error('target_missing:' + payload.target);
const blocks = {};
for (const [id, b] of Object.entries(target.blocks._blocks)) {
  blocks[id] = {opcode: b.opcode, parent: b.parent || null, next: b.next || null, topLevel: Boolean(b.topLevel)};
}
return {blocks: blocks, assets: describeCostumes(target)};
"""

_RUN_FROM_START = """
vm.greenFlag();
await new Promise(resolve => setTimeout(resolve, payload.durationMs));
const observed = {};
for (const t of vm.runtime.targets.filter(t => t.isOriginal)) {
  const variables = {};
  for (const v of Object.values(t.variables)) variables[v.name] = v.value;
  observed[t.getName()] = {
    x: Math.round(t.x * 100) / 100,
    y: Math.round(t.y * 100) / 100,
    direction: t.direction,
    visible: t.visible,
    size: Math.round(t.size),
    costume: t.getCostumes()[t.currentCostume] ? t.getCostumes()[t.currentCostume].name : null,
    variables: variables,
  };
}
vm.stopAll();
return observed;
"""

_EXPORT = """
const blob = await vm.saveProjectSb3();
const bytes = new Uint8Array(await blob.arrayBuffer());
let binary = '';
for (let i = 0; i < bytes.length; i += 0x8000) {
  binary += String.fromCharCode.apply(null, bytes.subarray(i, i + 0x8000));
}
return btoa(binary);
"""

_IMPORT = """
await vm.loadProject(decode(payload.data).buffer);
return true;
"""

_BOUNDING_BOX = """
if (!ws) throw new Error('workspace_unavailable');
const block = ws.getBlockById(payload.id);
if (!block) throw new Error('block_not_rendered:' + payload.id);
const origin = ws.getParentSvg().getBoundingClientRect();
const xy = block.getRelativeToSurfaceXY();
return {
  left: origin.left + ws.scrollX + xy.x * ws.scale,
  top: origin.top + ws.scrollY + xy.y * ws.scale,
  width: block.width * ws.scale,
  height: block.height * ws.scale,
};
"""

_VIEW_SCALE = """
if (!ws) throw new Error('workspace_unavailable');
return ws.scale;
"""

_LAYOUT_CONSTANTS = """
const B = window.Blockly && window.Blockly.BlockSvg;
if (!B) return null;
const values = {
  previous_offset_x: B.NOTCH_START_PADDING,
  bay_offset_x: B.SUBSTACK_WIDTH,
  bay_offset_y: B.MIN_BLOCK_Y,
  snap_radius: window.Blockly.SNAP_RADIUS,
};
return Object.values(values).every(v => typeof v === 'number') ? values : null;
"""

_SNAP_HIGHLIGHT = (
    "() => Boolean(document.querySelector('.blocklyInsertionMarker, .blocklyHighlightedConnectionPath'))"
)


def _descriptor_payload(descriptor: AssetDescriptor) -> Dict[str, Any]:
    return {
        "id": descriptor.id,
        "format": descriptor.data_format,
        "data": base64.b64encode(descriptor.data).decode("ascii"),
        "name": descriptor.name or descriptor.id,
        "anchor_x": descriptor.anchor_x,
        "anchor_y": descriptor.anchor_y,
        "scale_factor": descriptor.scale_factor,
    }


class PlaywrightRuntime:
    """A runtime page; implements both ``RemoteTarget`` and ``Pointer``."""

    def __init__(self, page: Page, config: RuntimeConfig, *, context: Optional[BrowserContext] = None) -> None:
        self.page = page
        self.config = config
        self._context = context
        self._stage_name: Optional[str] = None

    @classmethod
    def open(cls, config: RuntimeConfig, manager: Optional[BrowserManager] = None) -> "PlaywrightRuntime":
        manager = manager or get_browser_manager()
        context, page = manager.open_page(config.url)
        try:
            page.wait_for_function(f"() => Boolean({config.vm_handle})", timeout=config.call_timeout_s * 1000)
        except PlaywrightError as exc:
            context.close()
            raise RemoteError(f"runtime did not expose {config.vm_handle}: {exc}") from exc
        LOGGER.info("Runtime page ready at %s", config.url)
        return cls(page, config, context=context)

    def _call(self, body: str, payload: Any = None, *, timeout_s: Optional[float] = None) -> Any:
        source = _WRAPPER % {"vm": self.config.vm_handle, "ws": self.config.workspace_handle, "body": body}
        timeout_ms = int((timeout_s or self.config.call_timeout_s) * 1000)
        try:
            return self.page.evaluate(source, [payload, timeout_ms])
        except PlaywrightError as exc:
            raise RemoteError(str(exc)) from exc

    def _selector(self, target: str) -> Optional[str]:
        """Stage is addressed as ``null`` so renamed stages still resolve."""
        if target == STAGE_SELECTOR:
            return None
        if self._stage_name is None:
            stage = self.get_snapshot().stage
            self._stage_name = stage.name if stage else "Stage"
        return None if target == self._stage_name else target

    def get_snapshot(self) -> GraphSnapshot:
        snapshot = snapshot_from_project(json.loads(self._call(_GET_SNAPSHOT)))
        stage = snapshot.stage
        self._stage_name = stage.name if stage else self._stage_name
        return snapshot

    def load_snapshot(self, snapshot: GraphSnapshot, resync: Sequence[ResyncEntry] = ()) -> None:
        stage = snapshot.stage
        stage_name = stage.name if stage else None
        payload = {
            "project": project_from_snapshot(snapshot),
            "resync": [
                {
                    "target": None if entry.target == stage_name else entry.target,
                    "descriptors": [_descriptor_payload(d) for d in entry.descriptors],
                }
                for entry in resync
            ],
        }
        self._call(_LOAD_SNAPSHOT, payload)
        self._stage_name = stage_name

    def register_asset(self, descriptor: AssetDescriptor) -> None:
        self._call(_REGISTER_ASSET, _descriptor_payload(descriptor))

    def attach_asset(self, target: str, descriptor: AssetDescriptor) -> None:
        self._call(_ATTACH_ASSET, {"target": self._selector(target), "descriptor": _descriptor_payload(descriptor)})

    def detach_asset(self, target: str, index: int) -> None:
        self._call(_DETACH_ASSET, {"target": self._selector(target), "index": index})

    def list_assets(self, target: str) -> List[ActualAsset]:
        rows = self._call(_LIST_ASSETS, {"target": self._selector(target)})
        return [ActualAsset(id=row["id"], name=row["name"], placeholder=row["placeholder"]) for row in rows]

    def read_actual_graph(self, target: str) -> ActualGraph:
        raw = self._call(_READ_ACTUAL, {"target": self._selector(target)})
        blocks = {
            block_id: ActualBlock(
                opcode=row["opcode"], parent_id=row["parent"], next_id=row["next"], top_level=row["topLevel"]
            )
            for block_id, row in raw["blocks"].items()
        }
        assets = [ActualAsset(id=row["id"], name=row["name"], placeholder=row["placeholder"]) for row in raw["assets"]]
        return ActualGraph(blocks=blocks, assets=assets)

    def run_from_start(self) -> Dict[str, Any]:
        duration_ms = int(self.config.run_duration_s * 1000)
        return self._call(
            _RUN_FROM_START,
            {"durationMs": duration_ms},
            timeout_s=self.config.call_timeout_s + self.config.run_duration_s,
        )

    def export_project(self) -> bytes:
        return base64.b64decode(self._call(_EXPORT))

    def import_project(self, data: bytes) -> None:
        self._call(_IMPORT, {"data": base64.b64encode(data).decode("ascii")})
        self._stage_name = None

    def bounding_box(self, node_id: str) -> BoundingBox:
        raw = self._call(_BOUNDING_BOX, {"id": node_id})
        return BoundingBox(left=raw["left"], top=raw["top"], width=raw["width"], height=raw["height"])

    def view_scale(self) -> float:
        return float(self._call(_VIEW_SCALE))

    def layout_constants(self) -> Optional[Dict[str, float]]:
        return self._call(_LAYOUT_CONSTANTS)

    def snap_highlighted(self) -> bool:
        try:
            return bool(self.page.evaluate(_SNAP_HIGHLIGHT))
        except PlaywrightError as exc:
            raise RemoteError(str(exc)) from exc

    def screenshot(self, path: Path) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self.page.screenshot(path=str(path), full_page=True)
        except PlaywrightError as exc:
            raise RemoteError(str(exc)) from exc
        return path

    # Pointer primitives

    def move(self, x: float, y: float) -> None:
        try:
            self.page.mouse.move(x, y)
        except PlaywrightError as exc:
            raise RemoteError(str(exc)) from exc

    def down(self) -> None:
        try:
            self.page.mouse.down()
        except PlaywrightError as exc:
            raise RemoteError(str(exc)) from exc

    def up(self) -> None:
        try:
            self.page.mouse.up()
        except PlaywrightError as exc:
            raise RemoteError(str(exc)) from exc

    def close(self) -> None:
        if self._context is None:
            return
        try:
            self._context.close()
        except PlaywrightError as exc:
            LOGGER.debug("Context close failed: %s", exc)
        self._context = None
