import pytest

from blockpilot.assets import AssetLifecycleManager
from blockpilot.errors import DetachError, DetachErrorKind
from blockpilot.graph.model import AssetKind
from blockpilot.services.catalogue import AssetCatalogue

from conftest import SPRITE_COSTUME_ID, FakeRuntime

SVG_A = b'<svg xmlns="http://www.w3.org/2000/svg"><circle r="4"/></svg>'
SVG_B = b'<svg xmlns="http://www.w3.org/2000/svg"><rect width="4" height="4"/></svg>'


class StaticCatalogue(AssetCatalogue):
    def __init__(self, known=()):
        super().__init__("")
        self.known = set(known)

    def contains(self, descriptor):
        return descriptor.id in self.known


def test_register_is_content_addressed(runtime):
    manager = AssetLifecycleManager(runtime)
    first = manager.register(SVG_A, AssetKind.VECTOR, name="dot")
    again = manager.register(SVG_A, AssetKind.VECTOR, name="other")
    assert first is again
    assert first.id in manager
    assert runtime.calls.count("register_asset") == 1


def test_raster_keeps_scale_factor_vector_does_not(runtime):
    manager = AssetLifecycleManager(runtime)
    assert manager.register(b"png-bytes", AssetKind.RASTER, scale_factor=2).scale_factor == 2
    assert manager.register(SVG_B, AssetKind.VECTOR, scale_factor=2).scale_factor == 1


def test_detach_last_asset_is_protected(runtime):
    manager = AssetLifecycleManager(runtime)
    before = runtime.list_assets("Sprite1")
    with pytest.raises(DetachError) as info:
        manager.detach(SPRITE_COSTUME_ID, "Sprite1")
    assert info.value.kind is DetachErrorKind.LAST_ASSET_PROTECTED
    assert runtime.list_assets("Sprite1") == before
    assert "detach_asset" not in runtime.calls


def test_detach_unknown_asset(runtime):
    manager = AssetLifecycleManager(runtime)
    with pytest.raises(DetachError) as info:
        manager.detach("0" * 32, "Sprite1")
    assert info.value.kind is DetachErrorKind.UNKNOWN_ASSET


def test_detach_after_attach(runtime):
    manager = AssetLifecycleManager(runtime)
    descriptor = manager.register(SVG_A, AssetKind.VECTOR)
    manager.attach(descriptor, "Sprite1")
    manager.detach(SPRITE_COSTUME_ID, "Sprite1")
    assert [a.id for a in runtime.list_assets("Sprite1")] == [descriptor.id]


def test_replace_attaches_before_detaching_in_reverse(runtime):
    manager = AssetLifecycleManager(runtime)
    old = manager.register(SVG_B, AssetKind.VECTOR)
    manager.attach(old, "Sprite1")
    runtime.asset_counts.clear()
    runtime.calls.clear()

    new = [manager.register(SVG_A, AssetKind.VECTOR, name="a"), manager.register(b"png", AssetKind.RASTER)]
    manager.replace("Sprite1", new)

    assert [a.id for a in runtime.list_assets("Sprite1")] == [d.id for d in new]
    assert min(runtime.asset_counts["Sprite1"]) >= 1
    assert runtime.asset_counts["Sprite1"] == [3, 4, 3, 2]
    detaches = [c for c in runtime.calls if c in ("attach_asset", "detach_asset")]
    assert detaches == ["attach_asset", "attach_asset", "detach_asset", "detach_asset"]


def test_replace_with_nothing_is_refused(runtime):
    with pytest.raises(ValueError):
        AssetLifecycleManager(runtime).replace("Sprite1", [])


def test_resync_plan_skips_catalogue_assets():
    runtime = FakeRuntime()
    remote_known = StaticCatalogue()
    manager = AssetLifecycleManager(runtime, remote_known)
    local = manager.register(SVG_A, AssetKind.VECTOR)
    published = manager.register(SVG_B, AssetKind.VECTOR)
    remote_known.known.add(published.id)
    manager.attach(local, "Sprite1")
    manager.attach(published, "Stage")

    plan = manager.resync_plan(runtime.get_snapshot())
    assert [(entry.target, [d.id for d in entry.descriptors]) for entry in plan] == [("Sprite1", [local.id])]


def test_resync_requires_registered_assets(runtime):
    manager = AssetLifecycleManager(runtime)
    descriptor = manager.register(SVG_A, AssetKind.VECTOR)
    entry = manager.resync("Sprite1", [descriptor])
    assert entry.descriptors == (descriptor,)
    stranger = AssetLifecycleManager(runtime)
    with pytest.raises(KeyError):
        stranger.resync("Sprite1", [descriptor])
