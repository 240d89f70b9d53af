from unittest.mock import MagicMock

import requests

from blockpilot.graph.model import AssetDescriptor, AssetKind
from blockpilot.services.catalogue import AssetCatalogue

DESCRIPTOR = AssetDescriptor(id="83a9787d4cb6f3b7632b4ddfebf74367", kind=AssetKind.RASTER, name="pop")
TEMPLATE = "https://assets.example.org/internalapi/asset/{md5ext}/get/"


def _session(*statuses):
    session = MagicMock()
    session.request.side_effect = [MagicMock(status_code=s) for s in statuses]
    return session


def test_empty_template_means_local_only():
    session = _session()
    assert AssetCatalogue("", session=session).contains(DESCRIPTOR) is False
    session.request.assert_not_called()


def test_hit_is_cached():
    session = _session(200)
    catalogue = AssetCatalogue(TEMPLATE, session=session)
    assert catalogue.contains(DESCRIPTOR)
    assert catalogue.contains(DESCRIPTOR)
    assert session.request.call_count == 1
    method, url = session.request.call_args.args
    assert method == "HEAD"
    assert url == "https://assets.example.org/internalapi/asset/83a9787d4cb6f3b7632b4ddfebf74367.png/get/"


def test_miss_is_asked_again():
    session = _session(404, 404)
    catalogue = AssetCatalogue(TEMPLATE, session=session)
    assert not catalogue.contains(DESCRIPTOR)
    assert not catalogue.contains(DESCRIPTOR)
    assert session.request.call_count == 2


def test_transport_error_counts_as_local_only():
    session = MagicMock()
    session.request.side_effect = requests.ConnectionError("offline")
    assert AssetCatalogue(TEMPLATE, session=session).contains(DESCRIPTOR) is False
