"""Client for the remote asset catalogue the runtime resolves content hashes against."""

from __future__ import annotations

import logging
from typing import Dict, Optional

import requests
from requests import Session

from ..graph.model import AssetDescriptor
from .http import http_request

LOGGER = logging.getLogger("blockpilot.catalogue")


class AssetCatalogue:
    """Answers "would a reload resolve this hash remotely?".

    ``url_template`` receives ``{md5ext}`` and ``{id}``, e.g.
    ``https://assets.example.org/internalapi/asset/{md5ext}/get/``. An empty
    template means no catalogue is reachable and every asset is local-only.
    """

    def __init__(self, url_template: str = "", *, session: Optional[Session] = None) -> None:
        self.url_template = url_template
        self._session = session
        self._resolved: Dict[str, bool] = {}

    def contains(self, descriptor: AssetDescriptor) -> bool:
        if not self.url_template:
            return False
        if self._resolved.get(descriptor.id):
            return True
        url = self.url_template.format(md5ext=descriptor.md5ext, id=descriptor.id)
        try:
            response = http_request("HEAD", url, session=self._session, allow_redirects=True, logger=LOGGER)
        except requests.RequestException:
            # Unknown means local-only: resyncing a remote asset is harmless, losing a local one is not.
            return False
        found = response.status_code == 200
        if found:
            self._resolved[descriptor.id] = True
        LOGGER.debug("Catalogue lookup %s -> %s", descriptor.md5ext, response.status_code)
        return found
