"""Compose definition fetching and device templating."""
import copy
from typing import Any, Dict, List, Optional

import requests
import yaml

from dsmrlxc.core.errors import ComposeTemplateError, FetchError
from dsmrlxc.core.logger import get_logger
from dsmrlxc.core.retry import retry

logger = get_logger(__name__)

READER_IMAGE_MARKERS = ("dsmr-reader", "dsmr_reader", "dsmrreader")
SERIAL_DEVICE_PREFIXES = ("/dev/tty", "/dev/serial")


class RemoteTemplateFetcher:
    """Downloads the compose definition and environment template."""

    def __init__(self, timeout: int = 30):
        self.timeout = timeout

    @retry(max_attempts=3, delay=2, exceptions=(requests.RequestException,), label="template fetch")
    def _get(self, url: str) -> str:
        response = requests.get(url, timeout=self.timeout)
        response.raise_for_status()
        return response.text

    def fetch(self, url: str) -> str:
        """Fetch ``url`` as text.

        Raises:
            FetchError: the file could not be retrieved
        """
        logger.debug(f"Downloading {url}")
        try:
            return self._get(url)
        except requests.RequestException as e:
            raise FetchError(f"Failed to download {url}: {e}") from e

    def fetch_compose(self, url: str) -> Dict[str, Any]:
        """Fetch and parse a compose definition."""
        text = self.fetch(url)
        try:
            content = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ComposeTemplateError(f"Compose file from {url} is not valid YAML: {e}") from e

        if not isinstance(content, dict) or not isinstance(content.get('services'), dict):
            raise ComposeTemplateError(f"Invalid compose from {url}: no services defined")
        return content


def find_reader_services(compose: Dict[str, Any]) -> List[str]:
    """Names of the services running the DSMR-reader image."""
    services = compose.get('services') or {}
    names = []
    for name, service in services.items():
        image = str((service or {}).get('image', '')).lower()
        if any(marker in image for marker in READER_IMAGE_MARKERS):
            names.append(name)
    if not names and 'dsmr' in services:
        names.append('dsmr')
    return names


def _is_serial_mapping(entry: Any) -> bool:
    return isinstance(entry, str) and entry.startswith(SERIAL_DEVICE_PREFIXES)


def configure_compose(compose: Dict[str, Any], device: Optional[str] = None) -> Dict[str, Any]:
    """Return a copy of ``compose`` with serial device mappings for ``device``.

    Existing serial mappings on the DSMR-reader service are replaced; without
    a device (remote TCP mode) they are removed.

    Raises:
        ComposeTemplateError: no DSMR-reader service is defined
    """
    updated = copy.deepcopy(compose)
    names = find_reader_services(updated)
    if not names:
        raise ComposeTemplateError("Compose file defines no DSMR-reader service")

    for name in names:
        service = updated['services'][name] or {}
        devices = [entry for entry in service.get('devices') or [] if not _is_serial_mapping(entry)]
        if device:
            devices.append(f"{device}:{device}")
        if devices:
            service['devices'] = devices
        else:
            service.pop('devices', None)
        updated['services'][name] = service
        logger.debug(f"Service {name} devices: {devices or 'none'}")

    return updated


def dump_compose(compose: Dict[str, Any]) -> str:
    return yaml.dump(compose, default_flow_style=False, sort_keys=False)
