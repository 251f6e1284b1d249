import base64
import logging
from datetime import datetime, timezone
from typing import Iterable

import urllib3
from kubernetes import client, config
from kubernetes.client.rest import ApiException

from .errors import ClusterUnavailableError, PersistConflictError, PersistCreateError, PersistError
from .regions import Region, dump_regions

log = logging.getLogger(__name__)

DEFAULT_CONFIGMAP_NAME = "pia-regions"
DEFAULT_WRITE_TIMEOUT = 60.0
REGIONS_KEY = "regions"
LAST_UPDATE_ANNOTATION = "last-update"


def load_core_v1_api() -> client.CoreV1Api:
    """Get a Kubernetes API client, from inside the cluster or from the local kubeconfig."""
    try:
        config.load_incluster_config()
    except config.ConfigException:
        try:
            config.load_kube_config()
        except (config.ConfigException, OSError) as e:
            raise ClusterUnavailableError(f"could not get configuration from cluster: {e}") from e
    return client.CoreV1Api()


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class SnapshotWriter:
    """Writes the list of regions into a ConfigMap."""

    def __init__(
        self,
        api: client.CoreV1Api,
        namespace: str,
        name: str = DEFAULT_CONFIGMAP_NAME,
        timeout: float = DEFAULT_WRITE_TIMEOUT,
    ):
        self.api = api
        self.namespace = namespace
        self.name = name
        self.timeout = timeout

    def write(self, regions: Iterable[Region]) -> None:
        """
        Store the regions in the ConfigMap, creating it if it does not exist.

        Only the regions key and the last-update annotation are touched: all
        other data and annotations are left as they are.

        Raises:
            PersistCreateError: If the ConfigMap did not exist and could not be created
            PersistConflictError: If the ConfigMap was changed by someone else meanwhile
            PersistError: On any other API or connection failure
        """
        payload = base64.b64encode(dump_regions(regions)).decode("ascii")
        now = _timestamp()

        try:
            conf_map = self.api.read_namespaced_config_map(
                self.name, self.namespace, _request_timeout=self.timeout
            )
        except ApiException as e:
            if e.status != 404:
                raise PersistError(f"could not get configmap {self.namespace}/{self.name}: {e.reason}") from e
            conf_map = None
        except urllib3.exceptions.HTTPError as e:
            raise PersistError(f"could not get configmap {self.namespace}/{self.name}: {e}") from e

        if conf_map is None:
            self._create(payload, now)
            return

        binary_data = dict(conf_map.binary_data or {})
        binary_data[REGIONS_KEY] = payload
        conf_map.binary_data = binary_data
        annotations = dict(conf_map.metadata.annotations or {})
        annotations[LAST_UPDATE_ANNOTATION] = now
        conf_map.metadata.annotations = annotations

        try:
            self.api.replace_namespaced_config_map(
                self.name, self.namespace, conf_map, _request_timeout=self.timeout
            )
        except ApiException as e:
            if e.status == 409:
                raise PersistConflictError(f"configmap {self.namespace}/{self.name} was modified meanwhile") from e
            raise PersistError(f"could not update configmap {self.namespace}/{self.name}: {e.reason}") from e
        except urllib3.exceptions.HTTPError as e:
            raise PersistError(f"could not update configmap {self.namespace}/{self.name}: {e}") from e

        log.debug("configmap updated", extra={"namespace": self.namespace, "configmap": self.name})

    def _create(self, payload: str, now: str) -> None:
        conf_map = client.V1ConfigMap(
            metadata=client.V1ObjectMeta(
                name=self.name,
                namespace=self.namespace,
                annotations={LAST_UPDATE_ANNOTATION: now},
            ),
            binary_data={REGIONS_KEY: payload},
        )
        try:
            self.api.create_namespaced_config_map(self.namespace, conf_map, _request_timeout=self.timeout)
        except ApiException as e:
            if e.status == 409:
                raise PersistConflictError(f"configmap {self.namespace}/{self.name} was created meanwhile") from e
            raise PersistCreateError(f"could not create configmap {self.namespace}/{self.name}: {e.reason}") from e
        except urllib3.exceptions.HTTPError as e:
            raise PersistCreateError(f"could not create configmap {self.namespace}/{self.name}: {e}") from e

        log.debug("configmap created", extra={"namespace": self.namespace, "configmap": self.name})
