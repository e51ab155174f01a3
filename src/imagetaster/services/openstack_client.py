"""Minimal OpenStack control-plane client over the REST APIs."""

from typing import Any, Dict, List, Optional

import requests

from imagetaster.errors import ControlPlaneError
from imagetaster.models import Flavor, Image, Network, Server, Volume, VolumeAttachment

SERVICE_TYPES = {
    "compute": ("compute",),
    "volume": ("block-storage", "volumev3", "volumev2", "volume"),
    "image": ("image",),
    "network": ("network",),
}


class OpenStackClient:
    """Talks to Keystone, Nova, Cinder, Glance and Neutron with a shared session.

    Only the calls a tasting session needs are implemented. The session and
    the token are read-only after ``authenticate`` so several tasting
    sessions may share one client.
    """

    def __init__(
        self,
        auth_url: str,
        username: str,
        password: str,
        project_name: str,
        user_domain_name: str = "Default",
        project_domain_name: str = "Default",
        region_name: Optional[str] = None,
        interface: str = "public",
        timeout: float = 30.0,
        requests_module=requests,
    ):
        self.auth_url = auth_url.rstrip("/")
        self.username = username
        self.password = password
        self.project_name = project_name
        self.user_domain_name = user_domain_name
        self.project_domain_name = project_domain_name
        self.region_name = region_name
        self.interface = interface
        self.timeout = timeout
        self.requests = requests_module
        self.session = requests_module.Session()
        self.token: Optional[str] = None
        self.endpoints: Dict[str, str] = {}

    def authenticate(self):
        auth_base = self.auth_url if self.auth_url.endswith("/v3") else f"{self.auth_url}/v3"
        payload = {
            "auth": {
                "identity": {
                    "methods": ["password"],
                    "password": {
                        "user": {
                            "name": self.username,
                            "domain": {"name": self.user_domain_name},
                            "password": self.password,
                        }
                    },
                },
                "scope": {
                    "project": {
                        "name": self.project_name,
                        "domain": {"name": self.project_domain_name},
                    }
                },
            }
        }
        try:
            response = self.session.post(
                f"{auth_base}/auth/tokens",
                json=payload,
                timeout=self.timeout,
            )
            response.raise_for_status()
        except self.requests.RequestException as exc:
            raise ControlPlaneError(f"Authentication against {auth_base} failed: {exc}") from exc

        self.token = response.headers.get("X-Subject-Token")
        if not self.token:
            raise ControlPlaneError("Identity service returned no token.")

        catalog = response.json().get("token", {}).get("catalog", [])
        self.endpoints = self._parse_catalog(catalog)
        self.session.headers.update({"X-Auth-Token": self.token})

    def _parse_catalog(self, catalog: List[Dict[str, Any]]) -> Dict[str, str]:
        endpoints: Dict[str, str] = {}
        for key, candidates in SERVICE_TYPES.items():
            for service_type in candidates:
                url = self._find_endpoint(catalog, service_type)
                if url:
                    endpoints[key] = url.rstrip("/")
                    break
        return endpoints

    def _find_endpoint(self, catalog: List[Dict[str, Any]], service_type: str) -> Optional[str]:
        for service in catalog:
            if service.get("type") != service_type:
                continue
            for endpoint in service.get("endpoints", []):
                if endpoint.get("interface") != self.interface:
                    continue
                if self.region_name and endpoint.get("region_id", endpoint.get("region")) != self.region_name:
                    continue
                return endpoint.get("url")
        return None

    def _endpoint(self, service: str) -> str:
        if not self.endpoints:
            self.authenticate()
        try:
            return self.endpoints[service]
        except KeyError:
            raise ControlPlaneError(f"No '{service}' endpoint found in the service catalog.") from None

    def _request(
        self,
        method: str,
        service: str,
        path: str,
        json_body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        allow_not_found: bool = False,
    ):
        url = f"{self._endpoint(service)}{path}"
        try:
            response = self.session.request(
                method,
                url,
                json=json_body,
                params=params,
                timeout=self.timeout,
            )
        except self.requests.RequestException as exc:
            raise ControlPlaneError(f"{method} {url} failed: {exc}") from exc

        if allow_not_found and response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise ControlPlaneError(
                f"{method} {url} returned {response.status_code}: {response.text.strip()}",
                status_code=response.status_code,
            )
        return response

    @staticmethod
    def _json(response) -> Dict[str, Any]:
        if response is None or not response.content:
            return {}
        return response.json()

    def list_flavors(self) -> List[Flavor]:
        body = self._json(self._request("GET", "compute", "/flavors"))
        return [Flavor(id=item["id"], name=item["name"]) for item in body.get("flavors", [])]

    def list_networks(self) -> List[Network]:
        body = self._json(self._request("GET", "network", "/v2.0/networks"))
        return [Network(id=item["id"], name=item["name"]) for item in body.get("networks", [])]

    def list_images(self, name: Optional[str] = None) -> List[Image]:
        params = {"name": name} if name else None
        body = self._json(self._request("GET", "image", "/v2/images", params=params))
        return [self._parse_image(item) for item in body.get("images", [])]

    def get_image(self, image_id: str) -> Optional[Image]:
        response = self._request("GET", "image", f"/v2/images/{image_id}", allow_not_found=True)
        if response is None:
            return None
        return self._parse_image(self._json(response))

    @staticmethod
    def _parse_image(item: Dict[str, Any]) -> Image:
        return Image(id=item["id"], name=item.get("name") or "", status=item.get("status") or "")

    def create_server(
        self,
        name: str,
        flavor_id: str,
        image_id: str,
        network_id: str,
        key_name: str,
    ) -> Optional[Server]:
        payload = {
            "server": {
                "name": name,
                "flavorRef": flavor_id,
                "imageRef": image_id,
                "networks": [{"uuid": network_id}],
                "key_name": key_name,
            }
        }
        body = self._json(self._request("POST", "compute", "/servers", json_body=payload))
        server = body.get("server")
        if not server or not server.get("id"):
            return None
        return Server(id=server["id"], name=name, image_id=image_id)

    def get_server(self, server_id: str) -> Optional[Server]:
        response = self._request("GET", "compute", f"/servers/{server_id}", allow_not_found=True)
        if response is None:
            return None
        item = self._json(response).get("server", {})
        fault = item.get("fault")
        image = item.get("image")
        return Server(
            id=item["id"],
            name=item.get("name") or "",
            status=item.get("status") or "",
            addresses=item.get("addresses") or {},
            fault=fault.get("message") if isinstance(fault, dict) else None,
            image_id=image.get("id") if isinstance(image, dict) else None,
        )

    def delete_server(self, server_id: str) -> bool:
        response = self._request("DELETE", "compute", f"/servers/{server_id}", allow_not_found=True)
        return response is not None

    def list_volumes(self) -> List[Volume]:
        body = self._json(self._request("GET", "volume", "/volumes/detail"))
        return [self._parse_volume(item) for item in body.get("volumes", [])]

    def get_volume(self, volume_id: str) -> Volume:
        body = self._json(self._request("GET", "volume", f"/volumes/{volume_id}"))
        return self._parse_volume(body.get("volume", {}))

    @staticmethod
    def _parse_volume(item: Dict[str, Any]) -> Volume:
        attachments = [
            VolumeAttachment(
                server_id=attachment.get("server_id") or "",
                device=attachment.get("device") or "",
            )
            for attachment in item.get("attachments") or []
        ]
        return Volume(id=item["id"], name=item.get("name") or item["id"], attachments=attachments)

    def attach_volume(self, volume_id: str, server_id: str):
        payload = {"volumeAttachment": {"volumeId": volume_id}}
        self._request(
            "POST",
            "compute",
            f"/servers/{server_id}/os-volume_attachments",
            json_body=payload,
        )

    def detach_volume(self, volume_id: str, server_id: str):
        self._request(
            "DELETE",
            "compute",
            f"/servers/{server_id}/os-volume_attachments/{volume_id}",
        )

    def list_server_attachments(self, server_id: str) -> List[str]:
        body = self._json(
            self._request("GET", "compute", f"/servers/{server_id}/os-volume_attachments")
        )
        return [item.get("volumeId") for item in body.get("volumeAttachments", [])]

    def create_server_image(self, server_id: str, image_name: str) -> str:
        payload = {"createImage": {"name": image_name}}
        response = self._request(
            "POST",
            "compute",
            f"/servers/{server_id}/action",
            json_body=payload,
        )
        image_id = self._json(response).get("image_id")
        if not image_id:
            location = response.headers.get("Location", "")
            image_id = location.rstrip("/").rsplit("/", 1)[-1]
        if not image_id:
            raise ControlPlaneError(f"Snapshot request for server {server_id} returned no image id.")
        return image_id
