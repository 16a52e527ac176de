import logging
from typing import Any

import requests

from harvester.core.ratelimit import TokenBucket

from .models import Dataset

logger = logging.getLogger("udata")


class CatalogError(RuntimeError):
    pass


class UdataClient:
    """Thin client for the udata resource API.

    Mutating calls follow the collaborator contract of the sync engine:
    failures are logged and reported as an empty dict (or `False` for
    deletions) instead of being raised.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: int = 30,
        proxy: str = "",
        limiter: TokenBucket | None = None,
        session: requests.Session | None = None,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self.api_key = api_key or ""
        self.timeout = timeout
        self.limiter = limiter or TokenBucket(0)
        self.session = session or requests.Session()
        if proxy:
            self.session.proxies.update({"http": proxy, "https": proxy})
            logger.info("proxy set to %s", proxy)

    def _headers(self, content_type: str | None = "application/json") -> dict[str, str]:
        headers = {
            "Accept": "application/json, text/plain, */*",
            "X-API-KEY": self.api_key,
        }
        if content_type:
            headers["Content-Type"] = content_type
        return headers

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        self.limiter.acquire()
        return self.session.request(method, f"{self.base_url}{path}", timeout=self.timeout, **kwargs)

    def _check_json(self, res: requests.Response) -> dict[str, Any]:
        if res.status_code >= 400:
            raise CatalogError(f"status code: {res.status_code}, response: {(res.text or '')[:500]}")
        payload = res.json()
        if not isinstance(payload, dict):
            raise CatalogError("invalid_response")
        return payload

    def get_dataset(self, dataset_id: str) -> Dataset:
        if not dataset_id:
            raise CatalogError("dataset_id_missing")
        try:
            res = self._request("GET", f"/datasets/{dataset_id}/", headers=self._headers("application/json;charset=utf-8"))
            return Dataset.model_validate(self._check_json(res))
        except requests.RequestException as e:
            raise CatalogError(f"get_dataset_failed: {dataset_id}: {e}") from e

    def _upload(self, path: str, filename: str, data: bytes, mime: str) -> dict[str, Any]:
        headers = self._headers(content_type=None)
        headers["Cache-Control"] = "no-cache"
        files = {"file": (filename, data, mime)}
        res = self._request("POST", path, headers=headers, data={"filename": filename}, files=files)
        return self._check_json(res)

    def upload_resource(self, filename: str, data: bytes, dataset_id: str, mime: str) -> dict[str, Any]:
        try:
            return self._upload(f"/datasets/{dataset_id}/upload/", filename, data, mime)
        except (requests.RequestException, CatalogError, ValueError) as e:
            logger.error("upload_resource_failed %s: %s", filename, e)
            return {}

    def update_resource(
        self,
        filename: str,
        data: bytes,
        dataset_id: str,
        resource_id: str,
        mime: str,
    ) -> dict[str, Any]:
        try:
            return self._upload(f"/datasets/{dataset_id}/resources/{resource_id}/upload/", filename, data, mime)
        except (requests.RequestException, CatalogError, ValueError) as e:
            logger.error("update_resource_failed %s: %s", filename, e)
            return {}

    def update_resource_meta(
        self,
        dataset_id: str,
        resource_id: str,
        title: str,
        description: str | None,
    ) -> dict[str, Any]:
        try:
            res = self._request(
                "PUT",
                f"/datasets/{dataset_id}/resources/{resource_id}/",
                headers=self._headers(),
                json={"title": title, "description": description},
            )
            return self._check_json(res)
        except (requests.RequestException, CatalogError, ValueError) as e:
            logger.error("update_resource_meta_failed %s: %s", resource_id, e)
            return {}

    def delete_resource(self, dataset_id: str, resource_id: str) -> bool:
        try:
            res = self._request("DELETE", f"/datasets/{dataset_id}/resources/{resource_id}/", headers=self._headers())
        except requests.RequestException as e:
            logger.error("delete_resource_failed %s: %s", resource_id, e)
            return False
        # udata answers 204 No Content on success.
        return res.status_code == 204
