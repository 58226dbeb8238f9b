from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from render_service.models.domain import MediaAsset


class ImageGenerationClient:
    """AI still-image generation through a Coze workflow or Zhipu GLM-Image.

    Provider choice: an explicit ``provider`` wins when configured, otherwise
    Coze is tried first and Zhipu second. Returns ``None`` when nothing is
    configured or the provider answers without a usable URL.
    """

    ZHIPU_URL = "https://open.bigmodel.cn/api/paas/v4/images/generations"

    def __init__(
        self,
        zhipu_api_key: str | None = None,
        zhipu_model: str = "glm-image",
        zhipu_size: str = "1728x960",
        coze_token: str | None = None,
        coze_user_token: str | None = None,
        coze_workflow_id: str | None = None,
        coze_workflow_url: str = "https://auto.kanglan.vip/cozeapi/coze/runWorkflow",
        provider: str | None = None,
        timeout: float = 120.0,
        logger: Optional[logging.Logger] = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.zhipu_api_key = (zhipu_api_key or "").strip()
        self.zhipu_model = zhipu_model
        self.zhipu_size = zhipu_size
        self.coze_token = (coze_token or "").strip()
        self.coze_user_token = (coze_user_token or "").strip()
        self.coze_workflow_id = (coze_workflow_id or "").strip()
        self.coze_workflow_url = coze_workflow_url
        self.provider = (provider or "").strip().lower()
        self.timeout = timeout
        self.log = logger or logging.getLogger(__name__)
        self._transport = transport

    def coze_enabled(self) -> bool:
        return bool(self.coze_token and self.coze_workflow_id)

    def zhipu_enabled(self) -> bool:
        return bool(self.zhipu_api_key)

    def enabled(self) -> bool:
        return self.coze_enabled() or self.zhipu_enabled()

    async def generate(self, prompt: str) -> MediaAsset | None:
        if self.provider in ("zhipu", "glm-image"):
            return await self._generate_zhipu(prompt) if self.zhipu_enabled() else None
        if self.provider == "coze":
            return await self._generate_coze(prompt) if self.coze_enabled() else None
        if self.coze_enabled():
            return await self._generate_coze(prompt)
        if self.zhipu_enabled():
            return await self._generate_zhipu(prompt)
        self.log.warning("no AI image provider configured")
        return None

    async def _post(self, url: str, payload: dict[str, Any], headers: dict[str, str]) -> dict[str, Any]:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(url, json=payload, headers=headers)
            response.raise_for_status()
            return response.json()

    async def _generate_coze(self, prompt: str) -> MediaAsset | None:
        payload = {
            "token": self.coze_token,
            "user_token": self.coze_user_token or None,
            "workflow_id": self.coze_workflow_id,
            "parameters": {"style": "横屏", "prompt": prompt},
        }
        data = await self._post(self.coze_workflow_url, payload, {"Content-Type": "application/json"})
        raw_url = ((data.get("data") or {}).get("data") or {}).get("image")
        if isinstance(raw_url, str):
            url = raw_url.replace("`", "").strip()
            if url.startswith("http"):
                self.log.info("coze image generated", extra={"prompt": prompt[:50]})
                return MediaAsset(kind="image", url=url, provider="coze")
        self.log.warning("coze response carried no image url", extra={"prompt": prompt[:50]})
        return None

    async def _generate_zhipu(self, prompt: str) -> MediaAsset | None:
        payload = {"model": self.zhipu_model, "prompt": prompt, "size": self.zhipu_size}
        headers = {"Authorization": f"Bearer {self.zhipu_api_key}", "Content-Type": "application/json"}
        data = await self._post(self.ZHIPU_URL, payload, headers)
        items = data.get("data") or []
        if items and items[0].get("url"):
            self.log.info("zhipu image generated", extra={"prompt": prompt[:50]})
            return MediaAsset(kind="image", url=items[0]["url"], provider="zhipu")
        self.log.warning("zhipu response carried no image url", extra={"prompt": prompt[:50]})
        return None
