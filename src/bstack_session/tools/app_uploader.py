"""Validate app descriptors and upload app binaries to BrowserStack App Automate."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from bstack_session.errors import AppValidationError, SevereServiceError
from bstack_session.policies import SUPPORTED_APP_PROPERTIES, AppPolicy

logger = logging.getLogger(__name__)

UPLOAD_URL = "https://api-cloud.browserstack.com/app-automate/upload"


class AppReference(BaseModel):
    """A validated app: a path, a bs:// url, a custom id or a shareable id."""

    app: str
    custom_id: str | None = None


class UploadResult(BaseModel):
    app_url: str
    custom_id: str | None = None
    shareable_id: str | None = None


def validate_app(descriptor: Any, policy: AppPolicy | None = None) -> AppReference:
    (policy or AppPolicy()).assert_valid(descriptor)
    if isinstance(descriptor, str):
        return AppReference(app=descriptor)

    app = (
        descriptor.get("id")
        or descriptor.get("path")
        or descriptor.get("custom_id")
        or descriptor.get("shareable_id")
    )
    if not isinstance(app, str) or not app:
        raise AppValidationError(
            f"[Invalid app property] supported properties are {SUPPORTED_APP_PROPERTIES}."
        )
    return AppReference(app=app, custom_id=descriptor.get("custom_id"))


class AppUploader(BaseModel):
    """Uploads a local app binary with one multipart POST."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    user: str | None = None
    key: str | None = None
    upload_url: str = UPLOAD_URL
    timeout_seconds: float | None = None
    transport: httpx.AsyncBaseTransport | None = Field(default=None, exclude=True)

    async def upload(self, reference: AppReference) -> UploadResult:
        app_path = Path(reference.app)
        if not app_path.is_file():
            raise SevereServiceError(
                f"[Invalid app path] app path {reference.app} is not correct, "
                "Provide correct path to app under test"
            )

        custom = f" and custom_id: {reference.custom_id}" if reference.custom_id else ""
        logger.info("uploading app %s%s to browserstack", reference.app, custom)

        data = {"custom_id": reference.custom_id} if reference.custom_id else None
        auth = (self.user or "", self.key or "")
        try:
            async with httpx.AsyncClient(transport=self.transport, timeout=self.timeout_seconds) as client:
                with app_path.open("rb") as handle:
                    response = await client.post(
                        self.upload_url,
                        auth=auth,
                        data=data,
                        files={"file": (app_path.name, handle)},
                    )
            response.raise_for_status()
            result = UploadResult.model_validate(response.json())
        except (httpx.HTTPError, ValueError, ValidationError) as exc:
            raise SevereServiceError(f"app upload failed {exc}") from exc

        logger.info("app upload completed: %s", result.model_dump(exclude_none=True))
        return result
