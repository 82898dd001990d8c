"""
Builder API — the backend collaborator the sync engine talks to.

``BuilderApi`` is the contract; ``HttpBuilderApi`` speaks the REST API over
httpx.  The in-memory mock backend lives in
``persistence.memory_backend``.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx

from compliance_draft.config import get_settings
from compliance_draft.models.enums import AttachmentCategory
from compliance_draft.models.schemas import LocalFile, QuestionPayload, RemoteSection, SectionPayload

logger = logging.getLogger(__name__)


class BuilderApiError(Exception):
    """A backend call failed (transport error or non-2xx response)."""

    def __init__(self, message: str, status_code: Optional[int] = None, payload: Any = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    @property
    def server_message(self) -> Optional[str]:
        """The structured ``error``/``message`` from the response body, if any."""
        if isinstance(self.payload, str):
            return self.payload
        if isinstance(self.payload, dict):
            for key in ("error", "message"):
                value = self.payload.get(key)
                if isinstance(value, str):
                    return value
        return None

    @classmethod
    def from_response(cls, response: httpx.Response) -> BuilderApiError:
        try:
            payload: Any = response.json()
        except ValueError:
            payload = response.text or None
        err = cls(
            f"{response.request.method} {response.request.url.path} failed with {response.status_code}",
            status_code=response.status_code,
            payload=payload,
        )
        if err.server_message:
            err.message = err.server_message
            err.args = (err.server_message,)
        return err


class BuilderApi(ABC):
    """Remote operations consumed by the sync engine."""

    # ── Sections ─────────────────────────────────────────

    @abstractmethod
    async def create_section(self, payload: SectionPayload) -> str:
        """Create a section and return its permanent id."""

    @abstractmethod
    async def update_section(self, section_id: str, payload: SectionPayload) -> None: ...

    @abstractmethod
    async def delete_section(self, section_id: str) -> None: ...

    @abstractmethod
    async def reorder_sections(self, section_ids: list[str]) -> None: ...

    # ── Questions ────────────────────────────────────────

    @abstractmethod
    async def create_question(self, section_id: str, text: str) -> str:
        """Create a question under ``section_id`` and return its permanent id."""

    @abstractmethod
    async def update_question(self, question_id: str, payload: QuestionPayload) -> None: ...

    @abstractmethod
    async def delete_question(self, question_id: str) -> None: ...

    @abstractmethod
    async def reorder_questions(self, section_id: str, question_ids: list[str]) -> None: ...

    # ── Attachments ──────────────────────────────────────

    @abstractmethod
    async def upload_attachment(
        self,
        question_id: str,
        file: LocalFile,
        category: AttachmentCategory,
        reference_text: Optional[str] = None,
    ) -> None: ...

    @abstractmethod
    async def upload_section_rule(
        self,
        section_id: str,
        file: LocalFile,
        reference_text: Optional[str] = None,
    ) -> None: ...

    # ── Hydrate ──────────────────────────────────────────

    @abstractmethod
    async def list_sections(self) -> list[RemoteSection]: ...

    async def aclose(self) -> None:
        """Release transport resources (no-op by default)."""


class HttpBuilderApi(BuilderApi):
    """REST client for the builder endpoints."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        token: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        settings = get_settings()
        headers = {}
        token = token if token is not None else settings.api_token
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = client or httpx.AsyncClient(
            base_url=base_url or settings.api_base_url,
            timeout=timeout or settings.api_timeout_seconds,
            headers=headers,
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        logger.debug(f"[API] {method} {path}")
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"[API] {method} {path} transport error: {e}")
            raise BuilderApiError(str(e) or type(e).__name__) from e

        if response.is_error:
            err = BuilderApiError.from_response(response)
            logger.error(f"[API] {method} {path} → {response.status_code}: {err.message}")
            raise err

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return None

    @staticmethod
    def _upload_parts(
        file: LocalFile, extra: dict[str, str]
    ) -> dict[str, Any]:
        return {
            "files": {"file": (file.name, file.content, file.content_type)},
            "data": extra,
        }

    # ── Sections ─────────────────────────────────────────

    async def create_section(self, payload: SectionPayload) -> str:
        data = await self._request(
            "POST", "/sections", json=payload.model_dump(mode="json", by_alias=True)
        )
        return data["section"]["id"]

    async def update_section(self, section_id: str, payload: SectionPayload) -> None:
        await self._request(
            "PATCH",
            f"/sections/{section_id}",
            json=payload.model_dump(mode="json", by_alias=True),
        )

    async def delete_section(self, section_id: str) -> None:
        await self._request("DELETE", f"/sections/{section_id}")

    async def reorder_sections(self, section_ids: list[str]) -> None:
        await self._request("PATCH", "/sections/reorder", json={"sectionIds": section_ids})

    # ── Questions ────────────────────────────────────────

    async def create_question(self, section_id: str, text: str) -> str:
        data = await self._request(
            "POST", f"/sections/{section_id}/questions", json={"texto": text}
        )
        return data["question"]["id"]

    async def update_question(self, question_id: str, payload: QuestionPayload) -> None:
        await self._request(
            "PATCH",
            f"/questions/{question_id}",
            json=payload.model_dump(mode="json", by_alias=True),
        )

    async def delete_question(self, question_id: str) -> None:
        await self._request("DELETE", f"/questions/{question_id}")

    async def reorder_questions(self, section_id: str, question_ids: list[str]) -> None:
        await self._request(
            "PATCH",
            f"/sections/{section_id}/questions/reorder",
            json={"questionIds": question_ids},
        )

    # ── Attachments ──────────────────────────────────────

    async def upload_attachment(
        self,
        question_id: str,
        file: LocalFile,
        category: AttachmentCategory,
        reference_text: Optional[str] = None,
    ) -> None:
        extra = {"category": category.value}
        if reference_text:
            extra["referenceText"] = reference_text
        await self._request(
            "POST", f"/questions/{question_id}/attachments", **self._upload_parts(file, extra)
        )

    async def upload_section_rule(
        self,
        section_id: str,
        file: LocalFile,
        reference_text: Optional[str] = None,
    ) -> None:
        extra = {"referenceText": reference_text} if reference_text else {}
        await self._request(
            "POST", f"/sections/{section_id}/norma", **self._upload_parts(file, extra)
        )

    # ── Hydrate ──────────────────────────────────────────

    async def list_sections(self) -> list[RemoteSection]:
        data = await self._request("GET", "/sections")
        return [RemoteSection.model_validate(s) for s in (data or {}).get("sections", [])]

    async def aclose(self) -> None:
        await self._client.aclose()
