from __future__ import annotations

import asyncio
import io
import logging
from dataclasses import dataclass, field
from typing import Iterable, Literal, Optional, Sequence

import qrcode
from PIL import Image
from qrcode.constants import ERROR_CORRECT_M

from ..config import settings
from ..errors import PartialGenerationFailure
from .document_store import Document
from .metrics import record_codes_generated

logger = logging.getLogger(__name__)

UrlStyle = Literal["record", "indexed"]

FOREGROUND = "#000000"
BACKGROUND = "#FFFFFF"


@dataclass(frozen=True)
class RecordRef:
    document_id: str
    record_id: str
    index: int = 0


@dataclass(frozen=True)
class GeneratedCode:
    record_id: str
    url: str
    png: bytes


@dataclass
class GenerationResult:
    images: dict[str, bytes] = field(default_factory=dict)
    urls: dict[str, str] = field(default_factory=dict)
    failures: list[PartialGenerationFailure] = field(default_factory=list)


def record_url(base_url: str, record_id: str) -> str:
    return f"{base_url.rstrip('/')}/product/{record_id}"


def indexed_record_url(base_url: str, document_id: str, index: int) -> str:
    return f"{base_url.rstrip('/')}/product/{document_id}/{index}"


def render_code(payload: str, width: int = 200, margin: int = 2) -> bytes:
    """Encode ``payload`` as a black-on-white QR code PNG of ``width`` x ``width`` pixels."""
    if not payload:
        raise ValueError("QR payload must not be empty")
    if width <= 0:
        raise ValueError("QR width must be positive")

    qr = qrcode.QRCode(error_correction=ERROR_CORRECT_M, box_size=10, border=margin)
    qr.add_data(payload)
    qr.make(fit=True)
    image = qr.make_image(fill_color=FOREGROUND, back_color=BACKGROUND).get_image()
    image = image.convert("RGB").resize((width, width), Image.NEAREST)

    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def refs_for_document(document: Document) -> list[RecordRef]:
    return [
        RecordRef(document_id=document.id, record_id=record.id, index=idx)
        for idx, record in enumerate(document.records)
    ]


class CodeGenerator:
    """Builds record URLs and renders them as QR codes.

    Batches fan out one task per record; a record that fails is reported in
    ``GenerationResult.failures`` and the others carry on.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        width: Optional[int] = None,
        margin: Optional[int] = None,
        url_style: Optional[UrlStyle] = None,
        max_concurrency: Optional[int] = None,
    ) -> None:
        self.base_url = (base_url or settings.app_url).rstrip("/")
        self.width = width or settings.qr_width
        self.margin = settings.qr_margin if margin is None else margin
        self.url_style: UrlStyle = url_style or settings.qr_url_style
        self.max_concurrency = max(1, max_concurrency or settings.qr_max_concurrency)

    def url_for(self, ref: RecordRef) -> str:
        if self.url_style == "indexed":
            return indexed_record_url(self.base_url, ref.document_id, ref.index)
        return record_url(self.base_url, ref.record_id)

    def generate(self, ref: RecordRef) -> GeneratedCode:
        url = self.url_for(ref)
        return GeneratedCode(record_id=ref.record_id, url=url, png=render_code(url, self.width, self.margin))

    async def _generate_one(
        self,
        ref: RecordRef,
        semaphore: asyncio.Semaphore,
    ) -> GeneratedCode | PartialGenerationFailure:
        async with semaphore:
            try:
                return await asyncio.to_thread(self.generate, ref)
            except Exception as exc:
                logger.warning("code_generation_failed record_id=%s error=%s", ref.record_id, exc)
                return PartialGenerationFailure(ref.record_id, str(exc) or exc.__class__.__name__)

    async def generate_batch(self, refs: Iterable[RecordRef]) -> GenerationResult:
        """Render every ref concurrently and collect the results by record id.

        Cancelling the awaiting task cancels the renders still pending.
        """
        refs = list(refs)
        result = GenerationResult()
        if not refs:
            return result

        semaphore = asyncio.Semaphore(self.max_concurrency)
        tasks = [asyncio.ensure_future(self._generate_one(ref, semaphore)) for ref in refs]
        try:
            for finished in asyncio.as_completed(tasks):
                outcome = await finished
                if isinstance(outcome, PartialGenerationFailure):
                    result.failures.append(outcome)
                else:
                    result.images[outcome.record_id] = outcome.png
                    result.urls[outcome.record_id] = outcome.url
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            raise

        order = {ref.record_id: idx for idx, ref in enumerate(refs)}
        result.failures.sort(key=lambda failure: order.get(failure.record_id, 0))
        record_codes_generated(len(result.images), len(result.failures))
        logger.info("codes_generated succeeded=%s failed=%s", len(result.images), len(result.failures))
        return result

    def generate_all(self, refs: Sequence[RecordRef]) -> GenerationResult:
        return asyncio.run(self.generate_batch(refs))
