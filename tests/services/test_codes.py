from __future__ import annotations

import asyncio
import io
import time

import pytest
from PIL import Image

from qrcatalog.services import codes
from qrcatalog.services.codes import (
    CodeGenerator,
    RecordRef,
    indexed_record_url,
    record_url,
    render_code,
)


def test_record_urls():
    assert record_url("https://catalog.example.com/", "abc") == "https://catalog.example.com/product/abc"
    assert indexed_record_url("https://catalog.example.com", "doc-1", 3) == "https://catalog.example.com/product/doc-1/3"


def test_url_style_selects_the_url_shape():
    ref = RecordRef(document_id="doc-1", record_id="rec-9", index=4)

    assert CodeGenerator(base_url="https://x.test").url_for(ref) == "https://x.test/product/rec-9"
    assert CodeGenerator(base_url="https://x.test", url_style="indexed").url_for(ref) == "https://x.test/product/doc-1/4"


def test_rendered_code_is_a_black_on_white_square_png():
    png = render_code("https://catalog.example.com/product/abc", width=200, margin=2)

    image = Image.open(io.BytesIO(png))
    assert image.format == "PNG"
    assert image.size == (200, 200)
    colors = {color for _, color in image.convert("RGB").getcolors(maxcolors=256)}
    assert colors == {(0, 0, 0), (255, 255, 255)}
    # quiet zone
    assert image.convert("RGB").getpixel((0, 0)) == (255, 255, 255)


def test_rendering_is_deterministic():
    payload = "https://catalog.example.com/product/abc"

    assert render_code(payload) == render_code(payload)
    assert render_code(payload) != render_code(payload + "d")


def test_empty_payload_is_rejected():
    with pytest.raises(ValueError):
        render_code("")


def test_generate_batch_returns_one_image_per_record():
    generator = CodeGenerator(base_url="https://x.test", max_concurrency=2)
    refs = [RecordRef(document_id="doc", record_id=f"r{idx}", index=idx) for idx in range(5)]

    result = generator.generate_all(refs)

    assert set(result.images) == {f"r{idx}" for idx in range(5)}
    assert result.urls["r3"] == "https://x.test/product/r3"
    assert result.images["r3"] == render_code("https://x.test/product/r3", generator.width, generator.margin)
    assert result.failures == []


def test_one_failing_record_does_not_stop_the_batch(monkeypatch):
    real_render = codes.render_code

    def flaky_render(payload, width=200, margin=2):
        if payload.endswith("/r1") or payload.endswith("/r3"):
            raise RuntimeError("encoder exploded")
        return real_render(payload, width, margin)

    monkeypatch.setattr(codes, "render_code", flaky_render)
    generator = CodeGenerator(base_url="https://x.test")
    refs = [RecordRef(document_id="doc", record_id=f"r{idx}", index=idx) for idx in range(4)]

    result = generator.generate_all(refs)

    assert set(result.images) == {"r0", "r2"}
    assert [failure.record_id for failure in result.failures] == ["r1", "r3"]
    assert result.failures[0].reason == "encoder exploded"


def test_empty_batch():
    result = CodeGenerator(base_url="https://x.test").generate_all([])

    assert result.images == {}
    assert result.failures == []


def test_cancelling_a_batch_propagates(monkeypatch):
    def slow_render(payload, width=200, margin=2):
        time.sleep(0.2)
        return b"png"

    monkeypatch.setattr(codes, "render_code", slow_render)
    generator = CodeGenerator(base_url="https://x.test", max_concurrency=1)
    refs = [RecordRef(document_id="doc", record_id=f"r{idx}", index=idx) for idx in range(3)]

    async def run_and_cancel():
        task = asyncio.ensure_future(generator.generate_batch(refs))
        await asyncio.sleep(0.05)
        task.cancel()
        await task

    with pytest.raises(asyncio.CancelledError):
        asyncio.run(run_and_cancel())
