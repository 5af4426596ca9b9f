import pytest

from app.models import CapabilityClass
from app.services.classifier import classify


@pytest.mark.parametrize(
    ("model_id", "expected"),
    [
        ("imagen-2.0", CapabilityClass.IMAGE_GENERATION),
        ("Imagen-3.0-generate-002", CapabilityClass.IMAGE_GENERATION),
        ("gemini-2.5-flash-image-preview", CapabilityClass.IMAGE_CAPABLE_CHAT),
        ("GEMINI-2.5-FLASH-IMAGE-PREVIEW", CapabilityClass.IMAGE_CAPABLE_CHAT),
        ("gemini-1.5-flash", CapabilityClass.TEXT_CHAT),
        ("gemini-2.5-flash-image-preview-2", CapabilityClass.TEXT_CHAT),
        ("my-imagen", CapabilityClass.TEXT_CHAT),
        ("", CapabilityClass.TEXT_CHAT),
        (None, CapabilityClass.TEXT_CHAT),
    ],
)
def test_classify(model_id, expected):
    assert classify(model_id) is expected


def test_classify_is_order_independent():
    ids = ["imagen-2.0", "gemini-1.5-flash", "gemini-2.5-flash-image-preview", ""]
    first = [classify(i) for i in ids]
    second = [classify(i) for i in reversed(ids)]
    assert first == list(reversed(second))
