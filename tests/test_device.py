"""
Pytest for device-type hints from template names.
"""
from __future__ import annotations

from screenfit.core.contracts import DeviceType, Rect
from screenfit.geometry.device import TemplateHints, infer_device_type, parse_template_hints


def test_parse_template_hints():
    h = parse_template_hints("2sp_white.png")
    assert h.smartphone and not h.laptop and h.device_count == 2

    h = parse_template_hints("SpAndLaptop.png")
    assert h.smartphone and h.laptop and h.device_count == 2

    h = parse_template_hints("ipad_pro.png")
    assert h.tablet and not h.smartphone and h.device_count == 1

def test_largest_region_is_the_laptop():
    laptop = Rect(300, 100, 340, 300)          # not wide enough on its own
    phone = Rect(50, 100, 150, 250)
    hints = TemplateHints(smartphone=True, laptop=True)
    assert infer_device_type(laptop, [laptop, phone], hints) == (DeviceType.LAPTOP, True)
    assert infer_device_type(phone, [laptop, phone], hints) == (DeviceType.SMARTPHONE, False)

def test_tablet_and_unknown():
    wide = Rect(0, 0, 400, 300)
    assert infer_device_type(wide, [wide], TemplateHints(tablet=True)) == (DeviceType.TABLET, True)
    assert infer_device_type(wide, [wide], TemplateHints()) == (DeviceType.SMARTPHONE, False)
    tall = Rect(0, 0, 100, 300)
    assert infer_device_type(tall, [tall], TemplateHints(laptop=True)) == (DeviceType.UNKNOWN, False)
