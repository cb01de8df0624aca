"""
Display mode filtering.
"""

from collections.abc import Iterable

from .detection import DEFAULT_ANIMAL_CLASSES, Detection, DisplayMode


def filter_detections(
    detections: Iterable[Detection],
    mode: DisplayMode,
    animal_classes: Iterable[str] = DEFAULT_ANIMAL_CLASSES,
) -> list[Detection]:
    """
    Select the detections visible under a display mode.

    Args:
        detections: Detections in detector output order
        mode: Active display mode
        animal_classes: Labels counted as animals for ANIMALS_ONLY

    Returns:
        New list, input order preserved. Detections are never modified.
    """
    if mode is DisplayMode.ALL:
        return list(detections)

    animals = {c.lower() for c in animal_classes}
    return [d for d in detections if d.label.lower() in animals]
