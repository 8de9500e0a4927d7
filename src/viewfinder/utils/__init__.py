"""Utility modules for viewfinder-core.

This package uses lazy imports via __getattr__ to defer cv2 loading until
the codec classes are actually accessed.

Available exports (lazy-loaded):
    ImageCodec: Protocol for image decode/encode operations
    CV2ImageCodec: OpenCV-based implementation

Example:
    from viewfinder.utils import CV2ImageCodec
    codec = CV2ImageCodec()
"""

__all__ = ["ImageCodec", "CV2ImageCodec"]


def __getattr__(name: str) -> type:
    """Lazy import so ``import viewfinder.utils`` does not load cv2.

    Imports are cached in module globals after first access.

    Args:
        name: Attribute name being accessed.

    Returns:
        The requested class.

    Raises:
        AttributeError: If name is not a public export.
    """
    if name in ("ImageCodec", "CV2ImageCodec"):
        from viewfinder.utils.image import CV2ImageCodec, ImageCodec

        globals()["ImageCodec"] = ImageCodec
        globals()["CV2ImageCodec"] = CV2ImageCodec
        return globals()[name]
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__() -> list[str]:
    """Return public API including lazy-loaded names."""
    return [*__all__, "__all__", "__doc__", "__name__", "__file__"]
