def build_artifact_repository(*args: object, **kwargs: object):
    from receipts.lib.artifacts.factory import build_artifact_repository as _build_artifact_repository

    return _build_artifact_repository(*args, **kwargs)


def build_receipt_renderer(*args: object, **kwargs: object):
    from receipts.lib.artifacts.factory import build_receipt_renderer as _build_receipt_renderer

    return _build_receipt_renderer(*args, **kwargs)


__all__ = ["build_artifact_repository", "build_receipt_renderer"]
