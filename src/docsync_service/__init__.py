def main() -> None:
    # app builds Settings from SYNC_* on import; keep `import docsync_service` free of that
    from .app import main as _main

    _main()

__all__ = ["main"]
