"""
Clip Montage - Entry point for python -m clip_montage
"""

if __name__ == "__main__":
    import logging
    import signal

    # Default SIGPIPE behavior so piping output into `head` exits quietly.
    try:
        signal.signal(signal.SIGPIPE, signal.SIG_DFL)
    except (AttributeError, ValueError):
        pass

    logging.raiseExceptions = False

    from clip_montage.cli import cli
    cli()
