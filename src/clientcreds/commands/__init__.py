"""Built-in CLI commands: ``token``, ``request`` and the ``profile`` group."""
