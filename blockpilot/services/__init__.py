"""Infrastructure adapters: browser, runtime page, HTTP, logging."""
